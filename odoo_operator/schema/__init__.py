"""
Typed representations of the custom resource, the rendered objects and the
reported status
"""

# Local
from .crd import build_crd
from .desired_state import (
    ClusterConfig,
    ClusterOperation,
    DesiredState,
    ImageSpec,
    ListenerClass,
    ResourceKey,
    ResourceSizing,
    RoleGroup,
    parse_desired_state,
)
from .reconcile_status import Phase, ReconcileStatus, RoleGroupStatus
from .rendered import ManifestKind, RenderedManifest, get_content_hash
