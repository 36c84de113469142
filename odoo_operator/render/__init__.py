"""
The renderer turns a desired state and the merged configuration of each role
group into the concrete objects to apply. Rendering is pure: the same inputs
always produce byte-identical manifests and hashes.
"""

# Standard
from typing import Callable, Dict, List, Mapping, Optional, Tuple
import copy
import re

# First Party
import alog

# Local
from .. import constants
from ..exceptions import assert_invariant
from ..properties import MergedConfig
from ..schema import DesiredState, ManifestKind, RenderedManifest, RoleGroup
from ..utils import obj_to_hash
from .configmap import build_configmap
from .metadata import instance_labels
from .rbac import build_role_binding, build_service_account
from .service import build_headless_service, build_http_service
from .statefulset import build_statefulset

log = alog.use_channel("RENDR")

_DNS_1035_LABEL = re.compile(r"[a-z]([-a-z0-9]*[a-z0-9])?")
_MAX_NAME_LENGTH = 63

_BUILDER_TYPE = Callable[[DesiredState, RoleGroup, MergedConfig], dict]

# Objects rendered once for the whole cluster
_CLUSTER_BUILDERS: List[Tuple[ManifestKind, Callable[[DesiredState], dict]]] = [
    (ManifestKind.CONFIG, build_service_account),
    (ManifestKind.CONFIG, build_role_binding),
]


def _builders_for(role_group: RoleGroup) -> List[Tuple[ManifestKind, _BUILDER_TYPE]]:
    builders = [
        (ManifestKind.CONFIG, build_configmap),
        (ManifestKind.WORKLOAD, build_statefulset),
        (ManifestKind.NETWORK, build_headless_service),
    ]
    if role_group.role == constants.WEB_ROLE:
        builders.append((ManifestKind.NETWORK, build_http_service))
    return builders


def render(
    desired: DesiredState,
    configs: Mapping[str, MergedConfig],
) -> List[RenderedManifest]:
    """Render every object for the desired state

    Args:
        desired:  DesiredState
            The parsed custom resource
        configs:  Mapping[str, MergedConfig]
            The merged config for each role group, keyed by role group name

    Returns:
        manifests:  List[RenderedManifest]
            The objects in the order they must be applied

    Raises:
        InvariantError: if the inputs break a guarantee of the earlier stages
    """
    manifests = [
        _finalize(kind, None, builder(desired)) for kind, builder in _CLUSTER_BUILDERS
    ]
    for role_group in desired.role_groups:
        assert_invariant(
            role_group.replicas >= 0,
            f"Role group [{role_group.name}] reached rendering with negative replicas",
        )
        assert_invariant(
            role_group.name in configs,
            f"No merged config for role group [{role_group.name}]",
        )
        merged_config = configs[role_group.name]
        for kind, builder in _builders_for(role_group):
            body = builder(desired, role_group, merged_config)
            manifests.append(_finalize(kind, role_group, body))

    manifests.sort(key=lambda manifest: manifest.apply_order)
    names = [manifest.identity for manifest in manifests]
    assert_invariant(
        len(names) == len(set(names)), f"Rendered duplicate objects: {names}"
    )
    log.debug(
        "Rendered %d objects for [%s/%s]",
        len(manifests),
        desired.namespace,
        desired.name,
    )
    return manifests


def owned_object_selector(desired: DesiredState) -> str:
    """Label selector matching every object rendered for the desired state"""
    return ",".join(
        f"{key}={val}" for key, val in sorted(instance_labels(desired).items())
    )


def _finalize(
    kind: ManifestKind,
    role_group: Optional[RoleGroup],
    body: Dict,
) -> RenderedManifest:
    """Stamp the content hash on a built object and wrap it. Objects shared by
    the whole cluster have no role group.
    """
    metadata = body["metadata"]
    name = metadata["name"]
    assert_invariant(
        len(name) <= _MAX_NAME_LENGTH and _DNS_1035_LABEL.fullmatch(name),
        f"Rendered invalid object name [{name}]",
    )

    content_hash = obj_to_hash(body)
    body = copy.deepcopy(body)
    body["metadata"].setdefault("annotations", {})[
        constants.CONTENT_HASH_ANNOTATION
    ] = content_hash
    return RenderedManifest(
        kind=kind,
        api_version=body["apiVersion"],
        object_kind=body["kind"],
        name=name,
        namespace=metadata["namespace"],
        role_group=role_group.name if role_group is not None else "",
        content_hash=content_hash,
        body=body,
    )
