"""
Typed representation of the objects the renderer produces
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

# Local
from .. import constants


class ManifestKind(Enum):
    """The part a rendered object plays. The value is the apply order."""

    CONFIG = 0
    WORKLOAD = 1
    NETWORK = 2


@dataclass(frozen=True)
class RenderedManifest:
    """A concrete object to be created or updated in the cluster"""

    kind: ManifestKind
    api_version: str
    object_kind: str
    name: str
    namespace: str
    role_group: str
    content_hash: str
    body: Dict[str, Any] = field(compare=False, repr=False)

    @property
    def apply_order(self):
        return (self.kind.value, self.name)

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.object_kind}/{self.name}"


def get_content_hash(manifest: Optional[Dict[str, Any]]) -> Optional[str]:
    """Read the content hash annotation from a live or rendered object"""
    if not manifest:
        return None
    annotations = manifest.get("metadata", {}).get("annotations") or {}
    return annotations.get(constants.CONTENT_HASH_ANNOTATION)
