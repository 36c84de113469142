"""
Shared types for the events produced by DeployManager.watch_objects
"""

# Standard
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

# Local
from .. import constants
from ..managed_object import ManagedObject
from .owner_references import get_owner_name


class KubeEventType(Enum):
    """The event types of a kubernetes watch stream"""

    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


@dataclass
class KubeWatchEvent:
    """One change to a watched object"""

    type: KubeEventType
    resource: ManagedObject
    timestamp: datetime = field(default_factory=datetime.now)

    @property
    def cluster_name(self) -> Optional[str]:
        """The name of the OdooCluster this event belongs to: the object itself
        for an OdooCluster, its OdooCluster owner for a child. None when the
        object has no such owner.
        """
        if self.resource.kind == constants.KIND:
            return self.resource.name
        return get_owner_name(self.resource, constants.KIND)
