"""
Typed representation of the status the operator reports for an OdooCluster
"""

# Standard
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional


class Phase(Enum):
    """The states of the reconcile state machine"""

    PENDING = "Pending"
    PROGRESSING = "Progressing"
    READY = "Ready"
    FAILED = "Failed"


@dataclass(frozen=True)
class RoleGroupStatus:
    replicas: int
    ready_replicas: int

    @property
    def is_ready(self) -> bool:
        return self.ready_replicas >= self.replicas


@dataclass(frozen=True)
class ReconcileStatus:
    """Outcome of one reconcile pass for one OdooCluster"""

    name: str
    namespace: str
    observed_generation: int
    phase: Phase
    role_groups: Dict[str, RoleGroupStatus] = field(default_factory=dict)
    last_error: Optional[str] = None
    reason: Optional[str] = None
    message: str = ""
    paused: bool = False
    stopped: bool = False
