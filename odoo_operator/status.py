"""
This module holds the common functionality used to represent the status of
OdooCluster resources and to write it back to the cluster.

The status carries the following orthogonal conditions:

* Ready: True if every role group has all of its replicas ready
* Progressing: True while a change is being rolled out
* ReconciliationPaused: True if the user paused reconciliation
* Stopped: True if the user scaled every workload to zero

Additionally, the top-level status holds:
{
    "phase": "Pending | Progressing | Ready | Failed",
    "observedGeneration": <generation of the spec that was reconciled>,
    "roleGroups": {<name>: {"replicas": N, "readyReplicas": M}},
    "lastError": <message of the last error, absent when healthy>,
    "operatorVersion": <version of the operator>,
}
"""

# Standard
from datetime import datetime
from enum import Enum
from typing import Optional
import copy

# Third Party
from deepdiff import DeepDiff

# First Party
import alog

# Local
from . import config, constants
from .deploy_manager import DeployManagerBase
from .exceptions import PlatformError, PlatformErrorReason
from .schema import Phase, ReconcileStatus

log = alog.use_channel("STTUS")

## Public ######################################################################

# The "type" values in the condition
READY_CONDITION = "Ready"
PROGRESSING_CONDITION = "Progressing"
PAUSED_CONDITION = "ReconciliationPaused"
STOPPED_CONDITION = "Stopped"
MANAGED_CONDITIONS = [
    READY_CONDITION,
    PROGRESSING_CONDITION,
    PAUSED_CONDITION,
    STOPPED_CONDITION,
]

# The key in the condition used for the timestamp
TIMESTAMP_KEY = "lastTransactionTime"

# The top-level status keys managed by the operator
PHASE = "phase"
OBSERVED_GENERATION = "observedGeneration"
ROLE_GROUPS = "roleGroups"
LAST_ERROR = "lastError"
OPERATOR_VERSION = "operatorVersion"
MANAGED_KEYS = [PHASE, OBSERVED_GENERATION, ROLE_GROUPS, LAST_ERROR, OPERATOR_VERSION]


class ReadyReason(Enum):
    """Reason constants for the Ready condition"""

    # Every role group is fully ready
    STABLE = "Stable"

    # Nothing has been applied yet
    INITIALIZING = "Initializing"

    # Replicas are still coming up
    IN_PROGRESS = "InProgress"

    # The workloads are scaled to zero on purpose
    STOPPED = "Stopped"

    # The reconcile failed
    ERRORED = "Errored"

    # The user supplied an invalid configuration
    CONFIG_ERROR = "ConfigError"

    # The rendered objects broke an internal guarantee
    INVARIANT_ERROR = "InvariantError"

    # The cluster rejected or failed a request
    PLATFORM_ERROR = "PlatformError"


class ProgressingReason(Enum):
    """Reason constants for the Progressing condition"""

    # There is nothing left to roll out
    STABLE = "Stable"

    # The resource has been seen but not yet reconciled
    PENDING = "Pending"

    # Workloads are rolling out a change
    ROLLING_OUT = "RollingOut"

    # Reconciliation is paused by the user
    PAUSED = "Paused"

    # The reconcile failed and is not making progress
    ERRORED = "Errored"


class ReportResult(Enum):
    """The outcome of a status report"""

    WRITTEN = "Written"
    UNCHANGED = "Unchanged"
    STALE = "Stale"
    DROPPED = "Dropped"


def make_status(status: ReconcileStatus, now: Optional[datetime] = None) -> dict:
    """Create the status object owned by the operator

    Args:
        status:  ReconcileStatus
            The outcome of a reconcile pass
        now:  Optional[datetime]
            The timestamp to stamp on the conditions

    Returns:
        status_dict:  dict
            Dict representation of the status
    """
    now = now or datetime.now()
    ready_reason, progressing_reason = _phase_reasons(status)
    message = status.message or status.last_error or ""
    conditions = [
        _make_condition(
            READY_CONDITION,
            status.phase == Phase.READY,
            ready_reason,
            message,
            now,
        ),
        _make_condition(
            PROGRESSING_CONDITION,
            status.phase in [Phase.PENDING, Phase.PROGRESSING],
            progressing_reason,
            message,
            now,
        ),
        _make_condition(
            PAUSED_CONDITION,
            status.paused,
            ProgressingReason.PAUSED.value if status.paused else "",
            "",
            now,
        ),
        _make_condition(
            STOPPED_CONDITION,
            status.stopped,
            ReadyReason.STOPPED.value if status.stopped else "",
            "",
            now,
        ),
    ]
    status_dict = {
        "conditions": conditions,
        PHASE: status.phase.value,
        OBSERVED_GENERATION: status.observed_generation,
        ROLE_GROUPS: {
            name: {
                "replicas": role_group.replicas,
                "readyReplicas": role_group.ready_replicas,
            }
            for name, role_group in sorted(status.role_groups.items())
        },
        OPERATOR_VERSION: config.operator_version,
    }
    if status.last_error:
        status_dict[LAST_ERROR] = status.last_error
    return status_dict


def update_status(current_status: dict, status: ReconcileStatus) -> dict:
    """Create an updated status based on the values in the current status.
    Conditions and keys not managed by the operator are preserved, and a
    condition keeps its timestamp unless its status flips.

    Args:
        current_status:  dict
            The dict representation of the status currently on the resource
        status:  ReconcileStatus
            The outcome of the reconcile pass

    Returns:
        updated_status:  dict
            Updated dict representation of the status
    """
    # Make a deep copy so that we aren't accidentally modifying the current
    # status object. This prevents a bug where status changes are not detected
    current_status = copy.deepcopy(current_status or {})
    new_status = make_status(status)

    current_conditions = current_status.get("conditions", [])
    current_condition_map = {cond.get("type"): cond for cond in current_conditions}
    for condition in new_status["conditions"]:
        previous = current_condition_map.get(condition["type"])
        if previous and previous.get("status") == condition["status"]:
            condition[TIMESTAMP_KEY] = previous.get(
                TIMESTAMP_KEY, condition[TIMESTAMP_KEY]
            )

    # Keep conditions managed by something else
    external_conditions = [
        cond for cond in current_conditions if cond.get("type") not in MANAGED_CONDITIONS
    ]
    log.debug3("External conditions: %s", external_conditions)
    new_status["conditions"].extend(external_conditions)

    # Keep other top level elements that the operator does not own
    for key, val in current_status.items():
        if key != "conditions" and key not in MANAGED_KEYS:
            new_status[key] = val
    return new_status


def status_changed(current_status: dict, new_status: dict) -> bool:
    """Compare two status objects to determine if there is a meaningful change
    between the current status and the proposed new status. A meaningful change
    is defined as any change besides a timestamp.

    Args:
        current_status:  dict
            The raw status dict from the current CR
        new_status:  dict
            The proposed new status

    Returns:
        status_changed:  bool
            True if there is a meaningful change between the current status and
            the new status
    """
    # Status objects must be dicts
    if not isinstance(current_status, dict) or not isinstance(new_status, dict):
        return True

    # Perform a deep diff, excluding timestamps
    return bool(
        DeepDiff(
            current_status,
            new_status,
            exclude_obj_callback=lambda _, path: path.endswith(f"{TIMESTAMP_KEY}']"),
        )
    )


def get_condition(type_name: str, current_status: dict) -> dict:
    """Extract the given condition type from a status object

    Args:
        type_name:  str
            The condition type to fetch
        current_status:  dict
            The dict representation of the status for a given application

    Returns:
        condition:  dict
            The condition object if found, empty dict otherwise
    """
    cond = [
        cond
        for cond in (current_status or {}).get("conditions", [])
        if cond.get("type") == type_name
    ]
    if cond:
        assert len(cond) == 1, f"Found multiple condition entries for {type_name}"
        return cond[0]
    return {}


class StatusReporter:
    """The StatusReporter is the only place that writes the status
    subresource. Status is best-effort: a write that conflicts is retried once
    against the latest version and then dropped.
    """

    def __init__(self, deploy_manager: DeployManagerBase):
        self._deploy_manager = deploy_manager

    def report(self, status: ReconcileStatus) -> ReportResult:
        """Write the status onto the owning OdooCluster

        Args:
            status:  ReconcileStatus
                The outcome of the reconcile pass

        Returns:
            result:  ReportResult
                STALE if the resource changed since the pass started, in which
                case nothing is written
        """
        for attempt in range(2):
            try:
                current = self._deploy_manager.get_object_current_state(
                    kind=constants.KIND,
                    name=status.name,
                    namespace=status.namespace,
                    api_version=constants.API_VERSION,
                )
            except PlatformError as err:
                log.warning(
                    "Failed to fetch [%s/%s] for status update: %s",
                    status.namespace,
                    status.name,
                    err,
                )
                return ReportResult.DROPPED
            if current is None:
                log.debug("[%s/%s] is gone. Not updating status", status.namespace, status.name)
                return ReportResult.DROPPED

            # The spec moved on while the pass was running
            metadata = current.get("metadata", {})
            if (metadata.get("generation") or 0) > status.observed_generation:
                log.debug(
                    "Status for [%s/%s] is stale (generation %s > %s)",
                    status.namespace,
                    status.name,
                    metadata.get("generation"),
                    status.observed_generation,
                )
                return ReportResult.STALE

            current_status = current.get("status") or {}
            new_status = update_status(current_status, status)
            if not status_changed(current_status, new_status):
                log.debug2("No meaningful status change for [%s]", status.name)
                return ReportResult.UNCHANGED

            log.debug("Found meaningful change. Updating status")
            log.debug2("(current) %s != (updated) %s", current_status, new_status)
            try:
                self._deploy_manager.set_status(
                    kind=constants.KIND,
                    name=status.name,
                    namespace=status.namespace,
                    status=new_status,
                    api_version=constants.API_VERSION,
                    resource_version=metadata.get("resourceVersion"),
                )
                return ReportResult.WRITTEN
            except PlatformError as err:
                if err.reason == PlatformErrorReason.CONFLICT and attempt == 0:
                    log.debug("Status write conflicted. Retrying with latest version")
                    continue

                # Since this is just a status update, we don't fail if the
                # update fails, but we do throw a warning
                log.warning(
                    "Failed to update status for [%s/%s]: %s",
                    status.namespace,
                    status.name,
                    err,
                )
                return ReportResult.DROPPED
        return ReportResult.DROPPED


## Implementation Details ######################################################


def _phase_reasons(status: ReconcileStatus):
    if status.phase == Phase.PENDING:
        return ReadyReason.INITIALIZING.value, ProgressingReason.PENDING.value
    if status.phase == Phase.PROGRESSING:
        return ReadyReason.IN_PROGRESS.value, ProgressingReason.ROLLING_OUT.value
    if status.phase == Phase.READY:
        ready_reason = ReadyReason.STOPPED if status.stopped else ReadyReason.STABLE
        return ready_reason.value, ProgressingReason.STABLE.value
    reason = status.reason or ReadyReason.ERRORED.value
    return reason, reason


def _make_condition(
    type_name: str,
    condition_status: bool,
    reason: str,
    message: str,
    now: datetime,
) -> dict:
    return {
        "type": type_name,
        "status": str(condition_status),
        "reason": reason,
        "message": message,
        TIMESTAMP_KEY: now.strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
