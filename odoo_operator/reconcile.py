"""
The Reconciler drives one OdooCluster towards its desired state. A single pass
fetches the resource, validates and merges its configuration, renders the
target objects, applies the ones that differ from the cluster, prunes the ones
that are no longer wanted, observes the workloads and reports status.
"""

# Standard
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
import copy
import datetime
import time

# First Party
import alog

# Local
from . import config, constants
from .deploy_manager import DeployManagerBase
from .deploy_manager.owner_references import is_owned_by
from .exceptions import (
    ConfigError,
    InvariantError,
    OperatorError,
    PlatformError,
    RenderError,
)
from .managed_object import ManagedObject
from .properties import MergedConfig, PropertySpecTable, validate_and_merge
from .render import owned_object_selector, render
from .render.metadata import workload_name
from .schema import (
    DesiredState,
    ManifestKind,
    Phase,
    ReconcileStatus,
    RenderedManifest,
    ResourceKey,
    RoleGroupStatus,
    parse_desired_state,
)
from .status import ReadyReason, ReportResult, StatusReporter
from .utils import is_subset, nested_get, parse_time_delta

log = alog.use_channel("RECON")

# The kinds that may be owned by an OdooCluster
OWNED_KINDS = [
    ("v1", "ServiceAccount"),
    ("rbac.authorization.k8s.io/v1", "RoleBinding"),
    ("v1", "ConfigMap"),
    ("apps/v1", "StatefulSet"),
    ("v1", "Service"),
]


@dataclass
class ReconciliationResult:
    """ReconciliationResult is the result of a reconciliation pass"""

    # Flag to control requeue of current reconcile request
    requeue: bool
    # How long to wait before the requeue
    requeue_after: datetime.timedelta = field(default_factory=datetime.timedelta)
    # The phase that was reported for the resource
    phase: Optional[Phase] = None
    # Workloads whose pods are rolled because a startup-only key changed
    restarted_workloads: List[str] = field(default_factory=list)
    # Flag to identify if the reconciliation raised an exception
    exception: Optional[Exception] = None


class Reconciler:
    """The Reconciler runs reconcile passes for OdooCluster resources. It is
    safe to share one instance between worker threads as long as no two
    threads reconcile the same key at once.
    """

    def __init__(
        self,
        deploy_manager: DeployManagerBase,
        property_specs: PropertySpecTable,
        status_reporter: Optional[StatusReporter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Construct with the collaborators for the passes

        Args:
            deploy_manager:  DeployManagerBase
                The deploy manager used to read and write the cluster
            property_specs:  PropertySpecTable
                The table used to validate configOverrides
            status_reporter:  Optional[StatusReporter]
                The reporter that writes status. One is built around the
                deploy manager if not given.
            sleep:  Callable[[float], None]
                Function used to wait between retries
        """
        self.deploy_manager = deploy_manager
        self.property_specs = property_specs
        self.status_reporter = status_reporter or StatusReporter(deploy_manager)
        self._sleep = sleep

    ## Public ##################################################################

    def reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """Run a single reconcile pass. The general path is as follows:

            1. Fetch the OdooCluster and report Pending on first sight
            2. Stop if reconciliation is paused
            3. Parse the resource and merge the config of each role group
            4. Render the target objects
            5. Apply every object that differs from the cluster
            6. Prune objects that are no longer rendered
            7. Observe the workloads and report the phase

        Args:
            key:  ResourceKey
                The namespace and name of the OdooCluster

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the pass
        """
        log.info("Reconciling [%s]", key, extra={"resource": key})
        try:
            manifest = self._call_with_backoff(
                f"fetch {key}",
                lambda: self.deploy_manager.get_object_current_state(
                    kind=constants.KIND,
                    name=key.name,
                    namespace=key.namespace,
                    api_version=constants.API_VERSION,
                ),
            )
        except PlatformError as err:
            log.warning("Failed to fetch [%s]: %s", key, err)
            return ReconciliationResult(
                requeue=True, requeue_after=self._error_requeue_after, exception=err
            )

        if manifest is None:
            log.debug("[%s] no longer exists. Nothing to do", key)
            return ReconciliationResult(requeue=False)
        if nested_get(manifest, "metadata.deletionTimestamp"):
            log.debug("[%s] is being deleted. Nothing to do", key)
            return ReconciliationResult(requeue=False)

        generation = nested_get(manifest, "metadata.generation") or 0
        stopped = _cluster_operation_flag(manifest, "stopped")

        # First sight of the resource
        if not manifest.get("status"):
            log.debug("First sight of [%s]. Reporting Pending", key)
            report_result = self._report(
                ReconcileStatus(
                    name=key.name,
                    namespace=key.namespace,
                    observed_generation=generation,
                    phase=Phase.PENDING,
                    stopped=stopped,
                )
            )
            if report_result == ReportResult.STALE:
                return self._requeue_now(Phase.PENDING)

        # If paused, report it and don't requeue
        if _cluster_operation_flag(manifest, "reconciliationPaused"):
            log.info("[%s] is paused. Exiting reconciliation", key)
            current_phase = (manifest.get("status") or {}).get("phase")
            try:
                phase = Phase(current_phase)
            except ValueError:
                phase = Phase.PENDING
            report_result = self._report(
                ReconcileStatus(
                    name=key.name,
                    namespace=key.namespace,
                    observed_generation=generation,
                    phase=phase,
                    message="Reconciliation is paused",
                    paused=True,
                    stopped=stopped,
                )
            )
            if report_result == ReportResult.STALE:
                return self._requeue_now(phase)
            return ReconciliationResult(requeue=False, phase=phase)

        # Parse the resource and merge the config of every role group
        try:
            desired = parse_desired_state(manifest)
            configs = self.merge_configs(desired)
        except ConfigError as err:
            log.warning("Invalid configuration for [%s]: %s", key, err)
            return self._fail(
                key, generation, stopped, err, ReadyReason.CONFIG_ERROR, requeue=False
            )

        # Render the target objects
        try:
            manifests = render(desired, configs)
        except RenderError as err:
            log.error("Failed to render [%s]: %s", key, err)
            reason = (
                ReadyReason.INVARIANT_ERROR
                if isinstance(err, InvariantError)
                else ReadyReason.ERRORED
            )
            return self._fail(key, generation, stopped, err, reason, requeue=False)

        # Drive the cluster to the target and observe the result
        try:
            changed, restarted = self.apply_manifests(manifests)
            self.prune(desired, manifests)
            role_groups, all_ready = self.observe_workloads(desired, changed)
        except PlatformError as err:
            log.warning("Cluster error while reconciling [%s]: %s", key, err)
            return self._fail(
                key,
                generation,
                stopped,
                err,
                ReadyReason.PLATFORM_ERROR,
                requeue=True,
            )

        # A pass that wrote anything is confirmed Ready by the next one
        phase = Phase.READY if all_ready and not changed else Phase.PROGRESSING
        report_result = self._report(
            ReconcileStatus(
                name=desired.name,
                namespace=desired.namespace,
                observed_generation=desired.generation,
                phase=phase,
                role_groups=role_groups,
                stopped=desired.cluster_operation.stopped,
            )
        )
        if report_result == ReportResult.STALE:
            return self._requeue_now(phase, restarted)

        log.info("[%s] is %s", key, phase.value)
        if phase == Phase.PROGRESSING:
            return ReconciliationResult(
                requeue=True,
                requeue_after=parse_time_delta(config.progress_requeue_period),
                phase=phase,
                restarted_workloads=restarted,
            )
        return ReconciliationResult(
            requeue=False, phase=phase, restarted_workloads=restarted
        )

    def safe_reconcile(self, key: ResourceKey) -> ReconciliationResult:
        """This function calls out to reconcile but catches any errors thrown.
        This function guarantees a safe result which is needed by the worker
        threads.

        Args:
            key:  ResourceKey
                The namespace and name of the OdooCluster

        Returns:
            reconcile_result:  ReconciliationResult
                The result of the reconcile
        """
        try:
            return self.reconcile(key)

        # Known errors are logged without a stack trace
        except OperatorError as exc:
            log.warning("Handling caught error in reconcile of [%s]: %s", key, exc)
            error = exc

        # Capture all generic exceptions
        except Exception as exc:  # pylint: disable=broad-except
            log.error(
                "Unexpected error in reconcile of [%s]: %s", key, exc, exc_info=True
            )
            error = exc

        log.info("Requeuing [%s] due to error during reconcile", key)
        return ReconciliationResult(
            requeue=True, requeue_after=self._error_requeue_after, exception=error
        )

    ## Reconciliation Stages ###################################################

    def merge_configs(self, desired: DesiredState) -> Dict[str, MergedConfig]:
        """Validate and merge the configOverrides of every role group

        Raises:
            ConfigError: if any override is unknown, mistyped or out of range
        """
        return {
            role_group.name: validate_and_merge(
                self.property_specs,
                desired.config_overrides,
                role_group.config_overrides,
                role=role_group.role,
            )
            for role_group in desired.role_groups
        }

    def apply_manifests(
        self, manifests: List[RenderedManifest]
    ) -> Tuple[Set[str], List[str]]:
        """Apply each manifest, in order, that differs from the cluster

        Args:
            manifests:  List[RenderedManifest]
                The rendered objects in apply order

        Returns:
            changed:  Set[str]
                The identities of the objects that were applied
            restarted:  List[str]
                The names of the workloads that roll because a startup-only
                key changed
        """
        changed = set()
        restarted_groups = set()
        for manifest in manifests:
            applied, live = self._call_with_backoff(
                f"apply {manifest.identity}",
                lambda manifest=manifest: self._apply_manifest(manifest),
            )
            if not applied:
                log.debug2("%s is up to date", manifest.identity)
                continue
            changed.add(manifest.identity)
            if (
                manifest.kind == ManifestKind.CONFIG
                and live is not None
                and _startup_hash(live) != _startup_hash(manifest.body)
            ):
                restarted_groups.add(manifest.role_group)

        restarted = [
            manifest.name
            for manifest in manifests
            if manifest.kind == ManifestKind.WORKLOAD
            and manifest.role_group in restarted_groups
        ]
        if restarted:
            log.info("Startup config changed. Restarting %s", restarted)
        return changed, restarted

    def prune(self, desired: DesiredState, manifests: List[RenderedManifest]):
        """Delete owned objects that are no longer part of the rendered set.
        Only objects owned by this OdooCluster are candidates. Objects are
        deleted in the reverse of the apply order.
        """
        targets = {(manifest.object_kind, manifest.name) for manifest in manifests}
        selector = owned_object_selector(desired)
        stale_objects = []
        for api_version, kind in OWNED_KINDS:
            current = self._call_with_backoff(
                f"list {kind}",
                lambda api_version=api_version, kind=kind: (
                    self.deploy_manager.filter_objects_current_state(
                        kind=kind,
                        namespace=desired.namespace,
                        api_version=api_version,
                        label_selector=selector,
                    )
                ),
            )
            for obj in current:
                resource = ManagedObject(obj)
                if (kind, resource.name) in targets:
                    continue
                if not is_owned_by(resource, constants.KIND, desired.uid):
                    log.debug2("Not pruning unowned %s/%s", kind, resource.name)
                    continue
                stale_objects.append(resource)

        for obj in reversed(stale_objects):
            log.info("Pruning %s/%s from [%s]", obj.kind, obj.name, desired.key)
            self._call_with_backoff(
                f"delete {obj}",
                lambda obj=obj: self.deploy_manager.delete(
                    kind=obj.kind,
                    name=obj.name,
                    namespace=obj.namespace,
                    api_version=obj.api_version,
                ),
            )

    def observe_workloads(
        self, desired: DesiredState, changed: Set[str]
    ) -> Tuple[Dict[str, RoleGroupStatus], bool]:
        """Read the readiness of every workload

        Returns:
            role_groups:  Dict[str, RoleGroupStatus]
                The replica counts of each role group
            all_ready:  bool
                True if every workload is fully rolled out and was not
                changed in this pass
        """
        role_groups = {}
        all_ready = True
        for role_group in desired.role_groups:
            target = 0 if desired.cluster_operation.stopped else role_group.replicas
            name = workload_name(desired, role_group)
            live = self._call_with_backoff(
                f"fetch StatefulSet/{name}",
                lambda name=name: self.deploy_manager.get_object_current_state(
                    kind="StatefulSet",
                    name=name,
                    namespace=desired.namespace,
                    api_version="apps/v1",
                ),
            )
            ready_replicas = nested_get(live or {}, "status.readyReplicas") or 0
            role_groups[role_group.name] = RoleGroupStatus(
                replicas=target, ready_replicas=ready_replicas
            )
            ready = (
                live is not None
                and f"{desired.namespace}/StatefulSet/{name}" not in changed
                and _workload_rolled_out(live, target)
            )
            log.debug2(
                "Workload %s: ready=%s (%d/%d)", name, ready, ready_replicas, target
            )
            all_ready = all_ready and ready
        return role_groups, all_ready

    ## Implementation Details ##################################################

    @property
    def _error_requeue_after(self) -> datetime.timedelta:
        return parse_time_delta(config.error_requeue_period)

    def _apply_manifest(
        self, manifest: RenderedManifest
    ) -> Tuple[bool, Optional[dict]]:
        """Apply a single manifest if needed. The live object is always read
        fresh so that a retry after a conflict uses the latest version.
        """
        live = self.deploy_manager.get_object_current_state(
            kind=manifest.object_kind,
            name=manifest.name,
            namespace=manifest.namespace,
            api_version=manifest.api_version,
        )
        if live is not None and _is_unchanged(manifest, live):
            return False, live

        body = copy.deepcopy(manifest.body)
        if live is not None:
            body["metadata"]["resourceVersion"] = nested_get(
                live, "metadata.resourceVersion"
            )
        log.debug("Applying %s", manifest.identity)
        self.deploy_manager.apply(body)
        return True, live

    def _call_with_backoff(self, description: str, func: Callable[[], Any]) -> Any:
        """Call the function and retry transient platform errors with an
        exponential backoff
        """
        attempts = max(1, int(config.platform_retry_attempts))
        for attempt in range(attempts):
            try:
                return func()
            except PlatformError as err:
                if not err.is_transient or attempt + 1 >= attempts:
                    raise
                delay = min(
                    float(config.retry_backoff_base_seconds) * 2**attempt,
                    float(config.retry_backoff_max_seconds),
                )
                log.debug(
                    "Failed to %s (%s). Retrying in %.2fs [%d/%d]",
                    description,
                    err.reason.value,
                    delay,
                    attempt + 1,
                    attempts,
                )
                self._sleep(delay)
        return None

    def _report(self, status: ReconcileStatus) -> ReportResult:
        result = self.status_reporter.report(status)
        log.debug2("Status report for [%s/%s]: %s", status.namespace, status.name, result)
        return result

    def _fail(
        self,
        key: ResourceKey,
        generation: int,
        stopped: bool,
        error: OperatorError,
        reason: ReadyReason,
        requeue: bool,
    ) -> ReconciliationResult:
        report_result = self._report(
            ReconcileStatus(
                name=key.name,
                namespace=key.namespace,
                observed_generation=generation,
                phase=Phase.FAILED,
                last_error=str(error),
                reason=reason.value,
                stopped=stopped,
            )
        )
        if report_result == ReportResult.STALE:
            return self._requeue_now(Phase.FAILED, exception=error)
        if not requeue:
            return ReconciliationResult(
                requeue=False, phase=Phase.FAILED, exception=error
            )
        return ReconciliationResult(
            requeue=True,
            requeue_after=self._error_requeue_after,
            phase=Phase.FAILED,
            exception=error,
        )

    @staticmethod
    def _requeue_now(
        phase: Phase,
        restarted: Optional[List[str]] = None,
        exception: Optional[Exception] = None,
    ) -> ReconciliationResult:
        log.debug("Resource changed during the pass. Requeuing immediately")
        return ReconciliationResult(
            requeue=True,
            phase=phase,
            restarted_workloads=restarted or [],
            exception=exception,
        )


def _cluster_operation_flag(manifest: dict, name: str) -> bool:
    spec = manifest.get("spec")
    operation = spec.get("clusterOperation") if isinstance(spec, dict) else None
    return isinstance(operation, dict) and bool(operation.get(name, False))


def _annotation(obj: dict, name: str) -> Optional[str]:
    return (nested_get(obj, "metadata.annotations") or {}).get(name)


def _startup_hash(obj: dict) -> Optional[str]:
    return _annotation(obj, constants.STARTUP_CONFIG_HASH_ANNOTATION)


def _is_unchanged(manifest: RenderedManifest, live: dict) -> bool:
    """A live object is unchanged when it carries the target hash and nobody
    has drifted any of the rendered fields
    """
    if _annotation(live, constants.CONTENT_HASH_ANNOTATION) != manifest.content_hash:
        return False
    if not is_subset(manifest.body, live):
        log.debug("Detected drift on %s", manifest.identity)
        return False
    return True


def _workload_rolled_out(live: dict, target: int) -> bool:
    observed_generation = nested_get(live, "status.observedGeneration")
    generation = nested_get(live, "metadata.generation")
    if (
        observed_generation is not None
        and generation is not None
        and observed_generation < generation
    ):
        return False
    ready = nested_get(live, "status.readyReplicas") or 0
    updated = nested_get(live, "status.updatedReplicas") or 0
    return ready == target and updated == target
