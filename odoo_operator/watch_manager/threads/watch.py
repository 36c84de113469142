"""The WatchThread Class is responsible for monitoring the cluster for
resource events
"""

# Standard
from datetime import datetime
from typing import Callable, Optional

# Third Party
from kubernetes import watch

# First Party
import alog

# Local
from ... import config, constants
from ...deploy_manager import DeployManagerBase, KubeWatchEvent
from ...schema import ResourceKey
from ...utils import parse_time_delta
from .base import ThreadBase

log = alog.use_channel("WTCHTHRD")

# Forward declaration of ReconcileQueue
WORK_QUEUE_TYPE = "ReconcileQueue"


class WatchThread(ThreadBase):  # pylint: disable=too-many-instance-attributes
    """The WatchThread monitors the cluster for changes to one kind, either
    cluster-wide or in one namespace. Every event is mapped to the OdooCluster
    it belongs to, which is then queued for a reconcile. Events for objects
    without an OdooCluster owner are skipped.
    """

    def __init__(  # pylint: disable=too-many-arguments
        self,
        work_queue: WORK_QUEUE_TYPE,
        deploy_manager: DeployManagerBase,
        kind: str,
        api_version: str,
        namespace: Optional[str] = None,
        label_selector: Optional[str] = None,
        on_fatal: Optional[Callable[[str], None]] = None,
    ):
        """Initialize a WatchThread

        Args:
            work_queue: ReconcileQueue
                The queue to submit keys to
            deploy_manager: DeployManagerBase
                The deploy_manager to watch events
            kind: str
                The kind to watch
            api_version: str
                The api_version to watch
            namespace: Optional[str] = None
                The namespace to watch. If none then cluster-wide
            label_selector: Optional[str] = None
                Only watch objects matching this selector
            on_fatal: Optional[Callable[[str], None]] = None
                Called with a message when the watch has failed for longer
                than the grace period
        """
        self.work_queue = work_queue
        self.deploy_manager = deploy_manager
        self.kind = kind
        self.api_version = api_version
        self.namespace = namespace
        self.label_selector = label_selector
        self.on_fatal = on_fatal

        name = f"watch_thread_{self.api_version}_{self.kind}"
        if self.namespace:
            name = name + f"_{self.namespace}"
        super().__init__(name=name, daemon=True)

        # Setup kubernetes watch resource
        self.kubernetes_watch = watch.Watch()

        # Variables for tracking retries
        self.retry_delay = parse_time_delta(config.watch_retry_delay)
        self.grace_period = parse_time_delta(config.platform_grace_period)
        self.failing_since: Optional[datetime] = None

    def run(self):
        """The WatchThread's control loop continuously watches the
        DeployManager for new events. A failed watch is restarted every
        watch_retry_delay until it has failed for longer than the
        platform_grace_period. A stream that ends cleanly, or that stayed open
        for longer than the grace period, starts a new failure window.
        """
        resource_version = None
        while not self.should_stop():
            attempt_started = datetime.now()
            try:
                for event in self.deploy_manager.watch_objects(
                    self.kind,
                    self.api_version,
                    namespace=self.namespace,
                    label_selector=self.label_selector,
                    resource_version=resource_version,
                    watch_manager=self.kubernetes_watch,
                ):
                    if self.should_stop():
                        log.debug("Shutting down %s", self.name)
                        return
                    self.failing_since = None
                    resource_version = event.resource.resource_version
                    self.handle_event(event)

                log.debug("Watch stream for %s ended", self.name)
                self.failing_since = None
            except Exception as exc:  # pylint: disable=broad-except
                log.info(
                    "Exception raised when attempting to watch %s: %s",
                    self.kind,
                    repr(exc),
                    exc_info=True,
                )
                now = datetime.now()
                if now - attempt_started > self.grace_period:
                    self.failing_since = None
                self.failing_since = self.failing_since or now
                if now - self.failing_since > self.grace_period:
                    message = (
                        f"Unable to watch {self.kind} for longer than "
                        f"{self.grace_period}: {exc}"
                    )
                    log.error(message)
                    if self.on_fatal:
                        self.on_fatal(message)
                    return

                if not self.wait_or_stop(self.retry_delay.total_seconds()):
                    log.debug("Shutting down %s during retry", self.name)
                    return
                log.info("Restarting watch for %s", self.kind)

    ## Class Interface ###################################################

    def stop_thread(self):
        """Override stop_thread to stop the kubernetes client's Watch as well"""
        super().stop_thread()
        self.kubernetes_watch.stop()

    ## Public Interface ###################################################

    def handle_event(self, event: KubeWatchEvent) -> Optional[ResourceKey]:
        """Queue the OdooCluster an event belongs to

        Returns:
            key:  Optional[ResourceKey]
                The key that was queued, if any
        """
        resource = event.resource
        owner_name = event.cluster_name
        if not owner_name:
            log.debug3("Skipping %s without an %s owner", resource, constants.KIND)
            return None

        key = ResourceKey(namespace=resource.namespace, name=owner_name)
        log.debug2(
            "%s event for %s queues %s",
            event.type.value,
            resource,
            key,
            extra={"resource": key},
        )
        self.work_queue.add(key)
        return key
