"""
The OdooWatchManager owns every thread of a running operator
"""

# Standard
from typing import List, Optional
import os
import threading

# First Party
import alog

# Local
from .. import config, constants
from ..deploy_manager import DeployManagerBase, OpenshiftDeployManager
from ..properties import PropertySpecTable
from ..reconcile import OWNED_KINDS, Reconciler
from .threads import HeartbeatThread, ReconcileThread, TimerThread, WatchThread
from .work_queue import ReconcileQueue

log = alog.use_channel("WTCHMGR")


class OdooWatchManager:
    """The OdooWatchManager uses the kubernetes watch client to watch
    OdooCluster resources and the objects they own, and runs a pool of
    reconcile workers. It does the following:

    1. Start a watch thread per watched kind and namespace
    2. Start the reconcile workers that drain the shared queue
    3. Optionally start a heartbeat for liveness probes
    """

    def __init__(
        self,
        property_specs: PropertySpecTable,
        deploy_manager: Optional[DeployManagerBase] = None,
        namespace_list: Optional[List[str]] = None,
    ):
        """Initialize the required threads
        Args:
            property_specs: PropertySpecTable
                The table used to validate configOverrides
            deploy_manager: Optional[DeployManagerBase] = None
                An optional DeployManager override
            namespace_list: Optional[List[str]] = []
                A list of namespaces to watch
        """
        # Handle functional args
        if deploy_manager is None:
            log.debug("Using OpenshiftDeployManager")
            deploy_manager = OpenshiftDeployManager()
        self.deploy_manager = deploy_manager

        # Setup watch namespace
        self.namespace_list = namespace_list or []
        if not namespace_list and config.watch_namespace:
            self.namespace_list = [
                namespace.strip()
                for namespace in config.watch_namespace.split(",")
                if namespace.strip()
            ]

        # Setup Control variables
        self.shutdown = threading.Event()
        self._fatal_lock = threading.Lock()
        self.fatal_error: Optional[str] = None

        # Setup the shared queue and the workers
        self.timer_thread = TimerThread(name="requeue_timer")
        self.work_queue = ReconcileQueue(
            max_size=config.queue_max_size, timer_thread=self.timer_thread
        )
        self.reconciler = Reconciler(self.deploy_manager, property_specs)
        worker_count = int(config.workers or os.cpu_count() or 1)
        self.reconcile_threads = [
            ReconcileThread(self.reconciler, self.work_queue, index)
            for index in range(worker_count)
        ]

        self.heartbeat_thread: Optional[HeartbeatThread] = None
        if config.heartbeat_file:
            self.heartbeat_thread = HeartbeatThread(
                config.heartbeat_file,
                config.heartbeat_period,
                is_healthy=self.is_healthy,
            )

        # Start a watch for the custom resource and every owned kind
        self.watch_threads: List[WatchThread] = []
        namespaces = self.namespace_list
        if not namespaces or "*" in namespaces:
            namespaces = [None]
        for namespace in namespaces:
            self.watch_threads.append(
                self._make_watch(constants.API_VERSION, constants.KIND, namespace)
            )
            for api_version, kind in OWNED_KINDS:
                self.watch_threads.append(
                    self._make_watch(
                        api_version,
                        kind,
                        namespace,
                        f"{constants.MANAGED_BY_LABEL}={constants.OPERATOR_NAME}",
                    )
                )

    ## Interface ###############################################################

    def watch(self) -> bool:
        """Start all threads

        Returns:
            success:  bool
                True if all threads are running
        """
        log.info("Starting OdooWatchManager with %d workers", len(self.reconcile_threads))

        # If watch has been shutdown then exit before starting threads
        if self.shutdown.is_set():
            return False

        self.timer_thread.start_thread()
        for reconcile_thread in self.reconcile_threads:
            reconcile_thread.start_thread()
        for watch_thread in self.watch_threads:
            log.debug("Starting watch_thread: %s", watch_thread.name)
            watch_thread.start_thread()
        if self.heartbeat_thread:
            log.debug("Starting heartbeat_thread")
            self.heartbeat_thread.start_thread()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Wait shutdown to be signaled

        Returns:
            stopped:  bool
                False if the timeout expired first
        """
        return self.shutdown.wait(timeout)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until no key is queued or being reconciled"""
        return self.work_queue.wait_idle(timeout)

    def stop(self):
        """Stop all threads. This waits for in-flight reconciles to finish"""
        log.info("Stopping OdooWatchManager")
        self.shutdown.set()

        for watch_thread in self.watch_threads:
            watch_thread.stop_thread()
        self.work_queue.shut_down()
        for reconcile_thread in self.reconcile_threads:
            reconcile_thread.stop_thread()
        for reconcile_thread in self.reconcile_threads:
            if reconcile_thread.is_alive():
                reconcile_thread.join()
        self.timer_thread.stop_thread()
        if self.heartbeat_thread:
            self.heartbeat_thread.stop_thread()

    def is_healthy(self) -> bool:
        with self._fatal_lock:
            return self.fatal_error is None

    @property
    def exit_code(self) -> int:
        return 0 if self.is_healthy() else 1

    def mark_fatal(self, message: str):
        """Record an unrecoverable failure and wake anyone waiting"""
        with self._fatal_lock:
            if self.fatal_error is None:
                self.fatal_error = message
        log.error("Watch manager failed: %s", message)
        self.shutdown.set()

    ## Helper Functions ########################################################

    def _make_watch(
        self,
        api_version: str,
        kind: str,
        namespace: Optional[str],
        label_selector: Optional[str] = None,
    ) -> WatchThread:
        log.debug3("Adding watch for %s/%s in %s", api_version, kind, namespace or "*")
        return WatchThread(
            work_queue=self.work_queue,
            deploy_manager=self.deploy_manager,
            kind=kind,
            api_version=api_version,
            namespace=namespace,
            label_selector=label_selector,
            on_fatal=self.mark_fatal,
        )
