"""
The ReconcileThread is one worker of the pool that runs reconcile passes
"""

# First Party
import alog

# Local
from ... import config
from ...reconcile import Reconciler, ReconciliationResult
from ...schema import ResourceKey
from ...utils import parse_time_delta
from .base import ThreadBase

log = alog.use_channel("RCLTHRD")

# Forward declaration of ReconcileQueue
WORK_QUEUE_TYPE = "ReconcileQueue"

# How long a worker waits for a key before checking for shutdown
GET_TIMEOUT = 1.0


class ReconcileThread(ThreadBase):
    """A worker loops over get -> reconcile -> done -> schedule. The queue
    makes sure two workers never reconcile the same key at once.
    """

    def __init__(
        self,
        reconciler: Reconciler,
        work_queue: WORK_QUEUE_TYPE,
        index: int = 0,
    ):
        super().__init__(name=f"reconcile_thread_{index}", daemon=True)
        self.reconciler = reconciler
        self.work_queue = work_queue
        self._resync_period = parse_time_delta(config.resync_period)

    def run(self):
        while not self.should_stop():
            key = self.work_queue.get(timeout=GET_TIMEOUT)
            if key is None:
                if self.work_queue.shutting_down:
                    return
                continue

            log.debug2("%s picked up %s", self.name, key)
            try:
                result = self.reconciler.safe_reconcile(key)
                self._schedule_next(key, result)
            finally:
                self.work_queue.done(key)

    ## Class Interface #########################################################

    def stop_thread(self):
        """Override stop_thread to wake a waiting worker"""
        super().stop_thread()
        self.work_queue.shut_down()

    ## Implementation Details ##################################################

    def _schedule_next(
        self, key: ResourceKey, result: ReconciliationResult
    ):
        """Schedule the next pass for a key. A requested requeue wins over
        the periodic resync."""
        if result.requeue:
            log.debug("Requeuing %s in %s", key, result.requeue_after)
            self.work_queue.add_after(key, result.requeue_after)
        elif result.phase is None:
            log.debug2("%s is gone. Not scheduling a resync", key)
            self.work_queue.forget(key)
        elif result.exception is None and self._resync_period:
            log.debug2("Resyncing %s in %s", key, self._resync_period)
            self.work_queue.add_after(key, self._resync_period)
