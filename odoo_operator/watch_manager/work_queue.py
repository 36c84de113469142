"""
The ReconcileQueue hands OdooCluster keys to the worker threads. It guarantees
that a key is never processed by two workers at once and that bursts of
events for one key collapse into a single pass.
"""

# Standard
from collections import deque
from datetime import datetime, timedelta
from typing import Deque, Dict, Hashable, Optional, Set
import threading

# First Party
import alog

# Local
from .threads.timer import TimerEvent, TimerThread

log = alog.use_channel("WRKQ")


class ReconcileQueue:
    """A bounded, keyed, coalescing work queue

    A key lives in at most one of three places:

    * queued: waiting for a worker (also tracked in dirty)
    * processing: handed to a worker and not yet done
    * dirty while processing: re-added during a pass, queued again on done()
    """

    def __init__(
        self,
        max_size: Optional[int] = None,
        timer_thread: Optional[TimerThread] = None,
    ):
        """
        Args:
            max_size:  Optional[int]
                The number of keys that may wait at once. Unbounded if not set.
            timer_thread:  Optional[TimerThread]
                The timer used for add_after. A private one is started on first
                use if not given.
        """
        self._max_size = max_size
        self._queue: Deque[Hashable] = deque()
        self._dirty: Set[Hashable] = set()
        self._processing: Set[Hashable] = set()
        self._timers: Dict[Hashable, TimerEvent] = {}
        self._shutting_down = False
        self._condition = threading.Condition()
        self._timer_thread = timer_thread

    ## Public ##################################################################

    def add(self, key: Hashable) -> bool:
        """Mark a key as needing a pass. Blocks while the queue is full.

        Returns:
            added:  bool
                False if the queue was shut down
        """
        with self._condition:
            if self._shutting_down:
                log.debug2("Dropping %s from shut down queue", key)
                return False
            if key in self._dirty:
                log.debug3("Coalescing %s with pending request", key)
                return True
            self._dirty.add(key)
            if key in self._processing:
                log.debug3("%s is in flight. Queuing after done", key)
                return True

            while self._is_full() and not self._shutting_down:
                log.debug2("Queue full. Waiting to add %s", key)
                self._condition.wait()
            if self._shutting_down:
                self._dirty.discard(key)
                return False

            self._queue.append(key)
            self._condition.notify_all()
            return True

    def add_after(self, key: Hashable, delay: timedelta) -> Optional[TimerEvent]:
        """Add a key once the delay has passed. Only the latest timer for a
        key stays live.

        Returns:
            timer_event:  Optional[TimerEvent]
                The scheduled event, or None if the key was added right away
        """
        with self._condition:
            if self._shutting_down:
                return None
            previous = self._timers.pop(key, None)
            if previous is not None:
                previous.cancel()

        if delay <= timedelta(0):
            self.add(key)
            return None

        event = self._get_timer_thread().put_event(
            datetime.now() + delay, self._fire_timer, key
        )
        if event is not None:
            with self._condition:
                self._timers[key] = event
        log.debug3("Scheduled %s in %s", key, delay)
        return event

    def get(self, timeout: Optional[float] = None) -> Optional[Hashable]:
        """Wait for a key to process. The caller must call done() with it.

        Returns:
            key:  Optional[Hashable]
                The key, or None on shutdown or timeout
        """
        with self._condition:
            if not self._condition.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if self._shutting_down:
                return None
            key = self._queue.popleft()
            self._dirty.discard(key)
            self._processing.add(key)
            self._condition.notify_all()
            return key

    def done(self, key: Hashable):
        """Finish processing a key. A key re-added during the pass is queued
        again right away."""
        with self._condition:
            self._processing.discard(key)
            if key in self._dirty and not self._shutting_down:
                log.debug3("Re-queuing %s which changed while in flight", key)
                self._queue.append(key)
            self._condition.notify_all()

    def forget(self, key: Hashable):
        """Cancel the scheduled pass for a key that no longer exists"""
        with self._condition:
            event = self._timers.pop(key, None)
        if event is not None:
            log.debug3("Cancelled scheduled pass for %s", key)
            event.cancel()

    def shut_down(self):
        """Stop handing out keys and cancel every timer"""
        with self._condition:
            self._shutting_down = True
            for event in self._timers.values():
                event.cancel()
            self._timers.clear()
            self._condition.notify_all()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Wait until nothing is queued or in flight. Scheduled timers do not
        count.

        Returns:
            idle:  bool
                False if the timeout expired first
        """
        with self._condition:
            return self._condition.wait_for(
                lambda: not self._queue and not self._processing, timeout=timeout
            )

    @property
    def shutting_down(self) -> bool:
        with self._condition:
            return self._shutting_down

    def is_scheduled(self, key: Hashable) -> bool:
        with self._condition:
            event = self._timers.get(key)
            return event is not None and not event.stale

    def __len__(self) -> int:
        with self._condition:
            return len(self._queue)

    def __contains__(self, key: Hashable) -> bool:
        with self._condition:
            return key in self._dirty or key in self._processing

    ## Implementation Details ##################################################

    def _is_full(self) -> bool:
        return bool(self._max_size) and len(self._queue) >= self._max_size

    def _fire_timer(self, key: Hashable):
        with self._condition:
            self._timers.pop(key, None)
        self.add(key)

    def _get_timer_thread(self) -> TimerThread:
        with self._condition:
            if self._timer_thread is None:
                self._timer_thread = TimerThread(name="work_queue_timer")
            timer_thread = self._timer_thread
        timer_thread.start_thread()
        return timer_thread
