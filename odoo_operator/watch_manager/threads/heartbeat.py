"""
Thread class that will dump a heartbeat to a file periodically
"""

# Standard
from datetime import datetime
from typing import Callable, Optional
import threading

# First Party
import alog

# Local
from ...utils import parse_time_delta
from .timer import TimerThread

log = alog.use_channel("HBEAT")


class HeartbeatThread(TimerThread):
    """The HeartbeatThread acts as a pulse for the OdooWatchManager.

    Every period the value of "now" is written to a file which the
    check-heartbeat command reads from a liveness probe. While the manager
    reports itself unhealthy no beat is written, so the probe fails once the
    file is older than the probe's delta.
    """

    # Readable with `date -d "$(cat heartbeat.txt)"` using GNU date
    _DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

    def __init__(
        self,
        heartbeat_file: str,
        heartbeat_period: str,
        is_healthy: Optional[Callable[[], bool]] = None,
    ):
        """
        Args:
            heartbeat_file: str
                The fully-qualified path to the heartbeat file
            heartbeat_period: str
                Time delta string between beats. Must be >= 1s since the
                timestamp carries no sub-seconds.
            is_healthy: Optional[Callable[[], bool]]
                Check run before each beat. Beats are skipped while it
                returns False.
        """
        self._heartbeat_file = heartbeat_file
        self._period = parse_time_delta(heartbeat_period)
        self._is_healthy = is_healthy or (lambda: True)
        self._beat_condition = threading.Condition()
        self._beat_count = 0
        super().__init__(name="heartbeat_thread")

    def run(self):
        self._beat()
        return super().run()

    @property
    def beat_count(self) -> int:
        with self._beat_condition:
            return self._beat_count

    def wait_for_beat(self, timeout: Optional[float] = None) -> bool:
        """Block until the next beat has been written

        Returns:
            beat:  bool
                False if the timeout expired first
        """
        with self._beat_condition:
            start = self._beat_count
            return self._beat_condition.wait_for(
                lambda: self._beat_count > start, timeout=timeout
            )

    def _beat(self):
        now = datetime.now()
        if self._is_healthy():
            log.debug3("Heartbeat %s", now)
            try:
                with open(self._heartbeat_file, "w", encoding="utf-8") as handle:
                    handle.write(now.strftime(self._DATE_FORMAT))
                    handle.flush()
            except OSError as err:
                log.warning("Failed to write heartbeat file: %s", err)
            else:
                with self._beat_condition:
                    self._beat_count += 1
                    self._beat_condition.notify_all()
        else:
            log.warning("Skipping heartbeat while the watch manager is unhealthy")

        if not self.should_stop():
            self.put_event(now + self._period, self._beat)
