"""
Tests for the TimerThread
"""
# Standard
from datetime import datetime, timedelta
import threading
import time

# Third Party
import pytest

# Local
from odoo_operator.watch_manager.threads import TimerThread

## Helpers #####################################################################


class Counter:
    def __init__(self, initial_value=0):
        self.value = initial_value
        self.changed = threading.Event()

    def increment(self, value=1):
        self.value += value
        self.changed.set()


@pytest.mark.timeout(5)
def test_timer_thread_happy_path():
    timer = TimerThread()
    timer.start_thread()

    value_tracker = Counter()
    timer.put_event(datetime.now(), value_tracker.increment)
    timer.put_event(datetime.now() + timedelta(seconds=0.1), value_tracker.increment)
    timer.put_event(datetime.now() + timedelta(seconds=0.2), value_tracker.increment, 2)
    timer.put_event(
        datetime.now() + timedelta(seconds=0.3), value_tracker.increment, value=2
    )
    time.sleep(1)
    timer.stop_thread()
    assert value_tracker.value == 6
    assert timer.pending_events() == 0


@pytest.mark.timeout(5)
def test_timer_thread_canceled():
    timer = TimerThread()

    value_tracker = Counter()
    timer.put_event(datetime.now(), value_tracker.increment)
    canceled_event = timer.put_event(
        datetime.now() + timedelta(seconds=0.2), value_tracker.increment
    )
    canceled_event.cancel()
    assert timer.pending_events() == 1

    timer.start_thread()
    time.sleep(0.5)
    timer.stop_thread()
    assert value_tracker.value == 1


@pytest.mark.timeout(5)
def test_timer_thread_survives_failed_action():
    """Make sure an action that raises does not stop later events"""
    timer = TimerThread()
    timer.start_thread()

    def fail():
        raise RuntimeError("boom")

    value_tracker = Counter()
    timer.put_event(datetime.now(), fail)
    timer.put_event(datetime.now() + timedelta(seconds=0.1), value_tracker.increment)
    assert value_tracker.changed.wait(timeout=2)
    timer.stop_thread()
    assert value_tracker.value == 1


@pytest.mark.timeout(5)
def test_timer_thread_stopped():
    """Make sure a stopped timer exits and refuses new events"""
    timer = TimerThread()
    timer.start_thread()
    timer.put_event(datetime.now() + timedelta(hours=1), Counter().increment)
    timer.stop_thread()
    timer.join(timeout=2)
    assert not timer.is_alive()
    assert timer.put_event(datetime.now(), Counter().increment) is None
