"""
Threads used by the OdooWatchManager
"""

# Local
from .base import ThreadBase
from .heartbeat import HeartbeatThread
from .reconcile import ReconcileThread
from .timer import TimerEvent, TimerThread
from .watch import WatchThread
