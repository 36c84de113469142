"""
Watch management for the running operator
"""

# Local
from .watch_manager import OdooWatchManager
from .work_queue import ReconcileQueue
