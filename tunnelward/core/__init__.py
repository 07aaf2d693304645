"""Core supervision components"""

from .health_monitor import HealthMonitor
from .locks import RunLock, store_lock
from .scheduler import CronScheduler
from .session_monitor import SessionMonitor

__all__ = [
    "HealthMonitor",
    "RunLock",
    "store_lock",
    "CronScheduler",
    "SessionMonitor",
]
