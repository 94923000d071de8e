"""
Port Watch — liveness monitor for local HTTP ports.

Modules:
- probe: two-tier HTTP reachability check
- status_store: latest status per watched entry
- checker: concurrent check_one / check_all
- scheduler: jittered auto-refresh timer
- monitor: wiring for a UI (watchlist + store + checker + scheduler)
"""

from .checker import PortChecker
from .monitor import PortMonitor
from .probe import ActiveResult, InactiveResult, probe
from .scheduler import PollScheduler
from .status_store import StatusStore

__all__ = [
    "PortChecker",
    "PortMonitor",
    "ActiveResult",
    "InactiveResult",
    "probe",
    "PollScheduler",
    "StatusStore",
]
