"""Full sync, live polling and recovery."""

from .engine import SyncEngine, SyncPhaseError
from .poller import SessionPoller
from .recovery import RecoverySweeper, force_reset_server, reset_stuck_servers
from .status import SyncStatusTracker

__all__ = [
    "RecoverySweeper",
    "SessionPoller",
    "SyncEngine",
    "SyncPhaseError",
    "SyncStatusTracker",
    "force_reset_server",
    "reset_stuck_servers",
]
