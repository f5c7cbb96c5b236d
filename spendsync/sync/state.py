"""Observable sync state.

SyncState holds the current SyncSnapshot and notifies listeners after every
change. Listeners run synchronously on the caller's thread; a listener that
raises is logged and skipped.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from spendsync.types import SyncStatistics, format_datetime

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    WAITING_FOR_NETWORK = "waiting_for_network"
    ERROR = "error"


@dataclass
class SyncSnapshot:
    """Everything a status display needs about sync."""

    phase: SyncPhase = SyncPhase.IDLE
    has_completed_initial_sync: bool = False
    last_error: Optional[str] = None
    progress_message: str = ""
    last_sync_date: Optional[datetime] = None
    pending_changes_count: int = 0
    statistics: SyncStatistics = field(default_factory=SyncStatistics)

    @property
    def is_syncing(self) -> bool:
        return self.phase is SyncPhase.SYNCING

    @property
    def display_text(self) -> str:
        if self.phase is SyncPhase.SYNCING:
            return "Syncing..."
        if self.phase is SyncPhase.WAITING_FOR_NETWORK:
            return "Waiting for connection"
        if self.phase is SyncPhase.ERROR:
            return self.last_error or "Sync failed"
        return "Up to date"

    def to_dict(self) -> Dict[str, Any]:
        stats = self.statistics
        return {
            "phase": self.phase.value,
            "status": self.display_text,
            "is_syncing": self.is_syncing,
            "has_completed_initial_sync": self.has_completed_initial_sync,
            "last_error": self.last_error,
            "progress_message": self.progress_message,
            "last_sync_date": format_datetime(self.last_sync_date),
            "pending_changes_count": self.pending_changes_count,
            "statistics": {
                "uploaded": stats.total_uploaded,
                "downloaded": stats.total_downloaded,
                "conflicts_resolved": stats.total_conflicts_resolved,
                "errors": stats.total_errors,
                "last_sync_duration": stats.last_sync_duration,
            },
        }


Listener = Callable[[SyncSnapshot], Any]


class SyncState:
    """Current sync snapshot plus change listeners."""

    def __init__(self, snapshot: Optional[SyncSnapshot] = None):
        self._snapshot = snapshot or SyncSnapshot()
        self._listeners: List[Listener] = []

    @property
    def snapshot(self) -> SyncSnapshot:
        return self._snapshot

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def update(self, **changes: Any) -> SyncSnapshot:
        """Apply field changes and notify listeners with a copy of the result."""
        for name, value in changes.items():
            if not hasattr(self._snapshot, name) or name == "is_syncing":
                raise AttributeError(f"Unknown sync state field: {name}")
            setattr(self._snapshot, name, value)
        self._notify()
        return self._snapshot

    def _notify(self) -> None:
        published = replace(self._snapshot, statistics=replace(self._snapshot.statistics))
        for listener in list(self._listeners):
            try:
                listener(published)
            except Exception as e:
                logger.warning(f"Sync state listener failed: {e}", exc_info=True)
