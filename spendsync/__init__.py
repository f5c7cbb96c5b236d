"""
spendsync - Bidirectional sync for a personal finance tracker.

Reconciles a local SQLite store with a per-user cloud document store using
last-writer-wins on each record's last_modified time.
"""

from .protocols import (
    BatchCommitError,
    DataError,
    NetworkFailureError,
    NotAuthenticatedError,
    SpendSyncError,
    StorageError,
    SyncInProgressError,
)
from .sync.orchestrator import SyncOrchestrator

try:
    from importlib.metadata import version

    __version__ = version("spendsync")
except Exception:
    __version__ = "0.0.0"

__all__ = [
    "SyncOrchestrator",
    "SpendSyncError",
    "NotAuthenticatedError",
    "NetworkFailureError",
    "DataError",
    "BatchCommitError",
    "StorageError",
    "SyncInProgressError",
]
