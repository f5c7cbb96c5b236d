"""Sync engine: codec, merge, upload and orchestration."""

from .connectivity import ConnectivityMonitor
from .merger import EntityMerger
from .orchestrator import SyncOrchestrator
from .references import ReferenceMaps
from .state import SyncPhase, SyncSnapshot, SyncState
from .upload import UploadQueue

__all__ = [
    "ConnectivityMonitor",
    "EntityMerger",
    "ReferenceMaps",
    "SyncOrchestrator",
    "SyncPhase",
    "SyncSnapshot",
    "SyncState",
    "UploadQueue",
]
