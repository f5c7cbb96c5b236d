"""
spendsync Protocol Definitions
==============================

The interface contracts between the sync engine and its collaborators.

Components and their roles:
- LocalStore:         The durable on-device store. Stages changes in a unit
                      of work and commits them with one save().
- DocumentStore:      The per-user remote document store, reached over the
                      network. Writes can be grouped in an atomic WriteBatch.
- ConnectivitySignal: Reachability of the remote store, with notifications
                      when it comes back.
- IdentityProvider:   Who is signed in right now.

Error handling philosophy:
- Every failure the engine surfaces is a SpendSyncError subclass
- Each error carries a user_message suitable for a status line
- Per-record decode failures (DataError) are skipped, never fatal
- Remote failures (NetworkFailureError, BatchCommitError) abort the pass
- Local store failures raise StorageError
"""

from __future__ import annotations

from datetime import datetime
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Protocol,
    runtime_checkable,
)

from spendsync.types import Entity, EntityType

# =============================================================================
# ERRORS
# =============================================================================


class SpendSyncError(Exception):
    """Base exception for all spendsync errors."""

    user_message = "Sync failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if message:
            self.detail = message
        else:
            self.detail = None


class NotAuthenticatedError(SpendSyncError):
    """No user is signed in, or the backend rejected the credentials."""

    user_message = "You must be signed in to sync data"


class NetworkFailureError(SpendSyncError):
    """The remote store could not be reached. Transient."""

    user_message = "Network connection lost during sync"


class DataError(SpendSyncError):
    """A remote record is malformed and cannot be decoded."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Invalid data: {self.detail or 'unknown'}"


class BatchCommitError(SpendSyncError):
    """An atomic batch failed outright. Nothing was partially applied."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Batch operation failed: {self.detail or 'unknown'}"


class StorageError(SpendSyncError):
    """The local store failed to read or commit."""

    @property
    def user_message(self) -> str:  # type: ignore[override]
        return f"Local storage failed: {self.detail or 'unknown'}"


class SyncInProgressError(SpendSyncError):
    """A sync pass is already running; the request was coalesced."""

    user_message = "Sync already in progress"


# =============================================================================
# LOCAL STORE
# =============================================================================


@runtime_checkable
class LocalStore(Protocol):
    """Interface for the on-device durable store.

    Reads return live entity objects. Mutations to those objects and
    insert()/delete() calls are staged until save() writes them all in a
    single transaction, or rollback() discards them.

    Implementations: SQLiteStore.
    """

    def fetch(
        self,
        entity_type: EntityType,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Entity]:
        """Fetch entities, optionally filtered by field equality and ordered."""
        ...

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        """Fetch one entity by id, or None."""
        ...

    def insert(self, entity: Entity) -> None:
        """Stage a new entity."""
        ...

    def delete(self, entity: Entity) -> None:
        """Stage removal of an entity."""
        ...

    def save(self) -> None:
        """Commit every staged insert, update and delete atomically.

        Raises:
            StorageError: If the commit failed. Nothing was written.
        """
        ...

    def rollback(self) -> None:
        """Discard staged changes and restore fetched objects."""
        ...

    def pending_count(self) -> int:
        """Number of records with is_synced == False."""
        ...

    def get_sync_meta(self, key: str) -> Optional[str]:
        """Read a persisted sync bookkeeping value."""
        ...

    def set_sync_meta(self, key: str, value: str) -> None:
        """Persist a sync bookkeeping value immediately (outside the unit of work)."""
        ...


# =============================================================================
# REMOTE STORE
# =============================================================================


@runtime_checkable
class WriteBatch(Protocol):
    """A group of remote writes applied all-or-nothing."""

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None: ...

    def delete(self, path: str, doc_id: str) -> None: ...

    async def commit(self) -> Optional[datetime]:
        """Apply the staged writes atomically and return the server write time.

        Returns None when the backend does not report a write time.

        Raises:
            NetworkFailureError: If the remote store was unreachable.
            BatchCommitError: If the remote store rejected the batch.
        """
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Interface for the per-user remote document store.

    Paths look like ``users/{user_id}/{collection}``. Documents are plain
    mappings with camelCase keys.

    Implementations: HttpDocumentStore, InMemoryDocumentStore.
    """

    async def get_documents(
        self,
        path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]: ...

    async def get_document(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]: ...

    async def set_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None: ...

    async def delete_document(self, path: str, doc_id: str) -> None: ...

    def batch(self) -> WriteBatch: ...


# =============================================================================
# COLLABORATORS
# =============================================================================


@runtime_checkable
class ConnectivitySignal(Protocol):
    """Reachability of the remote store."""

    @property
    def is_reachable(self) -> bool: ...

    def subscribe(self, callback: Callable[[], Any]) -> None:
        """Register a callback fired on every transition to reachable."""
        ...

    def unsubscribe(self, callback: Callable[[], Any]) -> None: ...

    def should_sync(self, allow_expensive: bool = True, allow_constrained: bool = False) -> bool:
        """Whether the link is up and satisfies the given network policy."""
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    """Source of the currently signed-in user."""

    def current_user_id(self) -> Optional[str]: ...
