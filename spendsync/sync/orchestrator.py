"""Sync orchestrator: one full pull/merge/push pass at a time.

A pass pulls every entity type in dependency order (categories, accounts,
budgets, transactions, then the user profile), merges each into the local
unit of work, commits all of it with a single ``save()``, and then pushes
whatever is still unsynced locally. A failure anywhere before the commit
rolls the staged changes back, so the local store is either fully updated
or untouched.

All state changes happen on the event loop. Local store calls run in a
worker thread one at a time.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from spendsync.config import SyncSettings
from spendsync.protocols import (
    BatchCommitError,
    ConnectivitySignal,
    DocumentStore,
    IdentityProvider,
    LocalStore,
    NetworkFailureError,
    NotAuthenticatedError,
    SpendSyncError,
    StorageError,
    SyncInProgressError,
)
from spendsync.storage.documents import collection_path
from spendsync.sync.merger import EntityMerger
from spendsync.sync.references import ReferenceMaps
from spendsync.sync.state import SyncPhase, SyncSnapshot, SyncState
from spendsync.sync.upload import UploadQueue
from spendsync.types import (
    EntityType,
    MergeCounts,
    SyncReport,
    format_datetime,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

# Categories and accounts first: budgets and transactions reference them
PULL_ORDER: Tuple[EntityType, ...] = (
    EntityType.CATEGORY,
    EntityType.ACCOUNT,
    EntityType.BUDGET,
    EntityType.TRANSACTION,
    EntityType.USER_PROFILE,
)

# Remote ordering per collection: (field, descending)
REMOTE_ORDER: Dict[EntityType, Tuple[str, bool]] = {
    EntityType.CATEGORY: ("sortOrder", False),
    EntityType.ACCOUNT: ("createdAt", False),
    EntityType.BUDGET: ("startDate", True),
    EntityType.TRANSACTION: ("date", True),
}

_DEPENDENT_TYPES = frozenset({EntityType.BUDGET, EntityType.TRANSACTION})


class SyncOrchestrator:
    """Coordinates full sync passes and publishes their progress.

    Args:
        store: Local durable store.
        remote: Remote document store.
        identity: Source of the signed-in user.
        connectivity: Optional reachability signal; passes are skipped while
            it reports offline, and a restored link triggers a pass.
        settings: Sync settings (network policy, trigger intervals).
        state: Observable state to publish into.
        pull_order: Entity types in the order they are pulled.
    """

    LAST_SYNC_KEY = "last_sync_time"
    INITIAL_SYNC_KEY = "has_completed_initial_sync"

    def __init__(
        self,
        store: LocalStore,
        remote: DocumentStore,
        identity: IdentityProvider,
        connectivity: Optional[ConnectivitySignal] = None,
        settings: Optional[SyncSettings] = None,
        state: Optional[SyncState] = None,
        pull_order: Sequence[EntityType] = PULL_ORDER,
    ):
        self.store = store
        self.remote = remote
        self.identity = identity
        self.connectivity = connectivity
        self.settings = settings or SyncSettings()
        self.state = state or SyncState()
        self.pull_order = tuple(pull_order)
        self.merger = EntityMerger(store)
        self.uploads = UploadQueue(store, remote)
        self._lock = asyncio.Lock()
        self._auto_sync_task: Optional[asyncio.Task] = None
        self._auto_sync_stop: Optional[asyncio.Event] = None

        self._load_persisted_state()
        if connectivity is not None:
            connectivity.subscribe(self.on_connectivity_restored)

    @property
    def snapshot(self) -> SyncSnapshot:
        return self.state.snapshot

    def _load_persisted_state(self) -> None:
        try:
            last_sync = self.store.get_sync_meta(self.LAST_SYNC_KEY)
            initial = self.store.get_sync_meta(self.INITIAL_SYNC_KEY)
            pending = self.store.pending_count()
        except StorageError as e:
            logger.warning(f"Could not load sync metadata: {e}")
            return
        try:
            last_sync_date = parse_datetime(last_sync)
        except ValueError:
            logger.warning(f"Ignoring invalid {self.LAST_SYNC_KEY}: {last_sync!r}")
            last_sync_date = None
        self.state.update(
            last_sync_date=last_sync_date,
            has_completed_initial_sync=initial == "1",
            pending_changes_count=pending,
        )

    # === Full sync ===

    async def run_full_sync(self, user_id: Optional[str] = None) -> SyncReport:
        """Run one complete pull/merge/commit/push pass.

        Raises:
            SyncInProgressError: A pass is already running (request coalesced).
            NotAuthenticatedError: No user is signed in.
            NetworkFailureError: The remote store is unreachable.
            BatchCommitError: A remote batch or the local commit failed.
        """
        if self._lock.locked():
            logger.debug("Sync already in progress; coalescing request")
            raise SyncInProgressError()

        async with self._lock:
            try:
                user_id = self._require_user(user_id)
                self._require_network()
            except SpendSyncError as e:
                self._record_failure(e)
                raise

            started_at = utc_now()
            started = time.monotonic()
            self.state.update(phase=SyncPhase.SYNCING, progress_message="Syncing...")
            logger.info(f"Starting sync for user {user_id}")

            try:
                report = await self._pull_and_commit(user_id, started_at)
                await self._mark_synced_now()
                report.uploaded = await self._push(user_id)
            except Exception as e:
                await asyncio.to_thread(self.store.rollback)
                self._record_failure(e)
                raise

            report.finished_at = utc_now()
            duration = time.monotonic() - started
            await self._record_success(report, duration)
            logger.info(
                f"Sync complete: pulled={report.downloaded}, pushed={report.uploaded}, "
                f"conflicts={report.conflict_count}, skipped={report.skipped}, "
                f"duration={duration:.2f}s"
            )
            return report

    async def _pull_and_commit(self, user_id: str, started_at: datetime) -> SyncReport:
        report = SyncReport(user_id=user_id, started_at=started_at)
        self.merger.conflicts = []
        # Built once, at the first dependent type; merges register inserts into it
        references: Optional[ReferenceMaps] = None

        for entity_type in self.pull_order:
            self.state.update(progress_message=f"Syncing {entity_type.collection}...")
            documents = await self._fetch_remote(user_id, entity_type)
            local_records = await self._fetch_local(user_id, entity_type)
            if entity_type in _DEPENDENT_TYPES and references is None:
                references = ReferenceMaps.build(
                    await asyncio.to_thread(self.store.fetch, EntityType.CATEGORY),
                    await asyncio.to_thread(self.store.fetch, EntityType.ACCOUNT),
                )
            counts: MergeCounts = self.merger.merge(
                entity_type, documents, local_records, references
            )
            report.counts[entity_type] = counts
            logger.debug(
                f"Merged {entity_type.collection}: inserted={counts.inserted}, "
                f"updated={counts.updated}, unchanged={counts.unchanged}, "
                f"skipped={counts.skipped}"
            )

        report.conflicts = list(self.merger.conflicts)
        try:
            await asyncio.to_thread(self.store.save)
        except StorageError as e:
            raise BatchCommitError(f"local commit failed: {e.detail}") from e
        return report

    async def _fetch_remote(
        self, user_id: str, entity_type: EntityType
    ) -> List[Mapping[str, Any]]:
        path = collection_path(user_id, entity_type.collection)
        if entity_type is EntityType.USER_PROFILE:
            document = await self.remote.get_document(path, user_id)
            return [document] if document is not None else []
        order_by, descending = REMOTE_ORDER.get(entity_type, (None, False))
        return await self.remote.get_documents(path, order_by=order_by, descending=descending)

    async def _fetch_local(self, user_id: str, entity_type: EntityType) -> list:
        if entity_type is EntityType.USER_PROFILE:
            profile = await asyncio.to_thread(self.store.get, entity_type, user_id)
            return [profile] if profile is not None else []
        return await asyncio.to_thread(self.store.fetch, entity_type)

    async def _push(self, user_id: str) -> int:
        self.state.update(progress_message="Uploading changes...")
        try:
            return await self.uploads.push_unsynced(user_id)
        except StorageError as e:
            raise BatchCommitError(f"local commit failed: {e.detail}") from e

    # === State bookkeeping ===

    def _require_user(self, user_id: Optional[str]) -> str:
        user_id = user_id or self.identity.current_user_id()
        if not user_id:
            raise NotAuthenticatedError()
        return user_id

    def _network_allowed(self) -> bool:
        if self.connectivity is None:
            return True
        return self.connectivity.should_sync(
            self.settings.allow_expensive_sync, self.settings.allow_constrained_sync
        )

    def _require_network(self) -> None:
        if not self._network_allowed():
            raise NetworkFailureError("offline or on a network not allowed for sync")

    async def _mark_synced_now(self) -> None:
        """Persist the completed pull before uploading."""
        now = utc_now()
        await asyncio.to_thread(self.store.set_sync_meta, self.LAST_SYNC_KEY, format_datetime(now))
        await asyncio.to_thread(self.store.set_sync_meta, self.INITIAL_SYNC_KEY, "1")
        self.state.update(
            last_sync_date=now,
            has_completed_initial_sync=True,
            last_error=None,
        )

    async def _record_success(self, report: SyncReport, duration: float) -> None:
        stats = self.snapshot.statistics
        stats.total_downloaded += report.downloaded
        stats.total_uploaded += report.uploaded
        stats.total_conflicts_resolved += report.conflict_count
        stats.last_sync_duration = duration
        pending = await asyncio.to_thread(self.store.pending_count)
        self.state.update(
            phase=SyncPhase.IDLE,
            last_error=None,
            progress_message="Up to date",
            pending_changes_count=pending,
            statistics=stats,
        )

    def _record_failure(self, error: Exception) -> None:
        if isinstance(error, SpendSyncError):
            message = error.user_message
        else:
            message = f"Sync failed: {error}"
        waiting = isinstance(error, NetworkFailureError) and not self._network_allowed()
        stats = self.snapshot.statistics
        stats.total_errors += 1
        if waiting:
            logger.info("Sync deferred until the network is back")
            self.state.update(
                phase=SyncPhase.WAITING_FOR_NETWORK,
                progress_message="Waiting for connection",
                last_error=message,
                statistics=stats,
            )
            return
        logger.error(f"Sync failed: {error}", exc_info=not isinstance(error, SpendSyncError))
        self.state.update(
            phase=SyncPhase.ERROR,
            last_error=message,
            progress_message=message,
            statistics=stats,
        )

    # === UI-safe entry points ===

    async def sync_now(self, user_id: Optional[str] = None) -> Optional[SyncReport]:
        """Run a pass, recording any failure in state instead of raising."""
        try:
            return await self.run_full_sync(user_id)
        except SyncInProgressError:
            return None
        except SpendSyncError as e:
            logger.debug(f"sync_now ended with {type(e).__name__}: {e}")
            return None
        except Exception as e:
            # Already rolled back and recorded by run_full_sync
            logger.debug(f"sync_now ended with unexpected error: {e}")
            return None

    async def force_refresh(self, user_id: Optional[str] = None) -> Optional[SyncReport]:
        """Forget the initial-sync flag and run a full pass."""
        if self._lock.locked():
            logger.debug("Sync already in progress; ignoring force refresh")
            return None
        await asyncio.to_thread(self.store.set_sync_meta, self.INITIAL_SYNC_KEY, "0")
        self.state.update(has_completed_initial_sync=False)
        return await self.sync_now(user_id)

    async def push_pending(self, user_id: Optional[str] = None) -> int:
        """Upload unsynced records without pulling.

        Raises:
            SyncInProgressError, NotAuthenticatedError, NetworkFailureError,
            BatchCommitError: as for run_full_sync.
        """
        if self._lock.locked():
            raise SyncInProgressError()
        async with self._lock:
            try:
                user_id = self._require_user(user_id)
                self._require_network()
                self.state.update(phase=SyncPhase.SYNCING)
                uploaded = await self._push(user_id)
            except Exception as e:
                await asyncio.to_thread(self.store.rollback)
                self._record_failure(e)
                raise
            stats = self.snapshot.statistics
            stats.total_uploaded += uploaded
            pending = await asyncio.to_thread(self.store.pending_count)
            self.state.update(
                phase=SyncPhase.IDLE,
                progress_message="Up to date",
                pending_changes_count=pending,
                statistics=stats,
            )
            return uploaded

    # === Triggers ===

    async def on_connectivity_restored(self) -> Optional[SyncReport]:
        if not self.identity.current_user_id():
            return None
        logger.info("Connectivity restored, syncing")
        return await self.sync_now()

    async def on_app_foreground(self) -> Optional[SyncReport]:
        """Sync on foreground unless the last pass is recent enough."""
        last = self.snapshot.last_sync_date
        if last is not None:
            elapsed = (utc_now() - last).total_seconds()
            if elapsed < self.settings.foreground_min_interval:
                logger.debug(f"Skipping foreground sync; last sync {elapsed:.0f}s ago")
                return None
        return await self.sync_now()

    async def on_identity_changed(self, user_id: Optional[str]) -> Optional[SyncReport]:
        """Sync for a newly signed-in user; reset state on sign-out."""
        if not user_id:
            self.snapshot.statistics.reset()
            self.state.update(
                phase=SyncPhase.IDLE,
                has_completed_initial_sync=False,
                last_sync_date=None,
                last_error=None,
                progress_message="",
                statistics=self.snapshot.statistics,
            )
            return None
        return await self.sync_now(user_id)

    # === Auto sync ===

    @property
    def auto_sync_running(self) -> bool:
        return self._auto_sync_task is not None and not self._auto_sync_task.done()

    def start_auto_sync(self) -> None:
        """Run a pass every ``settings.auto_sync_interval`` seconds.

        Must be called from a running event loop. Calling it again while the
        loop is running does nothing.
        """
        if self.auto_sync_running:
            return
        self._auto_sync_stop = asyncio.Event()
        self._auto_sync_task = asyncio.get_running_loop().create_task(
            self._auto_sync_loop(self._auto_sync_stop)
        )
        logger.info(f"Auto sync started (every {self.settings.auto_sync_interval:.0f}s)")

    async def stop_auto_sync(self) -> None:
        """Stop the auto sync loop, letting a running pass finish first."""
        task, stop = self._auto_sync_task, self._auto_sync_stop
        self._auto_sync_task = self._auto_sync_stop = None
        if task is None:
            return
        stop.set()
        await task
        logger.info("Auto sync stopped")

    async def _auto_sync_loop(self, stop: asyncio.Event) -> None:
        while not stop.is_set():
            if not self.identity.current_user_id():
                logger.debug("Auto sync skipped: no signed-in user")
            elif not self._network_allowed():
                logger.debug("Auto sync skipped: network not allowed for sync")
            else:
                await self.sync_now()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.settings.auto_sync_interval)
            except asyncio.TimeoutError:
                pass

    # === Local mutations that touch the remote directly ===

    async def refresh_pending_count(self) -> int:
        count = await asyncio.to_thread(self.store.pending_count)
        self.state.update(pending_changes_count=count)
        return count

    async def delete(self, entity_type: EntityType, entity_id: str) -> bool:
        """Delete a record locally (committed) and remotely (direct, not queued).

        Waits for a running pass instead of rejecting, so the local commit
        never lands in the middle of a pass.

        Returns:
            False if the record did not exist locally.

        Raises:
            NotAuthenticatedError: No user is signed in.
            NetworkFailureError, BatchCommitError: The remote delete failed.
                The local delete stays committed.
        """
        user_id = self._require_user(None)
        async with self._lock:
            entity = await asyncio.to_thread(self.store.get, entity_type, entity_id)
            if entity is None:
                return False
            self.store.delete(entity)
            await asyncio.to_thread(self.store.save)
            await self.uploads.delete_remote(user_id, entity_type, entity_id)
        await self.refresh_pending_count()
        return True
