"""Upload queue: pushes locally modified records to the remote store.

There is no separate queue table. A record is queued exactly when its
``is_synced`` flag is False, so a failed push leaves the same set selected
for the next attempt.
"""

import asyncio
import logging
from datetime import datetime
from typing import Iterable, List, Optional

from spendsync.protocols import DocumentStore, LocalStore
from spendsync.storage.documents import collection_path
from spendsync.sync import codec
from spendsync.types import Entity, EntityType, UserProfile, entity_type_of

logger = logging.getLogger(__name__)


class UploadQueue:
    """Pushes unsynced local records in one atomic remote batch."""

    def __init__(self, store: LocalStore, remote: DocumentStore):
        self.store = store
        self.remote = remote

    async def collect_unsynced(self, user_id: str) -> List[Entity]:
        records: List[Entity] = []
        for entity_type in EntityType:
            records.extend(
                await asyncio.to_thread(self.store.fetch, entity_type, {"is_synced": False})
            )
        return records

    async def push_unsynced(
        self, user_id: str, snapshot: Optional[Iterable[Entity]] = None
    ) -> int:
        """Upload every unsynced record and mark it synced once committed.

        Args:
            user_id: Owner of the remote collections.
            snapshot: Records to consider instead of querying the store.

        Returns:
            Number of records uploaded (0 means the remote was not touched).

        Raises:
            NetworkFailureError: If the remote store was unreachable.
            BatchCommitError: If the remote store rejected the batch.
            StorageError: If marking records synced could not be saved.
        """
        if snapshot is None:
            candidates = await self.collect_unsynced(user_id)
        else:
            candidates = list(snapshot)

        pending = [
            r
            for r in candidates
            if not r.is_synced and not (isinstance(r, UserProfile) and r.id != user_id)
        ]
        if not pending:
            logger.debug("Nothing to upload")
            return 0

        batch = self.remote.batch()
        staged_versions = {}
        for record in pending:
            path = collection_path(user_id, entity_type_of(record).collection)
            batch.set(path, record.id, codec.encode(record))
            staged_versions[id(record)] = record.last_modified

        commit_time: Optional[datetime] = await batch.commit()

        for record in pending:
            # Edited again while the batch was in flight: stays queued
            if record.last_modified != staged_versions[id(record)]:
                continue
            record.is_synced = True
            if commit_time is not None:
                record.last_modified = commit_time
        await asyncio.to_thread(self.store.save)

        logger.info(f"Uploaded {len(pending)} records")
        return len(pending)

    async def delete_remote(self, user_id: str, entity_type: EntityType, entity_id: str) -> None:
        """Delete one remote document directly (not queued)."""
        path = collection_path(user_id, entity_type.collection)
        await self.remote.delete_document(path, entity_id)
        logger.debug(f"Deleted remote {entity_type.collection}:{entity_id}")
