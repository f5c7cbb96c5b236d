"""Entity merger: applies pulled remote documents to the local store.

Last-writer-wins on ``last_modified``. The remote copy replaces the local
one only when it is strictly newer; on a tie the local copy is kept.
Everything is staged in the store's unit of work and nothing is committed
here. Local records missing from the remote side are left alone.
"""

import logging
from dataclasses import fields
from typing import Any, Dict, Iterable, List, Mapping, Optional

from spendsync.protocols import DataError, LocalStore
from spendsync.sync import codec
from spendsync.sync.references import ReferenceMaps
from spendsync.types import (
    Budget,
    Entity,
    EntityType,
    MergeCounts,
    SyncConflict,
    Transaction,
)

logger = logging.getLogger(__name__)

# Fields the merge never overwrites on an existing local object
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


def resolve_references(entity: Entity, references: Optional[ReferenceMaps]) -> None:
    """Null out category/account ids that do not exist locally."""
    if references is None:
        return
    if isinstance(entity, Transaction):
        entity.category_id = references.resolve_category(entity.category_id)
        entity.account_id = references.resolve_account(entity.account_id)
    elif isinstance(entity, Budget):
        entity.category_id = references.resolve_category(entity.category_id)


class EntityMerger:
    """Merges remote documents of one entity type into the local store.

    Conflicts found along the way (records edited on both sides since the
    last sync) are appended to ``conflicts`` for reporting.
    """

    def __init__(self, store: LocalStore):
        self.store = store
        self.conflicts: List[SyncConflict] = []

    def merge(
        self,
        entity_type: EntityType,
        remote_documents: Iterable[Mapping[str, Any]],
        local_records: Iterable[Entity],
        references: Optional[ReferenceMaps] = None,
    ) -> MergeCounts:
        counts = MergeCounts()
        local_by_id: Dict[str, Entity] = {r.id: r for r in local_records}

        for document in remote_documents:
            try:
                remote = codec.decode(entity_type, document)
            except DataError as e:
                counts.skipped += 1
                logger.warning(f"Skipping malformed {entity_type.collection} record: {e}")
                continue

            resolve_references(remote, references)
            local = local_by_id.get(remote.id)

            if local is None:
                self.store.insert(remote)
                local_by_id[remote.id] = remote
                if references is not None:
                    references.register(remote)
                counts.inserted += 1
                logger.debug(f"Inserted {entity_type.collection}:{remote.id}")
                continue

            remote_wins = remote.last_modified > local.last_modified
            if not local.is_synced:
                counts.conflicts += 1
                self.conflicts.append(
                    SyncConflict(
                        entity_type=entity_type,
                        record_id=remote.id,
                        local_modified=local.last_modified,
                        remote_modified=remote.last_modified,
                        resolution="remote_wins" if remote_wins else "local_wins",
                    )
                )
                logger.info(
                    f"Conflict on {entity_type.collection}:{remote.id} "
                    f"(local={local.last_modified.isoformat()}, "
                    f"remote={remote.last_modified.isoformat()}): "
                    f"{'remote' if remote_wins else 'local'} wins"
                )

            if remote_wins:
                self._overwrite(local, remote)
                counts.updated += 1
                logger.debug(f"Updated {entity_type.collection}:{remote.id} from remote")
            else:
                counts.unchanged += 1

        return counts

    @staticmethod
    def _overwrite(local: Entity, remote: Entity) -> None:
        """Copy every mutable field from the decoded remote entity onto local."""
        for f in fields(remote):
            if f.name in _IMMUTABLE_FIELDS:
                continue
            setattr(local, f.name, getattr(remote, f.name))
        local.is_synced = True
