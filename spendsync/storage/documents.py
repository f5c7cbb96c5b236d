"""Remote document primitives and an in-memory document store.

SERVER_TIMESTAMP is the placeholder a client writes when it wants the
remote store to stamp its own write time. Timestamp is the remote store's
native time value.

InMemoryDocumentStore implements the DocumentStore protocol entirely in
process. It is used for offline runs and in tests, and behaves like the
real backend: batches apply all-or-nothing and server timestamps come from
the store's clock, not the writer's.
"""

import copy
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from spendsync.protocols import BatchCommitError, NetworkFailureError
from spendsync.types import ensure_utc, utc_now

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class _ServerTimestamp:
    """Sentinel resolved by the remote store to its own write time."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "SERVER_TIMESTAMP"


SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True, order=True)
class Timestamp:
    """Remote time value: whole seconds since the epoch plus nanoseconds."""

    seconds: int
    nanos: int = 0

    def to_datetime(self) -> datetime:
        return _EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanos // 1000)

    @classmethod
    def from_datetime(cls, value: datetime) -> "Timestamp":
        delta = ensure_utc(value) - _EPOCH
        seconds = delta.days * 86400 + delta.seconds
        return cls(seconds=seconds, nanos=delta.microseconds * 1000)


def collection_path(user_id: str, collection: str) -> str:
    """Remote path of a per-user collection."""
    return f"users/{user_id}/{collection}"


def _resolve_sentinels(data: Dict[str, Any], stamp: Timestamp) -> Dict[str, Any]:
    return {k: (stamp if v is SERVER_TIMESTAMP else v) for k, v in data.items()}


class InMemoryWriteBatch:
    """Staged writes against an InMemoryDocumentStore."""

    def __init__(self, store: "InMemoryDocumentStore"):
        self._store = store
        self._writes: List[Tuple[str, str, str, Optional[Dict[str, Any]]]] = []
        self._committed = False

    def set(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._writes.append(("set", path, doc_id, dict(data)))

    def delete(self, path: str, doc_id: str) -> None:
        self._writes.append(("delete", path, doc_id, None))

    async def commit(self) -> datetime:
        if self._committed:
            raise BatchCommitError("batch already committed")
        commit_time = self._store._apply(self._writes)
        self._committed = True
        return commit_time


class InMemoryDocumentStore:
    """Process-local DocumentStore.

    Args:
        clock: Server clock used for SERVER_TIMESTAMP. Defaults to utc_now.
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or utc_now
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.online = True
        self.fail_commits: Optional[str] = None  # reject batches with this reason
        self.commit_count = 0

    def _check_online(self) -> None:
        if not self.online:
            raise NetworkFailureError("remote store unreachable")

    def _apply(self, writes) -> datetime:
        self._check_online()
        if self.fail_commits:
            raise BatchCommitError(self.fail_commits)

        now = ensure_utc(self._clock())
        stamp = Timestamp.from_datetime(now)
        for op, path, doc_id, data in writes:
            collection = self._collections.setdefault(path, {})
            if op == "delete":
                collection.pop(doc_id, None)
            else:
                collection[doc_id] = _resolve_sentinels(data, stamp)
        self.commit_count += 1
        logger.debug(f"Applied batch of {len(writes)} writes at {now.isoformat()}")
        return stamp.to_datetime()

    async def get_documents(
        self,
        path: str,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Dict[str, Any]]:
        self._check_online()
        documents = [
            {"id": doc_id, **copy.deepcopy(data)}
            for doc_id, data in self._collections.get(path, {}).items()
        ]
        if order_by:
            present = [d for d in documents if d.get(order_by) is not None]
            missing = [d for d in documents if d.get(order_by) is None]
            present.sort(key=lambda d: d[order_by], reverse=descending)
            documents = present + missing
        return documents

    async def get_document(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        self._check_online()
        data = self._collections.get(path, {}).get(doc_id)
        if data is None:
            return None
        return {"id": doc_id, **copy.deepcopy(data)}

    async def set_document(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._apply([("set", path, doc_id, dict(data))])

    async def delete_document(self, path: str, doc_id: str) -> None:
        self._apply([("delete", path, doc_id, None)])

    def batch(self) -> InMemoryWriteBatch:
        return InMemoryWriteBatch(self)

    # Test/seed helper: writes raw data without sentinel resolution or clock
    def put_raw(self, path: str, doc_id: str, data: Dict[str, Any]) -> None:
        self._collections.setdefault(path, {})[doc_id] = dict(data)

    def raw(self, path: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._collections.get(path, {}).get(doc_id)
