"""SQLite-backed local store for spendsync.

The store hands out live entity objects and tracks them in an identity map.
Field changes on those objects, insert() and delete() are staged until
save() writes everything in one transaction. rollback() discards staged
work and restores fetched objects to their last committed values.

Each database operation opens its own short-lived connection, so calls may
run in a worker thread (``asyncio.to_thread``) as long as only one runs at
a time.
"""

import contextlib
import logging
import sqlite3
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from spendsync.protocols import StorageError
from spendsync.storage.schema import COLUMNS, init_db, validate_table_name
from spendsync.types import (
    AccountType,
    BudgetPeriod,
    Entity,
    EntityType,
    TransactionType,
    UserPersona,
    entity_type_of,
    format_datetime,
    parse_datetime,
    utc_now,
)

logger = logging.getLogger(__name__)

DECIMAL_COLUMNS = frozenset({"amount", "initial_balance"})
DATETIME_COLUMNS = frozenset(
    {"date", "start_date", "created_at", "last_modified", "daily_reminder_time"}
)
BOOL_COLUMNS = frozenset(
    {
        "is_synced",
        "is_expense_category",
        "is_default",
        "is_active",
        "notifications_enabled",
        "budget_alerts_enabled",
    }
)
ENUM_COLUMNS = {
    "type": TransactionType,
    "account_type": AccountType,
    "period": BudgetPeriod,
    "persona": UserPersona,
}

Key = Tuple[EntityType, str]


def _to_db(column: str, value: Any) -> Any:
    """Convert a Python field value to its SQLite representation."""
    if value is None:
        return None
    if column in DECIMAL_COLUMNS:
        return str(value)
    if column in DATETIME_COLUMNS:
        return format_datetime(value)
    if column in BOOL_COLUMNS:
        return 1 if value else 0
    if column in ENUM_COLUMNS:
        return value.value if hasattr(value, "value") else str(value)
    return value


def _from_db(column: str, value: Any) -> Any:
    """Convert a SQLite value back to the Python field value."""
    if value is None:
        return None
    if column in DECIMAL_COLUMNS:
        return Decimal(value)
    if column in DATETIME_COLUMNS:
        return parse_datetime(value)
    if column in BOOL_COLUMNS:
        return bool(value)
    if column in ENUM_COLUMNS:
        return ENUM_COLUMNS[column](value)
    return value


def _row_values(entity: Entity) -> Tuple[Any, ...]:
    table = entity_type_of(entity).table
    return tuple(_to_db(col, getattr(entity, col)) for col in COLUMNS[table])


class SQLiteStore:
    """Local durable store with a unit of work over SQLite."""

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else Path.home() / ".spendsync" / "spendsync.db"
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Identity map and the committed row each tracked object was loaded from
        self._tracked: Dict[Key, Entity] = {}
        self._committed: Dict[Key, Tuple[Any, ...]] = {}
        self._new: Dict[Key, Entity] = {}
        self._deleted: Dict[Key, Entity] = {}

        with self._connect() as conn:
            init_db(conn, self.db_path)

    # === Connection handling ===

    def _get_conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA busy_timeout=5000")
        return conn

    @contextlib.contextmanager
    def _connect(self):
        """Context manager that commits on success, rolls back on error, always closes."""
        conn = self._get_conn()
        try:
            yield conn
            conn.commit()
        except Exception as e:
            logger.debug(f"Transaction failed, rolling back: {e}")
            conn.rollback()
            raise
        finally:
            conn.close()

    # === Row mapping ===

    def _entity_from_row(self, entity_type: EntityType, row: sqlite3.Row) -> Entity:
        kwargs = {col: _from_db(col, row[col]) for col in COLUMNS[entity_type.table]}
        return entity_type.model(**kwargs)

    def _track(self, entity_type: EntityType, row: sqlite3.Row) -> Entity:
        """Return the tracked object for a row, loading it on first sight.

        An already tracked object wins over the row so staged changes survive
        repeated fetches.
        """
        key = (entity_type, row["id"])
        existing = self._tracked.get(key)
        if existing is not None:
            return existing
        entity = self._entity_from_row(entity_type, row)
        self._tracked[key] = entity
        self._committed[key] = _row_values(entity)
        return entity

    @staticmethod
    def _validate_column(table: str, column: str) -> str:
        if column not in COLUMNS[table]:
            raise ValueError(f"Invalid column for {table}: {column}")
        return column

    # === Reads ===

    def fetch(
        self,
        entity_type: EntityType,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Entity]:
        """Fetch entities of one type.

        Staged state is visible: pending inserts are included, pending deletes
        are excluded, and filters apply to in-memory field values.
        """
        table = validate_table_name(entity_type.table)
        where = where or {}
        for column in where:
            self._validate_column(table, column)
        if order_by:
            self._validate_column(table, order_by)

        sql = f"SELECT * FROM {table}"
        params: List[Any] = []
        if where:
            sql += " WHERE " + " AND ".join(f"{col} = ?" for col in where)
            params = [_to_db(col, value) for col, value in where.items()]
        if order_by:
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"

        try:
            with self._connect() as conn:
                rows = conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"fetch {table} failed: {e}") from e

        results: Dict[str, Entity] = {}
        for row in rows:
            entity = self._track(entity_type, row)
            results[entity.id] = entity

        # Tracked objects whose in-memory values now match, and pending inserts
        candidates = [e for (t, _), e in self._tracked.items() if t is entity_type]
        candidates += [e for (t, _), e in self._new.items() if t is entity_type]
        for entity in candidates:
            results.setdefault(entity.id, entity)

        matched = [
            e
            for e in results.values()
            if (entity_type, e.id) not in self._deleted
            and all(getattr(e, col) == value for col, value in where.items())
        ]
        if order_by:
            matched.sort(
                key=lambda e: (getattr(e, order_by) is None, getattr(e, order_by)),
                reverse=descending,
            )
        return matched

    def get(self, entity_type: EntityType, entity_id: str) -> Optional[Entity]:
        key = (entity_type, entity_id)
        if key in self._deleted:
            return None
        if key in self._new:
            return self._new[key]
        if key in self._tracked:
            return self._tracked[key]

        table = validate_table_name(entity_type.table)
        try:
            with self._connect() as conn:
                row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (entity_id,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"get {table} failed: {e}") from e
        if row is None:
            return None
        return self._track(entity_type, row)

    def pending_count(self) -> int:
        """Number of records (all types) not yet confirmed by the remote store."""
        return sum(len(self.fetch(t, where={"is_synced": False})) for t in EntityType)

    # === Staging ===

    def insert(self, entity: Entity) -> None:
        key = (entity_type_of(entity), entity.id)
        self._deleted.pop(key, None)
        if key in self._tracked:
            # Re-inserting a tracked id replaces the tracked object on save
            self._tracked[key] = entity
            return
        self._new[key] = entity

    def delete(self, entity: Entity) -> None:
        key = (entity_type_of(entity), entity.id)
        if self._new.pop(key, None) is not None:
            return
        self._deleted[key] = entity

    def has_changes(self) -> bool:
        if self._new or self._deleted:
            return True
        return any(_row_values(e) != self._committed[k] for k, e in self._tracked.items())

    # === Commit / rollback ===

    def save(self) -> None:
        """Write all staged inserts, updates and deletes in one transaction.

        Raises:
            StorageError: If SQLite rejected the transaction. Nothing is written
                and staged work is kept so the caller can roll back.
        """
        dirty = {
            key: entity
            for key, entity in self._tracked.items()
            if key not in self._deleted and _row_values(entity) != self._committed[key]
        }
        if not dirty and not self._new and not self._deleted:
            return

        try:
            with self._connect() as conn:
                for (entity_type, entity_id), _ in self._deleted.items():
                    table = validate_table_name(entity_type.table)
                    conn.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
                for (entity_type, _), entity in list(dirty.items()) + list(self._new.items()):
                    table = validate_table_name(entity_type.table)
                    columns = COLUMNS[table]
                    conn.execute(
                        f"INSERT OR REPLACE INTO {table} ({', '.join(columns)}) "
                        f"VALUES ({', '.join('?' for _ in columns)})",
                        _row_values(entity),
                    )
        except sqlite3.Error as e:
            raise StorageError(f"save failed: {e}") from e

        for key in self._deleted:
            self._tracked.pop(key, None)
            self._committed.pop(key, None)
        for key, entity in list(dirty.items()) + list(self._new.items()):
            self._tracked[key] = entity
            self._committed[key] = _row_values(entity)

        logger.debug(
            f"Saved {len(self._new)} inserts, {len(dirty)} updates, {len(self._deleted)} deletes"
        )
        self._new.clear()
        self._deleted.clear()

    def close(self):
        """Forget every tracked object. Connections are per-operation."""
        self.rollback()
        self._tracked.clear()
        self._committed.clear()

    def rollback(self) -> None:
        """Discard staged work and restore tracked objects to committed values."""
        restored = 0
        for key, entity in self._tracked.items():
            committed = self._committed[key]
            if _row_values(entity) == committed:
                continue
            table = key[0].table
            for column, raw in zip(COLUMNS[table], committed):
                setattr(entity, column, _from_db(column, raw))
            restored += 1
        if restored or self._new or self._deleted:
            logger.debug(
                f"Rolled back {len(self._new)} inserts, {restored} updates, "
                f"{len(self._deleted)} deletes"
            )
        self._new.clear()
        self._deleted.clear()

    # === Sync metadata ===

    def get_sync_meta(self, key: str) -> Optional[str]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value FROM sync_meta WHERE key = ?", (key,)).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"read sync_meta failed: {e}") from e
        return row["value"] if row else None

    def set_sync_meta(self, key: str, value: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO sync_meta (key, value, updated_at) VALUES (?, ?, ?)",
                    (key, value, format_datetime(utc_now())),
                )
        except sqlite3.Error as e:
            raise StorageError(f"write sync_meta failed: {e}") from e
