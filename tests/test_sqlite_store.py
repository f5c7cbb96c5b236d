"""Tests for the SQLite local store.

Tests:
- Round-tripping every column type through the database
- Unit of work: staged inserts/updates/deletes, save(), rollback()
- Identity map: repeated fetches return the same object
- Filtering and ordering, including staged state
- pending_count and sync metadata
- Failed commits raise StorageError and write nothing
"""

import os
import sqlite3
from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from spendsync.protocols import LocalStore, StorageError
from spendsync.storage.schema import validate_table_name
from spendsync.storage.sqlite import SQLiteStore
from spendsync.types import (
    Account,
    AccountType,
    Budget,
    BudgetPeriod,
    Category,
    EntityType,
    Transaction,
    TransactionType,
    UserProfile,
    mark_modified,
)


def at(hour, minute=0):
    return datetime(2024, 3, 1, hour, minute, tzinfo=timezone.utc)


def test_store_satisfies_local_store_protocol(store):
    assert isinstance(store, LocalStore)


def test_database_file_is_private(store, temp_db):
    assert os.stat(temp_db).st_mode & 0o777 == 0o600


class TestRoundTrip:
    def test_transaction_fields_survive_reopen(self, store, temp_db):
        txn = Transaction(
            id="T1",
            amount=Decimal("99.95"),
            note="Groceries",
            date=at(9, 30),
            type=TransactionType.INCOME,
            merchant_name=None,
            category_id="C1",
            account_id="A1",
            created_at=at(9),
            last_modified=at(10),
            is_synced=True,
        )
        store.insert(txn)
        store.save()

        fresh = SQLiteStore(temp_db)
        loaded = fresh.get(EntityType.TRANSACTION, "T1")
        assert loaded == txn
        assert loaded is not txn
        assert isinstance(loaded.amount, Decimal)
        assert loaded.last_modified.tzinfo is not None

    def test_other_entity_types(self, store, temp_db):
        entities = [
            Category(id="C1", name="Food", sort_order=2, last_modified=at(8)),
            Account(
                id="A1", name="HDFC", account_type=AccountType.BANK, initial_balance=Decimal("10")
            ),
            Budget(id="B1", amount=Decimal("500"), period=BudgetPeriod.WEEKLY, category_id="C1"),
            UserProfile(id="user-1", email="a@example.com", daily_reminder_time=at(20)),
        ]
        for entity in entities:
            store.insert(entity)
        store.save()

        fresh = SQLiteStore(temp_db)
        assert fresh.get(EntityType.CATEGORY, "C1") == entities[0]
        assert fresh.get(EntityType.ACCOUNT, "A1") == entities[1]
        assert fresh.get(EntityType.BUDGET, "B1") == entities[2]
        assert fresh.get(EntityType.USER_PROFILE, "user-1") == entities[3]


class TestUnitOfWork:
    def test_staged_insert_is_visible_before_save(self, store):
        store.insert(Category(id="C1"))
        assert [c.id for c in store.fetch(EntityType.CATEGORY)] == ["C1"]
        assert store.get(EntityType.CATEGORY, "C1") is not None

    def test_nothing_is_written_until_save(self, store, temp_db):
        store.insert(Category(id="C1"))
        assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is None
        store.save()
        assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is not None

    def test_fetch_returns_tracked_objects(self, store):
        store.insert(Category(id="C1", name="Food"))
        store.save()
        first = store.get(EntityType.CATEGORY, "C1")
        first.name = "Dining"
        # A second read must not clobber the staged change
        assert store.fetch(EntityType.CATEGORY)[0] is first
        assert first.name == "Dining"

    def test_field_changes_are_saved(self, store, temp_db):
        store.insert(Category(id="C1", name="Food", is_synced=True))
        store.save()
        cat = store.get(EntityType.CATEGORY, "C1")
        mark_modified(cat)
        cat.name = "Dining"
        store.save()

        loaded = SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1")
        assert loaded.name == "Dining"
        assert loaded.is_synced is False

    def test_rollback_restores_fetched_objects_and_drops_inserts(self, store, temp_db):
        store.insert(Category(id="C1", name="Food", is_synced=True))
        store.save()

        cat = store.get(EntityType.CATEGORY, "C1")
        cat.name = "Changed"
        cat.is_synced = False
        store.insert(Category(id="C2"))
        store.delete(cat)
        store.rollback()

        assert cat.name == "Food"
        assert cat.is_synced is True
        assert [c.id for c in store.fetch(EntityType.CATEGORY)] == ["C1"]
        assert not store.has_changes()

    def test_delete(self, store, temp_db):
        store.insert(Category(id="C1"))
        store.save()
        store.delete(store.get(EntityType.CATEGORY, "C1"))
        assert store.get(EntityType.CATEGORY, "C1") is None
        store.save()
        assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is None

    def test_failed_save_raises_storage_error_and_writes_nothing(self, store, temp_db):
        store.insert(Category(id="C1"))
        conn = MagicMock()
        conn.execute.side_effect = sqlite3.OperationalError("disk I/O error")
        with patch.object(store, "_get_conn", return_value=conn):
            with pytest.raises(StorageError):
                store.save()
        conn.rollback.assert_called_once()
        assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is None
        # Staged work survives the failed commit until rolled back
        assert store.has_changes()
        store.rollback()
        assert not store.has_changes()


class TestQueries:
    def test_order_by_descending(self, store):
        for i, hour in enumerate([9, 11, 10]):
            store.insert(Transaction(id=f"T{i}", date=at(hour)))
        store.save()
        store.insert(Transaction(id="staged", date=at(12)))

        fetched = store.fetch(EntityType.TRANSACTION, order_by="date", descending=True)
        dates = [t.date.hour for t in fetched]
        assert dates == [12, 11, 10, 9]

    def test_where_sees_in_memory_changes(self, store):
        store.insert(Category(id="C1", is_synced=True))
        store.insert(Category(id="C2", is_synced=True))
        store.save()
        mark_modified(store.get(EntityType.CATEGORY, "C2"))

        unsynced = store.fetch(EntityType.CATEGORY, where={"is_synced": False})
        assert [c.id for c in unsynced] == ["C2"]

    def test_pending_count_spans_all_types(self, store):
        store.insert(Category(id="C1", is_synced=False))
        store.insert(Account(id="A1", is_synced=True))
        store.insert(Transaction(id="T1", is_synced=False))
        store.insert(UserProfile(id="user-1", is_synced=False))
        store.save()
        assert store.pending_count() == 3

    def test_rejects_unknown_columns_and_tables(self, store):
        with pytest.raises(ValueError):
            store.fetch(EntityType.CATEGORY, order_by="name; DROP TABLE categories")
        with pytest.raises(ValueError):
            store.fetch(EntityType.CATEGORY, where={"nope": 1})
        with pytest.raises(ValueError):
            validate_table_name("sqlite_master")


class TestSyncMeta:
    def test_missing_key_is_none(self, store):
        assert store.get_sync_meta("last_sync_time") is None

    def test_set_and_overwrite(self, store, temp_db):
        store.set_sync_meta("last_sync_time", "2024-03-01T10:00:00+00:00")
        store.set_sync_meta("last_sync_time", "2024-03-01T11:00:00+00:00")
        assert SQLiteStore(temp_db).get_sync_meta("last_sync_time") == "2024-03-01T11:00:00+00:00"
