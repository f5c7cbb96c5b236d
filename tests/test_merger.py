"""Tests for the entity merger.

Tests:
- Inserting unknown records as synced
- Last-writer-wins in both directions, and local wins on ties
- Conflict counting when both sides changed
- Reference resolution for transactions and budgets
- Malformed records are skipped while the rest merge
- Nothing is committed by the merger
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal

from spendsync.storage.documents import Timestamp
from spendsync.storage.sqlite import SQLiteStore
from spendsync.sync import codec
from spendsync.sync.merger import EntityMerger
from spendsync.sync.references import ReferenceMaps
from spendsync.types import Account, Budget, Category, EntityType, Transaction


def at(hour, minute=0):
    return datetime(2024, 3, 1, hour, minute, tzinfo=timezone.utc)


def remote_doc(entity, modified):
    doc = codec.encode(entity)
    doc["lastModified"] = Timestamp.from_datetime(modified)
    return doc


def saved(store, *entities):
    for entity in entities:
        store.insert(entity)
    store.save()
    return entities


class TestLastWriterWins:
    def test_unknown_record_is_inserted_as_synced(self, store):
        merger = EntityMerger(store)
        counts = merger.merge(
            EntityType.CATEGORY, [remote_doc(Category(id="C1", name="Food"), at(10))], []
        )

        assert counts.inserted == 1
        cat = store.get(EntityType.CATEGORY, "C1")
        assert cat.name == "Food"
        assert cat.is_synced is True
        assert cat.last_modified == at(10)

    def test_newer_remote_overwrites_local(self, store):
        (local,) = saved(
            store, Transaction(id="T1", amount=Decimal("100"), last_modified=at(10), is_synced=True)
        )
        remote = Transaction(id="T1", amount=Decimal("150"), note="edited elsewhere")

        counts = EntityMerger(store).merge(
            EntityType.TRANSACTION, [remote_doc(remote, at(10, 5))], [local]
        )

        assert counts.updated == 1
        assert local.amount == Decimal("150")
        assert local.note == "edited elsewhere"
        assert local.last_modified == at(10, 5)
        assert local.is_synced is True

    def test_newer_local_is_kept(self, store):
        (local,) = saved(
            store,
            Transaction(id="T1", amount=Decimal("100"), last_modified=at(11), is_synced=False),
        )
        counts = EntityMerger(store).merge(
            EntityType.TRANSACTION,
            [remote_doc(Transaction(id="T1", amount=Decimal("150")), at(10))],
            [local],
        )

        assert counts.unchanged == 1
        assert local.amount == Decimal("100")
        assert local.is_synced is False

    def test_equal_timestamps_keep_local(self, store):
        (local,) = saved(
            store, Category(id="C1", name="Local", last_modified=at(10), is_synced=True)
        )
        counts = EntityMerger(store).merge(
            EntityType.CATEGORY, [remote_doc(Category(id="C1", name="Remote"), at(10))], [local]
        )

        assert counts.unchanged == 1
        assert counts.updated == 0
        assert local.name == "Local"

    def test_unsynced_local_counts_as_conflict(self, store):
        local_newer, local_older = saved(
            store,
            Category(id="C1", name="mine", last_modified=at(11), is_synced=False),
            Category(id="C2", name="mine", last_modified=at(9), is_synced=False),
        )
        merger = EntityMerger(store)
        counts = merger.merge(
            EntityType.CATEGORY,
            [
                remote_doc(Category(id="C1", name="theirs"), at(10)),
                remote_doc(Category(id="C2", name="theirs"), at(10)),
            ],
            [local_newer, local_older],
        )

        assert counts.conflicts == 2
        assert local_newer.name == "mine"
        assert local_older.name == "theirs"
        resolutions = {c.record_id: c.resolution for c in merger.conflicts}
        assert resolutions == {"C1": "local_wins", "C2": "remote_wins"}

    def test_synced_local_is_not_a_conflict(self, store):
        (local,) = saved(store, Category(id="C1", last_modified=at(9), is_synced=True))
        counts = EntityMerger(store).merge(
            EntityType.CATEGORY, [remote_doc(Category(id="C1"), at(10))], [local]
        )
        assert counts.conflicts == 0

    def test_remote_absent_local_records_are_kept(self, store):
        saved(store, Category(id="C1"))
        EntityMerger(store).merge(EntityType.CATEGORY, [], store.fetch(EntityType.CATEGORY))
        store.save()
        assert store.get(EntityType.CATEGORY, "C1") is not None


class TestReferences:
    def test_transaction_references_resolve_or_become_none(self, store):
        refs = ReferenceMaps.build([Category(id="C1")], [Account(id="A1")])
        docs = [
            remote_doc(Transaction(id="T1", category_id="C1", account_id="A1"), at(10)),
            remote_doc(Transaction(id="T2", category_id="ghost", account_id="A-ghost"), at(10)),
        ]
        EntityMerger(store).merge(EntityType.TRANSACTION, docs, [], refs)

        t1 = store.get(EntityType.TRANSACTION, "T1")
        t2 = store.get(EntityType.TRANSACTION, "T2")
        assert (t1.category_id, t1.account_id) == ("C1", "A1")
        assert (t2.category_id, t2.account_id) == (None, None)

    def test_budget_category_resolves(self, store):
        refs = ReferenceMaps.build([Category(id="C1")], [])
        docs = [
            remote_doc(Budget(id="B1", category_id="C1"), at(10)),
            remote_doc(Budget(id="B2", category_id="gone"), at(10)),
        ]
        EntityMerger(store).merge(EntityType.BUDGET, docs, [], refs)

        assert store.get(EntityType.BUDGET, "B1").category_id == "C1"
        assert store.get(EntityType.BUDGET, "B2").category_id is None

    def test_inserted_categories_are_registered(self, store):
        refs = ReferenceMaps.build([], [])
        EntityMerger(store).merge(
            EntityType.CATEGORY, [remote_doc(Category(id="C9"), at(10))], [], refs
        )
        assert refs.resolve_category("C9") == "C9"


class TestMalformedRecords:
    def test_bad_records_are_skipped_and_the_rest_merge(self, store, caplog):
        docs = [
            remote_doc(Transaction(id="T1", amount=Decimal("5")), at(10)),
            {"id": "T2", "amount": "five", "lastModified": 1700000000},
            {"id": "T3", "amount": "1"},  # no lastModified
            "garbage",
            remote_doc(Transaction(id="T4", amount=Decimal("7")), at(10)),
        ]
        with caplog.at_level(logging.WARNING):
            counts = EntityMerger(store).merge(EntityType.TRANSACTION, docs, [])

        assert counts.inserted == 2
        assert counts.skipped == 3
        assert {t.id for t in store.fetch(EntityType.TRANSACTION)} == {"T1", "T4"}
        assert "Skipping malformed transactions record" in caplog.text

    def test_out_of_range_timestamps_are_skipped(self, store):
        docs = [
            {"id": "C-BAD", "name": "Far future", "lastModified": {"seconds": 10**12}},
            remote_doc(Category(id="C-OK", name="Food"), at(10)),
        ]
        counts = EntityMerger(store).merge(EntityType.CATEGORY, docs, [])
        assert (counts.inserted, counts.skipped) == (1, 1)

        txn = remote_doc(Transaction(id="T1", amount=Decimal("5")), at(10))
        txn["date"] = {"_seconds": 10**12}
        counts = EntityMerger(store).merge(EntityType.TRANSACTION, [txn], [])
        assert counts.skipped == 1
        assert store.get(EntityType.TRANSACTION, "T1") is None


def test_merger_does_not_commit(store, temp_db):
    EntityMerger(store).merge(EntityType.CATEGORY, [remote_doc(Category(id="C1"), at(10))], [])
    assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is None
    store.save()
    assert SQLiteStore(temp_db).get(EntityType.CATEGORY, "C1") is not None
