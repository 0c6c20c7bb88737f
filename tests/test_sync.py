"""Tests for listing_sync.sync module."""

from __future__ import annotations

from listing_sync.models import ChangeDirection, CrawlSession, ReconcilePolicy
from listing_sync.storage import PersistenceError, SnapshotReadError
from listing_sync.storage.memory import InMemoryStorage
from listing_sync.sync import DifferentialSyncEngine, classify

from .conftest import make_record


class _BrokenSnapshotStorage(InMemoryStorage):
    def read_snapshot(self):
        raise SnapshotReadError("database unavailable")


class _FlakyUpsertStorage(InMemoryStorage):
    def __init__(self, failing_ids):
        super().__init__()
        self.failing_ids = set(failing_ids)

    def upsert(self, record):
        if record.business_id in self.failing_ids:
            raise PersistenceError(f"write failed for {record.business_id}")
        return super().upsert(record)


class _BrokenChangeLogStorage(InMemoryStorage):
    def append_change_record(self, change):
        raise PersistenceError("price_history locked")


class _RecordingStorage(InMemoryStorage):
    def __init__(self):
        super().__init__()
        self.events = []

    def upsert(self, record):
        self.events.append(("upsert", record.business_id))
        return super().upsert(record)

    def append_change_record(self, change):
        self.events.append(("log", change.business_id))
        super().append_change_record(change)


def _session(*records, session_id="s1") -> CrawlSession:
    return CrawlSession(session_id=session_id, accumulated=list(records))


class TestClassify:
    def test_new_changed_unchanged(self):
        result = classify(
            [make_record("A111AA77", 60_000), make_record("B222BB77", 30_000),
             make_record("C333CC99", 10_000)],
            {"A111AA77": 50_000, "C333CC99": 10_000},
            session_id="s1",
        )
        assert [r.business_id for r in result.new] == ["B222BB77"]
        assert [r.business_id for r, _ in result.changed] == ["A111AA77"]
        assert [r.business_id for r in result.unchanged] == ["C333CC99"]

    def test_drop_to_unknown_price_is_a_change(self):
        result = classify([make_record("A111AA77", 0)], {"A111AA77": 50_000}, session_id="s1")
        change = result.change_price[0]
        assert change.delta == -50_000
        assert change.direction is ChangeDirection.DOWN

    def test_empty_inputs(self):
        result = classify([], {"A111AA77": 1}, session_id="s1")
        assert result.new == [] and result.changed == [] and result.unchanged == []


class TestDifferentialReconcile:
    def test_price_increase_and_new_listing(self):
        storage = InMemoryStorage()
        storage.upsert(make_record("A111AA77", 50_000))
        session = _session(make_record("A111AA77", 60_000), make_record("B222BB77", 30_000))

        report = DifferentialSyncEngine(storage).reconcile(session)

        assert [r.business_id for r in report.new] == ["B222BB77"]
        assert len(report.change_price) == 1
        change = report.change_price[0]
        assert (change.business_id, change.old_price, change.new_price, change.delta) == (
            "A111AA77", 50_000, 60_000, 10_000,
        )
        assert change.direction is ChangeDirection.UP
        assert change.session_id == "s1"
        assert report.unchanged_count == 0
        assert report.inserted == 1
        assert report.updated == 1
        assert storage.read_snapshot() == {"A111AA77": 60_000, "B222BB77": 30_000}

    def test_change_log_records_new_and_moves(self):
        storage = InMemoryStorage()
        storage.upsert(make_record("A111AA77", 50_000))
        storage.upsert(make_record("C333CC99", 20_000))
        session = _session(
            make_record("A111AA77", 45_000),
            make_record("B222BB77", 30_000),
            make_record("C333CC99", 20_000),
        )

        DifferentialSyncEngine(storage).reconcile(session)

        log = {c.business_id: c for c in storage.list_change_records("s1")}
        assert set(log) == {"A111AA77", "B222BB77"}
        assert log["A111AA77"].direction is ChangeDirection.DOWN
        assert log["B222BB77"].direction is ChangeDirection.NEW
        assert log["B222BB77"].old_price is None

    def test_every_record_classified_exactly_once(self):
        storage = InMemoryStorage()
        storage.upsert(make_record("A111AA77", 1))
        storage.upsert(make_record("B222BB77", 2))
        session = _session(
            make_record("A111AA77", 1),
            make_record("B222BB77", 3),
            make_record("C333CC99", 4),
            make_record("E444EE50", 0),
        )

        report = DifferentialSyncEngine(storage).reconcile(session)

        assert report.classified_count == len(session.accumulated)
        ids = [r.business_id for r in report.new] + [c.business_id for c in report.change_price]
        assert len(ids) == len(set(ids))

    def test_second_pass_is_a_no_op(self):
        storage = InMemoryStorage()
        session = _session(make_record("A111AA77", 60_000), make_record("B222BB77", 30_000))
        engine = DifferentialSyncEngine(storage)

        engine.reconcile(session)
        log_size = len(storage.change_log)
        second = engine.reconcile(session)

        assert second.new == []
        assert second.change_price == []
        assert second.unchanged_count == 2
        assert second.skipped == 2
        assert second.persisted_count == 0
        assert len(storage.change_log) == log_size

    def test_unchanged_records_not_written(self):
        storage = InMemoryStorage()
        original = make_record("A111AA77", 1_000, source_url="old")
        storage.upsert(original)

        DifferentialSyncEngine(storage).reconcile(
            _session(make_record("A111AA77", 1_000, source_url="new"))
        )

        assert storage.listings["A111AA77"].source_url == "old"


class TestDiscoveryOrder:
    def test_change_log_follows_accumulated_order(self):
        storage = InMemoryStorage()
        storage.upsert(make_record("A111AA77", 50_000))
        session = _session(make_record("A111AA77", 60_000), make_record("B222BB77", 30_000))

        DifferentialSyncEngine(storage).reconcile(session)

        assert [c.business_id for c in storage.list_change_records("s1")] == [
            "A111AA77", "B222BB77",
        ]

    def test_writes_follow_accumulated_order(self):
        storage = _RecordingStorage()
        storage.upsert(make_record("B222BB77", 1))
        storage.upsert(make_record("E444EE50", 5))
        storage.events.clear()
        session = _session(
            make_record("A111AA77", 1),
            make_record("B222BB77", 2),
            make_record("C333CC99", 3),
            make_record("E444EE50", 5),
        )

        DifferentialSyncEngine(storage).reconcile(session)

        assert storage.events == [
            ("upsert", "A111AA77"), ("log", "A111AA77"),
            ("upsert", "B222BB77"), ("log", "B222BB77"),
            ("upsert", "C333CC99"), ("log", "C333CC99"),
        ]

    def test_classification_keeps_input_order(self):
        records = [make_record(f"A{n:03d}AA77", n) for n in range(6)]
        snapshot = {"A001AA77": 1, "A003AA77": 99, "A005AA77": 5}

        result = classify(records, snapshot, session_id="s1")

        assert [r.business_id for r, _ in result.entries] == [r.business_id for r in records]
        assert [r.business_id for r in result.new] == ["A000AA77", "A002AA77", "A004AA77"]


class TestFullReplaceReconcile:
    def test_writes_every_record(self):
        storage = InMemoryStorage()
        storage.upsert(make_record("A111AA77", 1_000))
        session = _session(make_record("A111AA77", 1_000), make_record("B222BB77", 2_000))

        report = DifferentialSyncEngine(storage).reconcile(session, ReconcilePolicy.FULL_REPLACE)

        assert report.policy is ReconcilePolicy.FULL_REPLACE
        assert report.inserted == 1
        assert report.updated == 1
        assert report.skipped == 0
        assert report.unchanged_count == 1
        assert [r.business_id for r in report.new] == ["B222BB77"]

    def test_counts_follow_upsert_outcome(self):
        storage = InMemoryStorage()
        session = _session(*(make_record(f"A{n:03d}AA77", n + 1) for n in range(5)))
        engine = DifferentialSyncEngine(storage)

        first = engine.reconcile(session, ReconcilePolicy.FULL_REPLACE)
        second = engine.reconcile(session, ReconcilePolicy.FULL_REPLACE)

        assert (first.inserted, first.updated) == (5, 0)
        assert (second.inserted, second.updated) == (0, 5)


class TestFailures:
    def test_snapshot_failure_treats_all_as_new(self):
        storage = _BrokenSnapshotStorage()
        storage.upsert(make_record("A111AA77", 50_000))
        session = _session(make_record("A111AA77", 60_000), make_record("B222BB77", 30_000))

        report = DifferentialSyncEngine(storage).reconcile(session)

        assert report.snapshot_failed is True
        assert [r.business_id for r in report.new] == ["A111AA77", "B222BB77"]
        assert report.change_price == []
        assert report.inserted == 1
        assert report.updated == 1

    def test_upsert_failure_counted_and_pass_continues(self):
        storage = _FlakyUpsertStorage({"A111AA77"})
        session = _session(make_record("A111AA77", 1), make_record("B222BB77", 2))

        report = DifferentialSyncEngine(storage).reconcile(session)

        assert report.persist_failures == 1
        assert report.inserted == 1
        assert set(storage.listings) == {"B222BB77"}
        assert len(report.new) == 2

    def test_change_log_failure_counted(self):
        storage = _BrokenChangeLogStorage()
        storage.upsert(make_record("A111AA77", 1))
        session = _session(make_record("A111AA77", 2), make_record("B222BB77", 2))

        report = DifferentialSyncEngine(storage).reconcile(session)

        assert report.change_log_failures == 2
        assert report.persisted_count == 2
