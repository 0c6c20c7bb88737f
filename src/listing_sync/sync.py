"""Differential sync: classify a session's records against the stored snapshot and persist them."""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from listing_sync.models import (
    ChangeDirection,
    ChangeRecord,
    CrawlSession,
    DiffReport,
    ListingRecord,
    ReconcilePolicy,
    utcnow,
)
from listing_sync.storage.base import PersistenceError, SnapshotReadError, StorageGateway, UpsertAction

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """
    Records in discovery order, each paired with its ChangeRecord.

    The change is None for an unchanged record, has direction NEW for a record
    absent from the snapshot and UP/DOWN for a price move.
    """

    entries: list[tuple[ListingRecord, ChangeRecord | None]] = field(default_factory=list)

    @property
    def new(self) -> list[ListingRecord]:
        return [
            record for record, change in self.entries
            if change is not None and change.direction is ChangeDirection.NEW
        ]

    @property
    def changed(self) -> list[tuple[ListingRecord, ChangeRecord]]:
        return [
            (record, change) for record, change in self.entries
            if change is not None and change.direction is not ChangeDirection.NEW
        ]

    @property
    def unchanged(self) -> list[ListingRecord]:
        return [record for record, change in self.entries if change is None]

    @property
    def change_price(self) -> list[ChangeRecord]:
        return [change for _, change in self.changed]


def classify(
    accumulated: Sequence[ListingRecord],
    snapshot: Mapping[str, int],
    *,
    session_id: str,
    clock: Callable[[], datetime] = utcnow,
) -> Classification:
    """
    Compare each record with the snapshot price for its id.

    Absent from the snapshot -> new; a different price -> changed, with the
    delta; the same price -> unchanged. Duplicate ids were already removed at
    extraction time, so the output keeps the input order one-to-one.
    """
    result = Classification()
    for record in accumulated:
        old_price = snapshot.get(record.business_id)
        if old_price == record.price:
            result.entries.append((record, None))
            continue

        delta = None if old_price is None else record.price - old_price
        result.entries.append(
            (
                record,
                ChangeRecord(
                    business_id=record.business_id,
                    old_price=old_price,
                    new_price=record.price,
                    delta=delta,
                    direction=ChangeDirection.from_delta(delta),
                    session_id=session_id,
                    recorded_at=clock(),
                ),
            )
        )
    return result



class DifferentialSyncEngine:
    """Reconciles a session's accumulated records with a StorageGateway."""

    def __init__(self, storage: StorageGateway) -> None:
        self._storage = storage

    def reconcile(
        self,
        session: CrawlSession,
        policy: ReconcilePolicy = ReconcilePolicy.DIFFERENTIAL,
    ) -> DiffReport:
        """
        Classify and persist the session's records.

        The snapshot is read exactly once. If it cannot be read, every record
        is treated as new so nothing is silently dropped. Individual write
        failures are counted in the report and never stop the pass.
        """
        accumulated = session.accumulated
        snapshot_failed = False
        try:
            snapshot = self._storage.read_snapshot()
        except SnapshotReadError as exc:
            logger.error("Snapshot read failed, treating all records as new: %s", exc)
            snapshot = {}
            snapshot_failed = True

        classification = classify(accumulated, snapshot, session_id=session.session_id)
        report = DiffReport(
            session_id=session.session_id,
            policy=policy,
            new=classification.new,
            change_price=classification.change_price,
            unchanged_count=len(classification.unchanged),
            snapshot_failed=snapshot_failed,
        )

        # One pass in discovery order: write the record, then log its change.
        for record, change in classification.entries:
            if change is None and policy is not ReconcilePolicy.FULL_REPLACE:
                report.skipped += 1
                continue
            self._persist(record, report)
            if change is not None:
                self._log_change(change, report)

        logger.info(
            "Reconciled session %s (%s): %d new, %d changed, %d unchanged; "
            "%d inserted, %d updated, %d write failures",
            session.session_id, policy.value, len(report.new), len(report.change_price),
            report.unchanged_count, report.inserted, report.updated, report.persist_failures,
        )
        return report

    def _persist(self, record: ListingRecord, report: DiffReport) -> None:
        try:
            outcome = self._storage.upsert(record)
        except PersistenceError as exc:
            report.persist_failures += 1
            logger.warning("Upsert failed for %s: %s", record.business_id, exc)
            return
        if outcome.action is UpsertAction.INSERTED:
            report.inserted += 1
        else:
            report.updated += 1

    def _log_change(self, change: ChangeRecord, report: DiffReport) -> None:
        try:
            self._storage.append_change_record(change)
        except PersistenceError as exc:
            report.change_log_failures += 1
            logger.warning("Change log append failed for %s: %s", change.business_id, exc)
