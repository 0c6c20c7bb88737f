"""Process-local storage backend."""

from __future__ import annotations

import threading
from typing import Any

from listing_sync.config import Settings
from listing_sync.models import ChangeRecord, ListingRecord, utcnow
from listing_sync.storage.base import (
    PersistenceError,
    SessionUpdate,
    StorageGateway,
    UpsertAction,
    UpsertOutcome,
)


class InMemoryStorage(StorageGateway):
    """Keeps listings, change log and session rows in dictionaries."""

    name = "memory"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings
        self.listings: dict[str, ListingRecord] = {}
        self.change_log: list[ChangeRecord] = []
        self.sessions: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()

    def upsert(self, record: ListingRecord) -> UpsertOutcome:
        with self._lock:
            action = (
                UpsertAction.UPDATED if record.business_id in self.listings
                else UpsertAction.INSERTED
            )
            self.listings[record.business_id] = record.model_copy()
        return UpsertOutcome(business_id=record.business_id, action=action)

    def read_snapshot(self) -> dict[str, int]:
        with self._lock:
            return {bid: rec.price for bid, rec in self.listings.items()}

    def append_change_record(self, change: ChangeRecord) -> None:
        with self._lock:
            self.change_log.append(change.model_copy())

    def list_change_records(self, session_id: str | None = None) -> list[ChangeRecord]:
        with self._lock:
            return [
                c for c in self.change_log
                if session_id is None or c.session_id == session_id
            ]

    def create_session(self, session_id: str, params: dict[str, Any]) -> None:
        with self._lock:
            self.sessions[session_id] = {
                "status": "running",
                "params": dict(params),
                "started_at": utcnow(),
                "completed_at": None,
                "error": None,
                "totals": {},
            }

    def update_session(self, session_id: str, update: SessionUpdate) -> None:
        with self._lock:
            row = self.sessions.get(session_id)
            if row is None:
                raise PersistenceError(f"Unknown session '{session_id}'")
            if update.status is not None:
                row["status"] = update.status.value
            if update.error is not None:
                row["error"] = update.error
            if update.completed_at is not None:
                row["completed_at"] = update.completed_at
            row["totals"].update(update.totals)
