"""Storage gateway contract for listings, the price change log and session bookkeeping."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from listing_sync.models import ChangeRecord, ListingRecord, SessionStatus


class PersistenceError(Exception):
    """Raised when a single storage operation fails."""


class SnapshotReadError(PersistenceError):
    """Raised when the current {business_id: price} view cannot be read."""


class UpsertAction(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"


@dataclass(frozen=True)
class UpsertOutcome:
    business_id: str
    action: UpsertAction


@dataclass
class SessionUpdate:
    """Partial update of a session's bookkeeping row; None fields are left alone."""

    status: SessionStatus | None = None
    totals: dict[str, int] = field(default_factory=dict)
    error: str | None = None
    completed_at: datetime | None = None


class StorageGateway(ABC):
    """
    Durable state beyond the active crawl session.

    Implementations acquire and release their connection per call; nothing is
    held open between calls.
    """

    name: str = "base"

    @abstractmethod
    def upsert(self, record: ListingRecord) -> UpsertOutcome:
        """Insert or update one listing keyed by business id."""
        ...

    @abstractmethod
    def read_snapshot(self) -> dict[str, int]:
        """Current persisted price per business id."""
        ...

    @abstractmethod
    def append_change_record(self, change: ChangeRecord) -> None:
        ...

    @abstractmethod
    def list_change_records(self, session_id: str | None = None) -> list[ChangeRecord]:
        ...

    @abstractmethod
    def create_session(self, session_id: str, params: dict[str, Any]) -> None:
        ...

    @abstractmethod
    def update_session(self, session_id: str, update: SessionUpdate) -> None:
        ...

    def close(self) -> None:
        """Dispose of pooled resources."""
