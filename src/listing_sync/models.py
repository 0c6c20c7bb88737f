"""Pydantic models for the crawl and sync pipeline."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ListingStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class SessionStatus(str, Enum):
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconcilePolicy(str, Enum):
    FULL_REPLACE = "full_replace"
    DIFFERENTIAL = "differential"


class ChangeDirection(str, Enum):
    UP = "up"
    DOWN = "down"
    NONE = "none"
    NEW = "new"

    @classmethod
    def from_delta(cls, delta: int | None) -> ChangeDirection:
        if delta is None:
            return cls.NEW
        if delta > 0:
            return cls.UP
        if delta < 0:
            return cls.DOWN
        return cls.NONE


class ListingRecord(BaseModel):
    """One scraped listing, keyed by its business id."""

    business_id: str = Field(min_length=1, description="Natural key (plate code)")
    price: int = Field(default=0, ge=0, description="0 means unknown, not free")
    region: str = Field(default="", description="Region code, usually the id suffix")
    status: ListingStatus = ListingStatus.ACTIVE
    posted_at: datetime | None = None
    updated_at: datetime | None = None
    source_url: str = ""
    extracted_at: datetime = Field(default_factory=utcnow)


class RunParams(BaseModel):
    """Crawl parameters, persisted with the session so resumes reuse them."""

    page_size: int = Field(default=20, gt=0)
    batch_size: int = Field(default=500, gt=0)
    max_iterations: int = Field(default=200, gt=0)
    max_empty_responses: int = Field(default=3, gt=0)
    min_price: int = Field(default=0, ge=0)
    max_price: int | None = None
    region: str | None = None
    request_delay: float = Field(default=1.0, ge=0)
    policy: ReconcilePolicy = ReconcilePolicy.DIFFERENTIAL


class ChangeRecord(BaseModel):
    """One entry of the auditable price change log."""

    business_id: str
    old_price: int | None = None
    new_price: int
    delta: int | None = None
    direction: ChangeDirection
    session_id: str
    recorded_at: datetime = Field(default_factory=utcnow)


class DiffReport(BaseModel):
    """Outcome of one reconciliation pass."""

    session_id: str
    policy: ReconcilePolicy
    new: list[ListingRecord] = Field(default_factory=list)
    change_price: list[ChangeRecord] = Field(default_factory=list)
    unchanged_count: int = 0
    snapshot_failed: bool = Field(
        default=False,
        description="Snapshot could not be read; every record was treated as new",
    )
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    persist_failures: int = 0
    change_log_failures: int = 0
    generated_at: datetime = Field(default_factory=utcnow)

    @property
    def classified_count(self) -> int:
        return len(self.new) + len(self.change_price) + self.unchanged_count

    @property
    def persisted_count(self) -> int:
        return self.inserted + self.updated


class CrawlSession(BaseModel):
    """Mutable state of one crawl run, spanning pause/resume cycles."""

    session_id: str
    params: RunParams = Field(default_factory=RunParams)
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = None
    status: SessionStatus = SessionStatus.RUNNING
    cursor: int = 0
    iteration: int = 0
    batch_ordinal: int = 0
    accumulated: list[ListingRecord] = Field(default_factory=list)
    consecutive_empty_responses: int = 0
    consecutive_fetch_failures: int = 0
    last_batch_digest: str | None = None
    extraction_errors: int = 0
    error: str | None = None
    report: DiffReport | None = None

    def seen_ids(self) -> set[str]:
        return {record.business_id for record in self.accumulated}


class RunResult(BaseModel):
    """What the caller gets back each time the controller yields."""

    session_id: str
    status: SessionStatus
    paused: bool = False
    completed: bool = False
    stopped: bool = False
    batch_ordinal: int | None = None
    count: int = 0
    success: bool = True
    error: str | None = None

    @classmethod
    def from_session(cls, session: CrawlSession, *, stopped: bool = False) -> RunResult:
        paused = session.status is SessionStatus.PAUSED
        return cls(
            session_id=session.session_id,
            status=session.status,
            paused=paused,
            completed=session.status is SessionStatus.COMPLETED,
            stopped=stopped,
            batch_ordinal=session.batch_ordinal if paused else None,
            count=len(session.accumulated),
            success=session.status is not SessionStatus.FAILED,
            error=session.error,
        )


class SessionStats(BaseModel):
    """Summary of a session's accumulated records. Unknown prices (0) are left out of price figures."""

    session_id: str
    status: SessionStatus
    total_listings: int = 0
    priced_listings: int = 0
    avg_price: int = 0
    min_price: int = 0
    max_price: int = 0
    unique_regions: int = 0
    region_counts: dict[str, int] = Field(default_factory=dict)
    extraction_errors: int = 0

    @classmethod
    def from_session(cls, session: CrawlSession) -> SessionStats:
        prices = [r.price for r in session.accumulated if r.price > 0]
        region_counts: dict[str, int] = {}
        for record in session.accumulated:
            if record.region:
                region_counts[record.region] = region_counts.get(record.region, 0) + 1
        return cls(
            session_id=session.session_id,
            status=session.status,
            total_listings=len(session.accumulated),
            priced_listings=len(prices),
            avg_price=round(sum(prices) / len(prices)) if prices else 0,
            min_price=min(prices, default=0),
            max_price=max(prices, default=0),
            unique_regions=len(region_counts),
            region_counts=dict(sorted(region_counts.items())),
            extraction_errors=session.extraction_errors,
        )
