"""listing-sync - incremental listing crawler with differential price sync."""

__version__ = "0.1.0"

from listing_sync.engine import SyncEngine
from listing_sync.models import (
    ChangeRecord,
    CrawlSession,
    DiffReport,
    ListingRecord,
    RunResult,
    SessionStats,
)

__all__ = [
    "ChangeRecord",
    "CrawlSession",
    "DiffReport",
    "ListingRecord",
    "RunResult",
    "SessionStats",
    "SyncEngine",
]
