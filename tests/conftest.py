"""Shared fixtures for listing-sync tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from listing_sync.config import Settings
from listing_sync.models import ListingRecord, RunParams
from listing_sync.session_store import InMemorySessionStore
from listing_sync.sources import StaticSourceGateway
from listing_sync.storage.memory import InMemoryStorage


@pytest.fixture()
def settings() -> Settings:
    """Offline settings: no pacing, small batches, in-memory stores."""
    return Settings(
        source_url="https://listings.example.com/catalog",
        page_size=20,
        batch_size=2,
        max_empty_responses=3,
        request_delay=0.0,
        storage_backend="memory",
        session_store="memory",
    )


@pytest.fixture()
def params() -> RunParams:
    return RunParams(page_size=20, batch_size=2, max_empty_responses=3, request_delay=0.0)


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture()
def five_pages() -> list[str]:
    """Five pages with one distinct listing each."""
    return [
        make_page(("A111AA77", "150 000 ₽", "01.02.2024")),
        make_page(("B222BB77", "90 000 ₽", "сегодня")),
        make_page(("C333CC99", "45 000 ₽", "")),
        make_page(("E444EE50", "", "вчера")),
        make_page(("K555KK777", "1 200 000 ₽", "03.03.2024")),
    ]


@pytest.fixture()
def five_page_source(five_pages, params) -> StaticSourceGateway:
    return StaticSourceGateway(five_pages, page_size=params.page_size)


def make_page(*rows: tuple[str, str, str], href: bool = True) -> str:
    """Render rows of (plate, price, date) as a listings table page."""
    body = []
    for plate, price, date in rows:
        link = f'<a href="/lot/{plate}">{plate}</a>' if href else plate
        body.append(
            f"<tr><td>{link}</td><td>{price}</td><td>{date}</td></tr>"
        )
    return (
        "<html><head><title>Listings</title></head><body>"
        "<nav><a href='/'>Home</a> 999 999 ₽</nav>"
        "<table class='listings'>" + "".join(body) + "</table>"
        "<footer>Contacts</footer></body></html>"
    )


BASE_TIME = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


def make_record(business_id: str, price: int = 0, **fields) -> ListingRecord:
    fields.setdefault("region", business_id[-2:])
    fields.setdefault("extracted_at", BASE_TIME)
    return ListingRecord(business_id=business_id, price=price, **fields)


def ticking_clock(start: datetime = BASE_TIME, step: timedelta = timedelta(seconds=1)):
    """Deterministic clock returning start, start+step, ..."""
    state = {"now": start - step}

    def now() -> datetime:
        state["now"] += step
        return state["now"]

    return now
