"""Turn one raw listing page into structured ListingRecords.

Each business id found in the page is one candidate. Price, dates, status and
link are pulled from the text around the id through ordered fallback chains,
so a partly broken row still yields a record. A candidate that cannot be
built at all is reported as an ExtractionError and skipped; one bad row never
sinks the batch.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from urllib.parse import urljoin

from listing_sync.cleaner import clean_html, split_fragments
from listing_sync.models import ListingRecord, ListingStatus, RunParams

logger = logging.getLogger(__name__)

# Plate code: letter, three digits, two letters, 2-3 digit region suffix.
BUSINESS_ID_RE = re.compile(
    r"(?<!\w)([A-ZА-ЯЁ])\s?(\d{3})\s?([A-ZА-ЯЁ]{2})\s?(\d{2,3})(?!\d)",
    re.IGNORECASE,
)
# Thousands grouped by space, dot or comma; an optional 1-2 digit fraction.
_NUMBER = (
    r"\d{1,3}(?:[ \u00a0.,]\d{3}(?!\d))+(?:[.,]\d{1,2}(?!\d))?"
    r"|\d+(?:[.,]\d{1,2}(?!\d))?"
)
_FRACTION_RE = re.compile(r"[.,]\d{1,2}$")
_PRICE_BEFORE_CURRENCY_RE = re.compile(
    rf"({_NUMBER})\s*(?:₽|руб|р\.|rub\b|\$)", re.IGNORECASE
)
_PRICE_AFTER_CURRENCY_RE = re.compile(rf"(?:₽|\$)\s*({_NUMBER})")
_NUMBER_RE = re.compile(_NUMBER)
_DATE_RE = re.compile(r"(?<!\d)(\d{1,2})\.(\d{1,2})\.(\d{4})(?!\d)")
_TODAY_RE = re.compile(r"\b(?:today|сегодня)\b", re.IGNORECASE)
_YESTERDAY_RE = re.compile(r"\b(?:yesterday|вчера)\b", re.IGNORECASE)
_INACTIVE_RE = re.compile(r"sold|inactive|продан|снят|неактивн", re.IGNORECASE)
_REGION_RE = re.compile(r"(\d{2,3})$")
# Cyrillic plate letters and their Latin look-alikes.
_PLATE_LETTERS = str.maketrans("АВЕКМНОРСТУХ", "ABEKMHOPCTYX")


class ExtractionError(Exception):
    """Raised when one candidate fragment cannot be turned into a record."""

    def __init__(self, message: str, business_id: str | None = None) -> None:
        super().__init__(message)
        self.business_id = business_id


@dataclass
class ExtractionResult:
    """Accepted records plus the per-candidate failures of one batch."""

    records: list[ListingRecord] = field(default_factory=list)
    errors: list[ExtractionError] = field(default_factory=list)
    duplicates: int = 0
    rejected: int = 0

    @property
    def new_count(self) -> int:
        return len(self.records)


def normalize_business_id(raw: str) -> str:
    return re.sub(r"\s+", "", raw).upper().translate(_PLATE_LETTERS)


def region_from_business_id(business_id: str) -> str:
    match = _REGION_RE.search(business_id)
    return match.group(1) if match else ""


def parse_price(context: str, min_plausible_price: int) -> int:
    """
    Price fallback chain: currency-adjacent number, then the first number
    that is at least `min_plausible_price`, then 0 (unknown).
    """
    for pattern in (_PRICE_BEFORE_CURRENCY_RE, _PRICE_AFTER_CURRENCY_RE):
        match = pattern.search(context)
        if match:
            return _to_int(match.group(1))

    for token in _NUMBER_RE.findall(context):
        value = _to_int(token)
        if value >= min_plausible_price:
            return value
    return 0


def parse_dates(context: str, extracted_at: datetime) -> tuple[datetime, datetime]:
    """
    Date fallback chain: explicit DD.MM.YYYY tokens (posted, then updated),
    a relative keyword, then the extraction time itself.

    Raises ValueError for a DD.MM.YYYY token that is not a calendar date.
    """
    explicit = [
        datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
        for day, month, year in _DATE_RE.findall(context)
    ]
    if explicit:
        posted = explicit[0]
        updated = explicit[1] if len(explicit) > 1 else posted
        return posted, updated

    midnight = extracted_at.astimezone(timezone.utc).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    if _TODAY_RE.search(context):
        return midnight, midnight
    if _YESTERDAY_RE.search(context):
        yesterday = midnight - timedelta(days=1)
        return yesterday, yesterday
    return extracted_at, extracted_at


def _to_int(token: str) -> int:
    return int(re.sub(r"\D", "", _FRACTION_RE.sub("", token)))


class ListingExtractor:
    """Extracts listings from one raw batch and applies the filter predicate."""

    def __init__(
        self,
        *,
        min_price: int = 0,
        max_price: int | None = None,
        region: str | None = None,
        min_plausible_price: int = 1000,
        base_url: str = "",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.min_price = min_price
        self.max_price = max_price
        self.region = region or None
        self.min_plausible_price = min_plausible_price
        self.base_url = base_url
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @classmethod
    def for_params(
        cls,
        params: RunParams,
        *,
        base_url: str = "",
        min_plausible_price: int = 1000,
        clock: Callable[[], datetime] | None = None,
    ) -> ListingExtractor:
        return cls(
            min_price=params.min_price,
            max_price=params.max_price,
            region=params.region,
            min_plausible_price=min_plausible_price,
            base_url=base_url,
            clock=clock,
        )

    def with_clock(self, clock: Callable[[], datetime]) -> ListingExtractor:
        return ListingExtractor(
            min_price=self.min_price,
            max_price=self.max_price,
            region=self.region,
            min_plausible_price=self.min_plausible_price,
            base_url=self.base_url,
            clock=clock,
        )

    def extract(self, raw_batch: str, already_seen: Iterable[str] = ()) -> ExtractionResult:
        """Parse `raw_batch`; ids in `already_seen` and repeats within the batch are skipped."""
        result = ExtractionResult()
        seen = set(already_seen)

        for fragment in split_fragments(clean_html(raw_batch), BUSINESS_ID_RE):
            text = fragment.text
            matches = list(BUSINESS_ID_RE.finditer(text))
            for index, match in enumerate(matches):
                business_id = normalize_business_id(match.group(0))
                if business_id in seen:
                    result.duplicates += 1
                    continue
                seen.add(business_id)

                # Leading text (a date cell, say) belongs to the first id only.
                before = text[:match.start()] if index == 0 else ""
                end = matches[index + 1].start() if index + 1 < len(matches) else len(text)
                context = before + " " + text[match.end():end]
                href = fragment.href if len(matches) == 1 else None

                try:
                    record = self._build_record(business_id, context, href)
                except ExtractionError as exc:
                    result.errors.append(exc)
                    logger.debug("Skipping candidate %s: %s", business_id, exc)
                    continue

                if self.accepts(record):
                    result.records.append(record)
                else:
                    result.rejected += 1

        logger.debug(
            "Extracted %d records (%d duplicates, %d rejected, %d errors)",
            result.new_count, result.duplicates, result.rejected, len(result.errors),
        )
        return result

    def accepts(self, record: ListingRecord) -> bool:
        """
        Filter predicate. Records with an unknown price (0) are kept whatever
        the price bounds are; only a known price is range-checked.
        """
        if not record.business_id:
            return False
        if record.price > 0:
            if record.price < self.min_price:
                return False
            if self.max_price is not None and record.price > self.max_price:
                return False
        if self.region and record.region != self.region:
            return False
        return True

    def _build_record(
        self, business_id: str, context: str, href: str | None
    ) -> ListingRecord:
        extracted_at = self._clock()
        try:
            posted_at, updated_at = parse_dates(context, extracted_at)
            # Date tokens must not be read as prices.
            price_context = _DATE_RE.sub(" ", context)
            price = parse_price(price_context, self.min_plausible_price)
            status = (
                ListingStatus.INACTIVE if _INACTIVE_RE.search(context) else ListingStatus.ACTIVE
            )
            return ListingRecord(
                business_id=business_id,
                price=price,
                region=region_from_business_id(business_id),
                status=status,
                posted_at=posted_at,
                updated_at=updated_at,
                source_url=urljoin(self.base_url, href) if href else "",
                extracted_at=extracted_at,
            )
        except ValueError as exc:
            raise ExtractionError(str(exc), business_id=business_id) from exc
