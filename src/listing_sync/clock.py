"""Monotonic extraction timestamps for one crawl run."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

_TICK = timedelta(microseconds=1)


class MonotonicClock:
    """Wall-clock UTC timestamps that never repeat or go backwards."""

    def __init__(
        self,
        last: datetime | None = None,
        source: Callable[[], datetime] | None = None,
    ) -> None:
        self._last = last
        self._source = source or (lambda: datetime.now(timezone.utc))

    @property
    def last(self) -> datetime | None:
        return self._last

    def now(self) -> datetime:
        current = self._source()
        if self._last is not None and current <= self._last:
            current = self._last + _TICK
        self._last = current
        return current
