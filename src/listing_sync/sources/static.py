"""Offline source serving a fixed sequence of pages."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from listing_sync.sources.base import SourceGateway

logger = logging.getLogger(__name__)


class StaticSourceGateway(SourceGateway):
    """Serves `pages[cursor // page_size]`; past the last page the source is empty."""

    name = "static"

    def __init__(self, pages: Sequence[str], *, page_size: int = 20) -> None:
        self._pages = list(pages)
        self._page_size = max(1, page_size)
        self.calls: list[int] = []

    @classmethod
    def from_directory(cls, directory: Path, *, page_size: int = 20) -> StaticSourceGateway:
        """Load every file in `directory`, in name order, as one page."""
        files = sorted(p for p in directory.iterdir() if p.is_file())
        logger.info("Loaded %d offline pages from %s", len(files), directory)
        return cls(
            [p.read_text(encoding="utf-8") for p in files],
            page_size=page_size,
        )

    def fetch(self, cursor: int) -> str | None:
        self.calls.append(cursor)
        index = cursor // self._page_size
        if index >= len(self._pages):
            return None
        return self._pages[index]
