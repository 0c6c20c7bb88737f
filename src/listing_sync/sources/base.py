"""Source gateway contract: paginated, pull-based fetch by numeric offset."""

from __future__ import annotations

from abc import ABC, abstractmethod


class FetchError(Exception):
    """Raised when the source cannot serve a page. Fatal to the current run."""


class TransientFetchError(FetchError):
    """Network or timeout fault that outlived the gateway's own retries."""


class SourceGateway(ABC):
    """Contract for listing sources driven by the pagination controller."""

    name: str = "base"

    @abstractmethod
    def fetch(self, cursor: int) -> str | None:
        """
        Return the raw batch at offset `cursor`.

        None or an empty string signals that the source has no more data.
        """
        ...

    def close(self) -> None:
        """Release the fetch channel. Called once the caller is done with the run."""

    def __enter__(self) -> SourceGateway:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
