"""Fetch listing pages over HTTP with retry logic."""

from __future__ import annotations

import logging

import httpx
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
from tenacity.wait import wait_base

from listing_sync.config import Settings
from listing_sync.sources.base import FetchError, SourceGateway, TransientFetchError

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
EXHAUSTED_STATUS_CODES = {204, 404, 410}


class _RetryableStatus(Exception):
    def __init__(self, status_code: int) -> None:
        super().__init__(f"Retryable status={status_code}")
        self.status_code = status_code


class HttpSourceGateway(SourceGateway):
    """
    Pulls pages from `settings.source_url`, passing the offset as a query
    parameter.

    One httpx.Client is kept open for the life of the gateway so a paused
    session resumes without reconnecting.
    """

    name = "http"

    def __init__(
        self,
        settings: Settings,
        *,
        client: httpx.Client | None = None,
        wait: wait_base | None = None,
    ) -> None:
        if not settings.source_url:
            raise ValueError("HttpSourceGateway needs settings.source_url")
        self.settings = settings
        self._client = client
        self._wait = wait or wait_exponential(multiplier=2, min=4, max=30)

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(
                timeout=self.settings.request_timeout,
                headers={"User-Agent": self.settings.user_agent},
                follow_redirects=True,
            )
        return self._client

    def fetch(self, cursor: int) -> str | None:
        params = {self.settings.offset_param: cursor} if cursor else None
        try:
            for attempt in Retrying(
                stop=stop_after_attempt(max(1, self.settings.fetch_retries)),
                wait=self._wait,
                retry=retry_if_exception_type((httpx.TransportError, _RetryableStatus)),
                reraise=True,
            ):
                with attempt:
                    return self._get(params)
        except (httpx.TransportError, _RetryableStatus) as exc:
            logger.error("Fetch failed for cursor=%d after retries: %s", cursor, exc)
            raise TransientFetchError(f"Failed to fetch cursor={cursor}: {exc}") from exc
        except httpx.HTTPStatusError as exc:
            logger.error("Fetch failed for cursor=%d: %s", cursor, exc)
            raise FetchError(f"Failed to fetch cursor={cursor}: {exc}") from exc
        return None

    def _get(self, params: dict[str, int] | None) -> str | None:
        response = self.client.get(self.settings.source_url, params=params)
        if response.status_code in EXHAUSTED_STATUS_CODES:
            logger.info("Source returned %d, treating as empty", response.status_code)
            return None
        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _RetryableStatus(response.status_code)
        response.raise_for_status()
        logger.info("Fetched %d bytes from %s", len(response.text), response.url)
        return response.text or None

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
