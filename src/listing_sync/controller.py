"""Pagination controller: the fetch -> extract -> decide loop of one crawl session.

Each call to `run` drives the session from its persisted cursor until one of:

  BatchPause  another `batch_size` records have been accumulated
  Stop        an external stop was requested (checkpointed like a pause)
  Exhausted   `max_empty_responses` empty batches in a row, or the iteration cap
  Fatal       a non-transient fetch error, or the source failing repeatedly

Every exit writes a checkpoint through the SessionStore, so the caller can
resume the same session later, in this process or another one.
"""

from __future__ import annotations

import hashlib
import logging
import threading

from listing_sync.clock import MonotonicClock
from listing_sync.extractor import ListingExtractor
from listing_sync.models import CrawlSession, RunResult, SessionStatus, utcnow
from listing_sync.session_store import SessionFatalError, SessionStore
from listing_sync.sources.base import FetchError, SourceGateway, TransientFetchError

logger = logging.getLogger(__name__)


def batch_digest(raw_batch: str) -> str:
    return hashlib.sha256(raw_batch.encode("utf-8")).hexdigest()


class PaginationController:
    """Drives a SourceGateway through one session, one page per iteration."""

    def __init__(
        self,
        *,
        source: SourceGateway,
        extractor: ListingExtractor,
        session_store: SessionStore,
        stop_event: threading.Event | None = None,
    ) -> None:
        self._source = source
        self._extractor = extractor
        self._store = session_store
        self._stop_event = stop_event or threading.Event()

    def run(self, session: CrawlSession) -> RunResult:
        params = session.params
        last_extracted = max((r.extracted_at for r in session.accumulated), default=None)
        extractor = self._extractor.with_clock(MonotonicClock(last=last_extracted).now)
        seen = session.seen_ids()

        session.status = SessionStatus.RUNNING
        session.error = None
        logger.info(
            "Session %s running from cursor=%d batch=%d (%d records so far)",
            session.session_id, session.cursor, session.batch_ordinal, len(session.accumulated),
        )

        while True:
            if self._stop_event.is_set():
                logger.info("Stop requested for session %s", session.session_id)
                return self._pause(session, stopped=True)

            session.cursor = session.iteration * params.page_size
            try:
                raw_batch = self._source.fetch(session.cursor)
            except TransientFetchError as exc:
                session.consecutive_fetch_failures += 1
                session.consecutive_empty_responses += 1
                logger.warning(
                    "Transient fetch failure at cursor=%d (%d in a row): %s",
                    session.cursor, session.consecutive_fetch_failures, exc,
                )
            except FetchError as exc:
                logger.error("Fetch failed at cursor=%d: %s", session.cursor, exc)
                return self._fail(session, str(exc))
            else:
                session.consecutive_fetch_failures = 0
                self._absorb(session, extractor, raw_batch, seen)

            session.iteration += 1
            session.cursor = session.iteration * params.page_size

            if session.consecutive_empty_responses >= params.max_empty_responses:
                if session.consecutive_fetch_failures >= params.max_empty_responses:
                    error = SessionFatalError(
                        f"Source unreachable for {session.consecutive_fetch_failures} "
                        "consecutive fetches"
                    )
                    logger.error("Session %s: %s", session.session_id, error)
                    return self._fail(session, str(error))
                logger.info(
                    "Source exhausted after %d empty responses",
                    session.consecutive_empty_responses,
                )
                return self._complete(session)

            if session.iteration >= params.max_iterations:
                logger.info("Iteration cap %d reached", params.max_iterations)
                return self._complete(session)

            threshold = (session.batch_ordinal + 1) * params.batch_size
            if len(session.accumulated) >= threshold:
                session.batch_ordinal += 1
                return self._pause(session)

            # Pacing between requests; a stop request cuts the wait short.
            self._stop_event.wait(params.request_delay)

    def _absorb(
        self,
        session: CrawlSession,
        extractor: ListingExtractor,
        raw_batch: str | None,
        seen: set[str],
    ) -> None:
        if not raw_batch or not raw_batch.strip():
            session.consecutive_empty_responses += 1
            logger.info("Empty response at cursor=%d", session.cursor)
            return

        digest = batch_digest(raw_batch)
        if digest == session.last_batch_digest:
            session.consecutive_empty_responses += 1
            logger.info("Response at cursor=%d repeats the previous page", session.cursor)
            return
        session.last_batch_digest = digest

        result = extractor.extract(raw_batch, seen)
        session.accumulated.extend(result.records)
        seen.update(record.business_id for record in result.records)
        session.extraction_errors += len(result.errors)
        for error in result.errors:
            logger.warning("Skipped candidate %s: %s", error.business_id, error)

        if result.new_count:
            session.consecutive_empty_responses = 0
        else:
            session.consecutive_empty_responses += 1

        logger.info(
            "cursor=%d: %d new, %d duplicate, %d rejected, total %d",
            session.cursor, result.new_count, result.duplicates, result.rejected,
            len(session.accumulated),
        )

    def _pause(self, session: CrawlSession, *, stopped: bool = False) -> RunResult:
        session.status = SessionStatus.PAUSED
        self._checkpoint(session)
        logger.info(
            "Session %s paused at batch %d with %d records",
            session.session_id, session.batch_ordinal, len(session.accumulated),
        )
        return RunResult.from_session(session, stopped=stopped)

    def _complete(self, session: CrawlSession) -> RunResult:
        session.status = SessionStatus.COMPLETED
        session.completed_at = utcnow()
        self._checkpoint(session)
        logger.info(
            "Session %s completed with %d records",
            session.session_id, len(session.accumulated),
        )
        return RunResult.from_session(session)

    def _fail(self, session: CrawlSession, error: str) -> RunResult:
        session.status = SessionStatus.FAILED
        session.error = error
        self._checkpoint(session)
        return RunResult.from_session(session)

    def _checkpoint(self, session: CrawlSession) -> None:
        try:
            self._store.checkpoint(session)
        except OSError as exc:
            raise SessionFatalError(
                f"Could not checkpoint session '{session.session_id}': {exc}"
            ) from exc
