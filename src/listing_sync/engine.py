"""Engine facade: start, resume, stop and reconcile crawl sessions."""

from __future__ import annotations

import logging
import random
import string
import threading
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager

from listing_sync.config import Settings
from listing_sync.controller import PaginationController
from listing_sync.extractor import ListingExtractor
from listing_sync.models import (
    CrawlSession,
    DiffReport,
    ReconcilePolicy,
    RunParams,
    RunResult,
    SessionStats,
    SessionStatus,
)
from listing_sync.session_store import (
    SessionCorruptedError,
    SessionFatalError,
    SessionStateError,
    SessionStore,
)
from listing_sync.sources.base import SourceGateway
from listing_sync.storage.base import PersistenceError, SessionUpdate, StorageGateway
from listing_sync.sync import DifferentialSyncEngine

logger = logging.getLogger(__name__)


class ReconciliationInProgressError(RuntimeError):
    """Raised when a second pass starts on a session that is already being reconciled."""


class SessionBusyError(RuntimeError):
    """Raised when a session is resumed while its crawl is still running."""


def generate_session_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"session_{int(time.time() * 1000)}_{suffix}"


class _KeyedLocks:
    """Non-blocking per-key locks."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    @contextmanager
    def hold(self, key: str, error: type[Exception]) -> Iterator[None]:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        if not lock.acquire(blocking=False):
            raise error(key)
        try:
            yield
        finally:
            lock.release()


class SyncEngine:
    """
    Outward interface of the crawl/sync engine.

    The engine owns no global state: the source, storage and session store are
    injected, so several engines (tenants, tests) can run side by side.
    """

    def __init__(
        self,
        *,
        source: SourceGateway,
        storage: StorageGateway,
        session_store: SessionStore,
        settings: Settings | None = None,
        extractor: ListingExtractor | None = None,
    ) -> None:
        self.settings = settings or Settings()
        self._source = source
        self._storage = storage
        self._store = session_store
        self._extractor = extractor
        self._sync = DifferentialSyncEngine(storage)
        self._stop_events: dict[str, threading.Event] = {}
        self._run_locks = _KeyedLocks()
        self._reconcile_locks = _KeyedLocks()

    def start_run(self, params: RunParams | None = None, session_id: str | None = None) -> str:
        """Create and checkpoint a new session. The crawl itself starts on `resume_run`."""
        session = CrawlSession(
            session_id=session_id or generate_session_id(),
            params=params or self.settings.run_params(),
        )
        self._store.checkpoint(session)
        self._bookkeep(
            lambda: self._storage.create_session(
                session.session_id, session.params.model_dump(mode="json")
            )
        )
        logger.info("Started session %s", session.session_id)
        return session.session_id

    def resume_run(self, session_id: str) -> RunResult:
        """Drive the session until the next pause, stop, exhaustion or failure."""
        with self._run_locks.hold(session_id, SessionBusyError):
            try:
                session = self._store.require(session_id)
            except SessionCorruptedError as exc:
                self._bookkeep(
                    lambda: self._storage.update_session(
                        session_id, SessionUpdate(status=SessionStatus.FAILED, error=str(exc))
                    )
                )
                raise

            if session.status is SessionStatus.COMPLETED:
                raise SessionStateError(f"Session '{session_id}' is already completed")

            stop_event = self._stop_events.setdefault(session_id, threading.Event())
            stop_event.clear()
            controller = PaginationController(
                source=self._source,
                extractor=self._extractor_for(session.params),
                session_store=self._store,
                stop_event=stop_event,
            )
            try:
                result = controller.run(session)
            except SessionFatalError as exc:
                self._bookkeep(
                    lambda: self._storage.update_session(
                        session_id, SessionUpdate(status=SessionStatus.FAILED, error=str(exc))
                    )
                )
                raise

        self._bookkeep(
            lambda: self._storage.update_session(
                session_id,
                SessionUpdate(
                    status=result.status,
                    totals={"total_items": result.count},
                    error=result.error,
                    completed_at=session.completed_at,
                ),
            )
        )
        return result

    def request_stop(self, session_id: str) -> None:
        """Ask a running session to stop at its next iteration boundary."""
        self._stop_events.setdefault(session_id, threading.Event()).set()
        logger.info("Stop requested for session %s", session_id)

    def reconcile(self, session_id: str, policy: ReconcilePolicy | None = None) -> DiffReport:
        """
        Run one differential sync pass over the session's accumulated records.

        The crawl owns the session while it runs, so a session that is being
        resumed cannot be reconciled (SessionBusyError).
        """
        with self._reconcile_locks.hold(session_id, ReconciliationInProgressError), \
                self._run_locks.hold(session_id, SessionBusyError):
            session = self._store.require(session_id)
            report = self._sync.reconcile(session, policy or session.params.policy)
            session.report = report
            self._store.checkpoint(session)

        self._bookkeep(
            lambda: self._storage.update_session(
                session_id,
                SessionUpdate(
                    totals={
                        "total_items": len(session.accumulated),
                        "new_items": report.inserted,
                        "updated_items": report.updated,
                        "unchanged_items": report.unchanged_count,
                    }
                ),
            )
        )
        return report

    def get_diff_report(self, session_id: str) -> DiffReport | None:
        return self._store.require(session_id).report

    def get_session(self, session_id: str) -> CrawlSession:
        return self._store.require(session_id)

    def get_stats(self, session_id: str) -> SessionStats:
        """Count, price range and region breakdown of the records gathered so far."""
        return SessionStats.from_session(self._store.require(session_id))

    def run_to_completion(
        self,
        params: RunParams | None = None,
        policy: ReconcilePolicy | None = None,
    ) -> tuple[RunResult, DiffReport | None]:
        """Start a session, resume through every batch pause, then reconcile."""
        session_id = self.start_run(params)
        result = self.resume_run(session_id)
        while result.paused and not result.stopped:
            logger.info("Batch %d done (%d records), continuing", result.batch_ordinal, result.count)
            result = self.resume_run(session_id)
        if not result.completed:
            return result, None
        return result, self.reconcile(session_id, policy)

    def _extractor_for(self, params: RunParams) -> ListingExtractor:
        if self._extractor is not None:
            return self._extractor
        return ListingExtractor.for_params(
            params,
            base_url=self.settings.source_url,
            min_plausible_price=self.settings.min_plausible_price,
        )

    @staticmethod
    def _bookkeep(operation: Callable[[], None]) -> None:
        try:
            operation()
        except PersistenceError as exc:
            logger.warning("Session bookkeeping failed: %s", exc)
