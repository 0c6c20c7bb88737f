"""Durable checkpoints of crawl sessions for pause/resume across processes."""

from __future__ import annotations

import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from listing_sync.config import Settings
from listing_sync.models import CrawlSession, SessionStatus, utcnow

logger = logging.getLogger(__name__)

DEFAULT_SESSION_DIR = Path(".listing_sync_sessions")


class SessionFatalError(Exception):
    """Unrecoverable session fault: the source is unreachable or state is corrupt."""


class SessionCorruptedError(SessionFatalError):
    """Raised when a stored checkpoint cannot be decoded."""


class SessionNotFoundError(KeyError):
    """Raised when no checkpoint exists for a session id."""


class SessionStateError(Exception):
    """Raised when an operation is not valid in the session's current status."""


class StoredCheckpoint(BaseModel):
    """Receipt for one persisted checkpoint."""

    session_id: str
    status: SessionStatus
    cursor: int
    batch_ordinal: int
    record_count: int
    location: str = Field(description="Where the checkpoint lives (memory key or file path)")
    checkpointed_at: datetime = Field(default_factory=utcnow)


class SessionStore(ABC):
    """Checkpoint/restore contract used by the controller and the engine."""

    @abstractmethod
    def checkpoint(self, session: CrawlSession) -> StoredCheckpoint:
        ...

    @abstractmethod
    def restore(self, session_id: str) -> CrawlSession | None:
        ...

    @abstractmethod
    def list_sessions(self) -> list[str]:
        ...

    @abstractmethod
    def delete(self, session_id: str) -> None:
        ...

    def require(self, session_id: str) -> CrawlSession:
        session = self.restore(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    @staticmethod
    def _receipt(session: CrawlSession, location: str) -> StoredCheckpoint:
        return StoredCheckpoint(
            session_id=session.session_id,
            status=session.status,
            cursor=session.cursor,
            batch_ordinal=session.batch_ordinal,
            record_count=len(session.accumulated),
            location=location,
        )


class InMemorySessionStore(SessionStore):
    """Single-process store; holds deep copies so callers cannot mutate checkpoints."""

    def __init__(self) -> None:
        self._sessions: dict[str, CrawlSession] = {}
        self._lock = threading.Lock()

    def checkpoint(self, session: CrawlSession) -> StoredCheckpoint:
        with self._lock:
            self._sessions[session.session_id] = session.model_copy(deep=True)
        return self._receipt(session, f"memory:{session.session_id}")

    def restore(self, session_id: str) -> CrawlSession | None:
        with self._lock:
            stored = self._sessions.get(session_id)
        return stored.model_copy(deep=True) if stored is not None else None

    def list_sessions(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)


class JsonFileSessionStore(SessionStore):
    """Stores one JSON document per session in a directory."""

    def __init__(self, session_dir: Path | None = None) -> None:
        self._dir = session_dir or DEFAULT_SESSION_DIR
        self._dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Path:
        safe = re.sub(r"[^A-Za-z0-9_.-]", "_", session_id)
        return self._dir / f"{safe}.json"

    def checkpoint(self, session: CrawlSession) -> StoredCheckpoint:
        path = self._path(session.session_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(session.model_dump_json(), encoding="utf-8")
        os.replace(tmp_path, path)
        logger.debug(
            "Checkpointed session %s (%d records) to %s",
            session.session_id, len(session.accumulated), path,
        )
        return self._receipt(session, str(path))

    def restore(self, session_id: str) -> CrawlSession | None:
        path = self._path(session_id)
        if not path.exists():
            return None
        try:
            return CrawlSession.model_validate_json(path.read_text(encoding="utf-8"))
        except (ValidationError, OSError) as exc:
            logger.error("Checkpoint for session %s is unreadable: %s", session_id, exc)
            raise SessionCorruptedError(
                f"Checkpoint for session '{session_id}' is corrupted: {exc}"
            ) from exc

    def list_sessions(self) -> list[str]:
        return sorted(p.stem for p in self._dir.glob("*.json"))

    def delete(self, session_id: str) -> None:
        self._path(session_id).unlink(missing_ok=True)


def get_session_store(settings: Settings) -> SessionStore:
    if settings.session_store == "memory":
        return InMemorySessionStore()
    if settings.session_store == "json":
        return JsonFileSessionStore(Path(settings.session_dir))
    raise ValueError(
        f"Unknown session store '{settings.session_store}'. Available: json, memory"
    )
