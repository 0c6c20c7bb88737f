"""SQLAlchemy-backed storage for listings, price history and parse sessions."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, TypeVar

from sqlalchemy import JSON, DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from listing_sync.config import Settings
from listing_sync.models import ChangeDirection, ChangeRecord, ListingRecord
from listing_sync.storage.base import (
    PersistenceError,
    SessionUpdate,
    SnapshotReadError,
    StorageGateway,
    UpsertAction,
    UpsertOutcome,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class ListingRow(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    price: Mapped[int] = mapped_column(Integer, default=0, index=True)
    region: Mapped[str] = mapped_column(String(8), default="", index=True)
    status: Mapped[str] = mapped_column(String(16), default="active")
    posted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    source_url: Mapped[str] = mapped_column(Text, default="")
    extracted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    first_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class PriceHistoryRow(Base):
    __tablename__ = "price_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    business_id: Mapped[str] = mapped_column(String(32), index=True)
    old_price: Mapped[int | None] = mapped_column(Integer)
    new_price: Mapped[int] = mapped_column(Integer)
    price_delta: Mapped[int | None] = mapped_column(Integer)
    change_direction: Mapped[str] = mapped_column(String(8))
    session_id: Mapped[str] = mapped_column(String(64), index=True)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class ParseSessionRow(Base):
    __tablename__ = "parse_sessions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    status: Mapped[str] = mapped_column(String(16), default="running")
    params: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    totals: Mapped[dict[str, int]] = mapped_column(JSON, default=dict)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    error_message: Mapped[str | None] = mapped_column(Text)


_db_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=4),
    retry=retry_if_exception_type(OperationalError),
    reraise=True,
)


class SqlStorage(StorageGateway):
    """
    Storage over any SQLAlchemy URL (SQLite, PostgreSQL, MySQL).

    Every call opens its own ORM session and transaction and releases the
    pooled connection before returning. Transient OperationalErrors are
    retried; anything still failing surfaces as PersistenceError.
    """

    name = "sql"

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        database_url: str | None = None,
        engine: Engine | None = None,
    ) -> None:
        url = database_url or (settings.database_url if settings else "sqlite:///listings.db")
        self._engine = engine or create_engine(url, pool_pre_ping=True)
        self._session_factory = sessionmaker(
            bind=self._engine,
            class_=Session,
            autoflush=False,
            expire_on_commit=False,
        )
        Base.metadata.create_all(self._engine)

    def upsert(self, record: ListingRecord) -> UpsertOutcome:
        def operation(session: Session) -> UpsertOutcome:
            row = session.scalar(
                select(ListingRow).where(ListingRow.business_id == record.business_id)
            )
            action = UpsertAction.UPDATED
            if row is None:
                row = ListingRow(business_id=record.business_id)
                session.add(row)
                action = UpsertAction.INSERTED
            row.price = record.price
            row.region = record.region
            row.status = record.status.value
            row.posted_at = record.posted_at
            row.updated_at = record.updated_at
            row.source_url = record.source_url
            row.extracted_at = record.extracted_at
            return UpsertOutcome(business_id=record.business_id, action=action)

        return self._execute(operation, f"upsert {record.business_id}")

    def read_snapshot(self) -> dict[str, int]:
        def operation(session: Session) -> dict[str, int]:
            rows = session.execute(select(ListingRow.business_id, ListingRow.price))
            return {business_id: price or 0 for business_id, price in rows}

        return self._execute(operation, "read snapshot", error_class=SnapshotReadError)

    def append_change_record(self, change: ChangeRecord) -> None:
        def operation(session: Session) -> None:
            session.add(
                PriceHistoryRow(
                    business_id=change.business_id,
                    old_price=change.old_price,
                    new_price=change.new_price,
                    price_delta=change.delta,
                    change_direction=change.direction.value,
                    session_id=change.session_id,
                    recorded_at=change.recorded_at,
                )
            )

        self._execute(operation, f"append change for {change.business_id}")

    def list_change_records(self, session_id: str | None = None) -> list[ChangeRecord]:
        def operation(session: Session) -> list[ChangeRecord]:
            query = select(PriceHistoryRow).order_by(PriceHistoryRow.id)
            if session_id is not None:
                query = query.where(PriceHistoryRow.session_id == session_id)
            return [
                ChangeRecord(
                    business_id=row.business_id,
                    old_price=row.old_price,
                    new_price=row.new_price,
                    delta=row.price_delta,
                    direction=ChangeDirection(row.change_direction),
                    session_id=row.session_id,
                    recorded_at=row.recorded_at,
                )
                for row in session.scalars(query)
            ]

        return self._execute(operation, "list change records")

    def create_session(self, session_id: str, params: dict[str, Any]) -> None:
        def operation(session: Session) -> None:
            session.add(ParseSessionRow(id=session_id, status="running", params=params, totals={}))

        self._execute(operation, f"create session {session_id}")

    def update_session(self, session_id: str, update: SessionUpdate) -> None:
        def operation(session: Session) -> None:
            row = session.get(ParseSessionRow, session_id)
            if row is None:
                raise PersistenceError(f"Unknown session '{session_id}'")
            if update.status is not None:
                row.status = update.status.value
            if update.error is not None:
                row.error_message = update.error
            if update.completed_at is not None:
                row.completed_at = update.completed_at
            if update.totals:
                # Reassign so the JSON column is flagged dirty.
                row.totals = {**(row.totals or {}), **update.totals}

        self._execute(operation, f"update session {session_id}")

    def session_row(self, session_id: str) -> dict[str, Any] | None:
        def operation(session: Session) -> dict[str, Any] | None:
            row = session.get(ParseSessionRow, session_id)
            if row is None:
                return None
            return {
                "status": row.status,
                "params": row.params,
                "totals": row.totals,
                "completed_at": row.completed_at,
                "error": row.error_message,
            }

        return self._execute(operation, f"read session {session_id}")

    def close(self) -> None:
        self._engine.dispose()

    def _execute(
        self,
        operation: Callable[[Session], T],
        description: str,
        *,
        error_class: type[PersistenceError] = PersistenceError,
    ) -> T:
        try:
            return self._in_transaction(operation)
        except SQLAlchemyError as exc:
            logger.error("%s failed: %s", description, exc)
            raise error_class(f"{description} failed: {exc}") from exc

    @_db_retry
    def _in_transaction(self, operation: Callable[[Session], T]) -> T:
        with self._session_factory() as session, session.begin():
            return operation(session)
