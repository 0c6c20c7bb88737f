"""Centralized configuration loaded from .env."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from listing_sync.models import ReconcilePolicy, RunParams


def _load_env() -> None:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(dotenv_path=env_path)
    else:
        load_dotenv()


def _optional_int(name: str) -> int | None:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


@dataclass(frozen=True)
class Settings:
    # Source gateway
    source_url: str = ""
    offset_param: str = "start"
    request_timeout: float = 40.0
    fetch_retries: int = 3
    user_agent: str = "listing-sync/0.1"

    # Pagination
    page_size: int = 20
    batch_size: int = 500
    max_iterations: int = 200
    max_empty_responses: int = 3
    request_delay: float = 1.0

    # Extraction filters
    min_price: int = 0
    max_price: int | None = None
    region: str = ""
    min_plausible_price: int = 1000

    # Persistence
    storage_backend: str = "memory"
    database_url: str = "sqlite:///listings.db"
    session_store: str = "json"
    session_dir: str = ".listing_sync_sessions"
    reconcile_policy: str = "differential"

    def run_params(self) -> RunParams:
        """Default crawl parameters for a new session."""
        return RunParams(
            page_size=self.page_size,
            batch_size=self.batch_size,
            max_iterations=self.max_iterations,
            max_empty_responses=self.max_empty_responses,
            min_price=self.min_price,
            max_price=self.max_price,
            region=self.region or None,
            request_delay=self.request_delay,
            policy=ReconcilePolicy(self.reconcile_policy),
        )

    @classmethod
    def from_env(cls) -> Settings:
        _load_env()
        source_url = os.getenv("SOURCE_URL", "")
        if not source_url:
            raise ValueError(
                "SOURCE_URL is required. Set it in your .env file."
            )
        return cls(
            source_url=source_url,
            offset_param=os.getenv("OFFSET_PARAM", "start"),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "40")),
            fetch_retries=int(os.getenv("FETCH_RETRIES", "3")),
            user_agent=os.getenv("USER_AGENT", "listing-sync/0.1"),
            page_size=int(os.getenv("PAGE_SIZE", "20")),
            batch_size=int(os.getenv("BATCH_SIZE", "500")),
            max_iterations=int(os.getenv("MAX_ITERATIONS", "200")),
            max_empty_responses=int(os.getenv("MAX_EMPTY_RESPONSES", "3")),
            request_delay=float(os.getenv("REQUEST_DELAY", "1.0")),
            min_price=int(os.getenv("MIN_PRICE", "0")),
            max_price=_optional_int("MAX_PRICE"),
            region=os.getenv("REGION", ""),
            min_plausible_price=int(os.getenv("MIN_PLAUSIBLE_PRICE", "1000")),
            storage_backend=os.getenv("STORAGE_BACKEND", "memory"),
            database_url=os.getenv("DATABASE_URL", "sqlite:///listings.db"),
            session_store=os.getenv("SESSION_STORE", "json"),
            session_dir=os.getenv("SESSION_DIR", ".listing_sync_sessions"),
            reconcile_policy=os.getenv("RECONCILE_POLICY", "differential"),
        )
