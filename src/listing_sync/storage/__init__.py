"""Storage backend registry and factory with lazy imports."""

from __future__ import annotations

import importlib

from listing_sync.config import Settings
from listing_sync.storage.base import (
    PersistenceError,
    SessionUpdate,
    SnapshotReadError,
    StorageGateway,
    UpsertAction,
    UpsertOutcome,
)

_STORAGE_REGISTRY: dict[str, str] = {
    "memory": "listing_sync.storage.memory.InMemoryStorage",
    "sql": "listing_sync.storage.sql.SqlStorage",
}


def get_storage(settings: Settings, name: str | None = None) -> StorageGateway:
    """Instantiate the configured storage backend. Called once at startup."""
    name = name or settings.storage_backend
    if name not in _STORAGE_REGISTRY:
        available = ", ".join(sorted(_STORAGE_REGISTRY))
        raise ValueError(f"Unknown storage backend '{name}'. Available: {available}")

    module_path, class_name = _STORAGE_REGISTRY[name].rsplit(".", 1)
    module = importlib.import_module(module_path)
    storage_class = getattr(module, class_name)
    return storage_class(settings)


def list_storage_backends() -> list[str]:
    return sorted(_STORAGE_REGISTRY)


__all__ = [
    "PersistenceError",
    "SessionUpdate",
    "SnapshotReadError",
    "StorageGateway",
    "UpsertAction",
    "UpsertOutcome",
    "get_storage",
    "list_storage_backends",
]
