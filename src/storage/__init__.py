"""
Storage abstraction layer for StakeWindow.

This package provides a pluggable storage backend system that allows
the pool registry to be persisted to different storage systems:

- JSON file (default)
- PostgreSQL (for production deployments)
- Memory (for testing)

Usage:
    from storage import get_storage_backend

    # Get configured backend (based on environment)
    storage = get_storage_backend()

    # Save every pool and position
    registry.save(storage)

    # Restore them
    registry = PoolRegistry.load(storage, ledger)
"""

import os
from typing import TYPE_CHECKING

from storage.base import StorageBackend, StorageError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

# Lazy import for PostgreSQL to avoid requiring psycopg2
if TYPE_CHECKING:
    from storage.postgresql import PostgreSQLStorage

__all__ = [
    "JSONFileStorage",
    "MemoryStorage",
    "StorageBackend",
    "StorageError",
    "get_storage_backend",
]


def get_storage_backend() -> StorageBackend:
    """
    Get the configured storage backend based on environment variables.

    Environment variables:
        STORAGE_BACKEND: Backend type ("json", "postgresql", "memory")
        STAKING_DATA_FILE: Path for JSON file storage (default: data/staking_state.json)
        DATABASE_URL: PostgreSQL connection URL

    Returns:
        Configured StorageBackend instance
    """
    backend_type = os.getenv("STORAGE_BACKEND", "json").lower()

    if backend_type == "json":
        data_file = os.getenv("STAKING_DATA_FILE", "data/staking_state.json")
        return JSONFileStorage(data_file)

    elif backend_type == "postgresql" or backend_type == "postgres":
        database_url = os.getenv("DATABASE_URL")
        if not database_url:
            raise StorageError("DATABASE_URL environment variable required for PostgreSQL backend")
        from storage.postgresql import PostgreSQLStorage

        return PostgreSQLStorage(database_url)

    elif backend_type == "memory":
        return MemoryStorage()

    else:
        raise StorageError(f"Unknown storage backend: {backend_type}")
