"""
Abstract base class for storage backends.

This module defines the interface that all storage backends must implement.

State layout (as produced by PoolRegistry.to_state()):

    {
        "version": 1,
        "registry": {... fee settings and protocol addresses ...},
        "pools": [{pool record, "events": [...]}, ...],
        "positions": [{"pool_id", "user", "staked_amount", "reward_debt"}, ...],
        "ledger": {"assets", "balances", "allowances", "total_supply"}  # optional
    }
"""

from abc import ABC, abstractmethod
from typing import Any


class StorageError(Exception):
    """Base exception for storage-related errors."""
    pass


class StorageConnectionError(StorageError):
    """Raised when connection to storage backend fails."""
    pass


class StorageReadError(StorageError):
    """Raised when reading from storage fails."""
    pass


class StorageWriteError(StorageError):
    """Raised when writing to storage fails."""
    pass


class StorageBackend(ABC):
    """
    Abstract base class for staking state storage backends.

    All storage backends must implement these methods to provide
    a consistent interface for registry persistence.
    """

    @abstractmethod
    def load_state(self) -> dict[str, Any] | None:
        """
        Load the registry state from storage.

        Returns:
            Dictionary containing registry state, or None if no data exists.

        Raises:
            StorageReadError: If reading fails
        """
        pass

    @abstractmethod
    def save_state(self, state: dict[str, Any]) -> None:
        """
        Save the registry state to storage.

        Args:
            state: Dictionary containing every pool and position

        Raises:
            StorageWriteError: If writing fails
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check if the storage backend is available and ready.

        Returns:
            True if storage is accessible, False otherwise
        """
        pass

    def get_info(self) -> dict[str, Any]:
        """
        Get information about the storage backend.

        Returns:
            Dictionary with backend type, status, and configuration
        """
        return {
            "backend_type": self.__class__.__name__,
            "available": self.is_available(),
        }

    # Optional methods with default implementations

    def get_pool_record(self, pool_id: str) -> dict[str, Any] | None:
        """
        Get a single pool record.

        Default implementation loads the entire state - backends should
        override for efficiency.

        Args:
            pool_id: Pool address

        Returns:
            Pool record or None if not found
        """
        state = self.load_state()
        if state:
            for record in state.get("pools", []):
                if record.get("pool_id") == pool_id:
                    return record
        return None

    def get_position_records(self, pool_id: str) -> list[dict[str, Any]]:
        """
        Get every position record of one pool.

        Args:
            pool_id: Pool address

        Returns:
            List of position records
        """
        state = self.load_state()
        if state:
            return [p for p in state.get("positions", []) if p.get("pool_id") == pool_id]
        return []

    def get_pool_count(self) -> int:
        """
        Get total number of persisted pools.

        Returns:
            Pool count
        """
        state = self.load_state()
        if state:
            return len(state.get("pools", []))
        return 0

    def close(self) -> None:
        """
        Close the storage connection and release resources.

        Default implementation does nothing - backends with connections
        should override this.
        """
        pass

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - closes connection."""
        self.close()
        return False
