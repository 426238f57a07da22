"""
In-memory storage backend.

This backend stores registry state in memory only, useful for:
- Unit testing
- Simulations
- Ephemeral API servers
"""

import copy
import threading
from typing import Any

from storage.base import StorageBackend


class MemoryStorage(StorageBackend):
    """
    In-memory storage backend.

    All data is lost when the process exits. Thread-safe operations.
    """

    def __init__(self):
        """Initialize empty memory storage."""
        self._data: dict[str, Any] | None = None
        # RLock so get_info can call get_pool_count while holding it
        self._lock = threading.RLock()

    def load_state(self) -> dict[str, Any] | None:
        """
        Load registry state from memory.

        Returns:
            Copy of stored data, or None if empty
        """
        with self._lock:
            if self._data is None:
                return None
            # Return a deep copy to prevent external modification
            return copy.deepcopy(self._data)

    def save_state(self, state: dict[str, Any]) -> None:
        """
        Save registry state to memory.

        Args:
            state: Dictionary containing every pool and position
        """
        with self._lock:
            # Store a deep copy to prevent external modification
            self._data = copy.deepcopy(state)

    def is_available(self) -> bool:
        """Memory storage is always available."""
        return True

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        with self._lock:
            info.update(
                {
                    "has_data": self._data is not None,
                    "pool_count": self.get_pool_count(),
                    "position_count": len(self._data.get("positions", [])) if self._data else 0,
                }
            )
        return info

    def clear(self) -> None:
        """Clear all stored data."""
        with self._lock:
            self._data = None

    def get_pool_count(self) -> int:
        """Get number of pools."""
        with self._lock:
            if self._data:
                return len(self._data.get("pools", []))
            return 0
