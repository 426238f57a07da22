"""
JSON file storage backend.

This is the default storage backend that persists registry state
(pools, positions, event trails) to a local JSON file. Token amounts
are plain JSON integers, which Python reads back without loss.
"""

import json
import os
import threading
from typing import Any

from storage.base import (
    StorageBackend,
    StorageError,
    StorageReadError,
    StorageWriteError,
)


class JSONFileStorage(StorageBackend):
    """
    JSON file storage backend.

    Writes go to a temp file that is atomically renamed over the target.
    Thread-safe operations using a file lock.
    """

    def __init__(self, file_path: str = "data/staking_state.json"):
        """
        Initialize JSON file storage.

        Args:
            file_path: Path to the JSON file
        """
        self.file_path = file_path
        self._lock = threading.Lock()

    def load_state(self) -> dict[str, Any] | None:
        """
        Load registry state from the JSON file.

        Returns:
            Dictionary containing registry state, or None if file doesn't exist.

        Raises:
            StorageReadError: If reading fails
        """
        with self._lock:
            try:
                if not os.path.exists(self.file_path):
                    return None

                with open(self.file_path, 'r', encoding='utf-8') as f:
                    raw_data = f.read()

                if not raw_data.strip():
                    return None

                return json.loads(raw_data)

            except FileNotFoundError:
                return None
            except PermissionError as e:
                raise StorageReadError(f"Permission denied: {self.file_path}") from e
            except json.JSONDecodeError as e:
                raise StorageReadError(f"Invalid JSON format: {e}") from e
            except Exception as e:
                raise StorageReadError(f"Failed to load state: {e}") from e

    def save_state(self, state: dict[str, Any]) -> None:
        """
        Save registry state to the JSON file.

        Args:
            state: Dictionary containing every pool and position

        Raises:
            StorageWriteError: If writing fails
        """
        with self._lock:
            try:
                data = json.dumps(state, indent=2, ensure_ascii=False)

                directory = os.path.dirname(self.file_path)
                if directory:
                    os.makedirs(directory, exist_ok=True)

                # Write to file atomically (write to temp, then rename)
                temp_path = f"{self.file_path}.tmp"
                with open(temp_path, 'w', encoding='utf-8') as f:
                    f.write(data)

                os.replace(temp_path, self.file_path)

            except PermissionError as e:
                raise StorageWriteError(
                    f"Permission denied: {self.file_path}"
                ) from e
            except OSError as e:
                raise StorageWriteError(f"OS error: {e}") from e
            except Exception as e:
                raise StorageWriteError(f"Failed to save state: {e}") from e

    def is_available(self) -> bool:
        """
        Check if file storage is available.

        Returns:
            True if the file's directory exists and is writable
        """
        try:
            directory = os.path.dirname(self.file_path) or "."
            if not os.path.exists(directory):
                return False
            return os.access(directory, os.W_OK)
        except OSError:
            return False

    def get_info(self) -> dict[str, Any]:
        """Get storage backend information."""
        info = super().get_info()
        info.update({
            "file_path": self.file_path,
            "file_exists": os.path.exists(self.file_path),
        })

        if os.path.exists(self.file_path):
            try:
                stat = os.stat(self.file_path)
                info["file_size_bytes"] = stat.st_size
                info["last_modified"] = stat.st_mtime
            except OSError:
                pass

        return info

    def delete(self) -> bool:
        """
        Delete the storage file.

        Returns:
            True if deleted, False if file didn't exist
        """
        with self._lock:
            try:
                if os.path.exists(self.file_path):
                    os.remove(self.file_path)
                    return True
                return False
            except OSError:
                return False

    def backup(self, backup_path: str | None = None) -> str:
        """
        Create a backup of the storage file.

        Args:
            backup_path: Path for backup file (default: adds .backup suffix)

        Returns:
            Path to the backup file

        Raises:
            StorageError: If backup fails
        """
        import shutil
        from datetime import datetime

        if backup_path is None:
            timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            backup_path = f"{self.file_path}.{timestamp}.backup"

        try:
            with self._lock:
                if os.path.exists(self.file_path):
                    shutil.copy2(self.file_path, backup_path)
                    return backup_path
                else:
                    raise StorageError("No file to backup")
        except OSError as e:
            raise StorageError(f"Backup failed: {e}") from e
