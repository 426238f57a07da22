"""
Tests for storage backends.
"""

import json
import os
import sys
import threading

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import pytest

from storage import StorageError, get_storage_backend
from storage.base import StorageReadError, StorageWriteError
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage

POOL_A = "0x" + "a" * 40
POOL_B = "0x" + "b" * 40

# Sample registry state for testing
SAMPLE_STATE = {
    "version": 1,
    "registry": {
        "admin": "0xadmin",
        "fee_collector": "0xfees",
        "emergency_recovery": "0xrecovery",
        "default_fee_bps": 25,
        "owner_fee_bps": {},
        "pool_fee_bps": {},
        "pool_counter": 2,
    },
    "pools": [
        {
            "pool_id": POOL_A,
            "owner": "0xowner",
            "created_at": 1_700_000_000,
            "start_time": 1_700_000_100,
            "end_time": 1_700_086_500,
            "deposit_asset": "STAKE",
            "reward_asset": "RWD",
            "total_rewards_deposited": 100_000 * 10**18,
            "remaining_rewards": 40_000 * 10**18,
            "acc_reward_per_share": 60 * 10**12,
            "total_staked": 1_500,
            "last_accrual_time": 1_700_050_000,
            "emergency_closed": False,
            "events": [
                {
                    "pool_id": POOL_A,
                    "sequence": 0,
                    "event_type": "PoolCreated",
                    "block_time": 1_700_000_000,
                    "recorded_at": "2023-11-14T22:13:20+00:00",
                    "data": {"owner": "0xowner"},
                }
            ],
        },
        {
            "pool_id": POOL_B,
            "owner": None,
            "created_at": 1_700_000_000,
            "start_time": 1_700_000_100,
            "end_time": 1_700_086_500,
            "deposit_asset": "STAKE",
            "reward_asset": "STAKE",
            "total_rewards_deposited": 0,
            "remaining_rewards": 0,
            "acc_reward_per_share": 0,
            "total_staked": 0,
            "last_accrual_time": 1_700_000_100,
            "emergency_closed": True,
            "events": [],
        },
    ],
    "positions": [
        {"pool_id": POOL_A, "user": "0xalice", "staked_amount": 1_000, "reward_debt": 5},
        {"pool_id": POOL_A, "user": "0xbob", "staked_amount": 500, "reward_debt": 0},
    ],
}


class TestMemoryStorage:
    """Tests for MemoryStorage backend."""

    def test_init_empty(self):
        """Test that new memory storage is empty."""
        storage = MemoryStorage()
        assert storage.load_state() is None
        assert storage.is_available() is True

    def test_save_and_load(self):
        """Test saving and loading registry state."""
        storage = MemoryStorage()
        storage.save_state(SAMPLE_STATE)

        loaded = storage.load_state()
        assert loaded is not None
        assert loaded["registry"]["default_fee_bps"] == 25
        assert len(loaded["pools"]) == 2
        assert len(loaded["positions"]) == 2

    def test_deep_copy_isolation(self):
        """Test that modifications don't affect stored data."""
        storage = MemoryStorage()
        storage.save_state(SAMPLE_STATE)

        # Modify the returned data
        loaded = storage.load_state()
        loaded["pools"].append({"pool_id": "0xextra"})

        # Original should be unchanged
        loaded2 = storage.load_state()
        assert len(loaded2["pools"]) == 2

    def test_clear(self):
        """Test clearing stored data."""
        storage = MemoryStorage()
        storage.save_state(SAMPLE_STATE)
        assert storage.load_state() is not None

        storage.clear()
        assert storage.load_state() is None

    def test_get_info(self):
        """Test getting storage info."""
        storage = MemoryStorage()
        info = storage.get_info()

        assert info["backend_type"] == "MemoryStorage"
        assert info["available"] is True
        assert info["has_data"] is False

        storage.save_state(SAMPLE_STATE)
        info = storage.get_info()
        assert info["has_data"] is True
        assert info["pool_count"] == 2
        assert info["position_count"] == 2

    def test_pool_queries(self):
        """Test the default per-pool lookups."""
        storage = MemoryStorage()
        assert storage.get_pool_record(POOL_A) is None
        assert storage.get_position_records(POOL_A) == []

        storage.save_state(SAMPLE_STATE)

        assert storage.get_pool_record(POOL_A)["total_staked"] == 1_500
        assert storage.get_pool_record("0xmissing") is None
        assert [p["user"] for p in storage.get_position_records(POOL_A)] == ["0xalice", "0xbob"]
        assert storage.get_position_records(POOL_B) == []
        assert storage.get_pool_count() == 2

    def test_thread_safety(self):
        """Test concurrent saves leave a complete state."""
        storage = MemoryStorage()
        errors = []

        def writer(i):
            try:
                state = dict(SAMPLE_STATE)
                state["registry"] = {**SAMPLE_STATE["registry"], "pool_counter": i}
                storage.save_state(state)
                storage.load_state()
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=writer, args=(i,)) for i in range(20)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert len(storage.load_state()["pools"]) == 2

    def test_context_manager(self):
        with MemoryStorage() as storage:
            storage.save_state(SAMPLE_STATE)
            assert storage.get_pool_count() == 2


class TestJSONFileStorage:
    """Tests for JSONFileStorage backend."""

    def test_missing_file(self, tmp_path):
        storage = JSONFileStorage(str(tmp_path / "missing.json"))
        assert storage.load_state() is None

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.json"
        path.write_text("  \n")
        assert JSONFileStorage(str(path)).load_state() is None

    def test_save_and_load(self, tmp_path):
        """Large token amounts survive as exact integers."""
        storage = JSONFileStorage(str(tmp_path / "state.json"))
        storage.save_state(SAMPLE_STATE)

        loaded = storage.load_state()
        assert loaded == SAMPLE_STATE
        assert loaded["pools"][0]["total_rewards_deposited"] == 100_000 * 10**18

    def test_creates_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.json"
        storage = JSONFileStorage(str(path))
        storage.save_state(SAMPLE_STATE)

        assert path.exists()
        assert not os.path.exists(f"{path}.tmp")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")

        with pytest.raises(StorageReadError):
            JSONFileStorage(str(path)).load_state()

    def test_unserializable_state(self, tmp_path):
        storage = JSONFileStorage(str(tmp_path / "state.json"))
        with pytest.raises(StorageWriteError):
            storage.save_state({"pools": [object()]})

    def test_is_available(self, tmp_path):
        assert JSONFileStorage(str(tmp_path / "state.json")).is_available() is True
        assert JSONFileStorage(str(tmp_path / "no" / "state.json")).is_available() is False

    def test_get_info(self, tmp_path):
        storage = JSONFileStorage(str(tmp_path / "state.json"))
        assert storage.get_info()["file_exists"] is False

        storage.save_state(SAMPLE_STATE)
        info = storage.get_info()
        assert info["file_exists"] is True
        assert info["file_size_bytes"] > 0

    def test_delete(self, tmp_path):
        storage = JSONFileStorage(str(tmp_path / "state.json"))
        assert storage.delete() is False

        storage.save_state(SAMPLE_STATE)
        assert storage.delete() is True
        assert storage.load_state() is None

    def test_backup(self, tmp_path):
        storage = JSONFileStorage(str(tmp_path / "state.json"))
        with pytest.raises(StorageError):
            storage.backup()

        storage.save_state(SAMPLE_STATE)
        backup_path = storage.backup(str(tmp_path / "copy.json"))

        with open(backup_path, encoding="utf-8") as f:
            assert json.load(f) == SAMPLE_STATE


class TestGetStorageBackend:
    """Tests for backend selection from the environment."""

    def test_json_default(self, monkeypatch, tmp_path):
        monkeypatch.delenv("STORAGE_BACKEND", raising=False)
        monkeypatch.setenv("STAKING_DATA_FILE", str(tmp_path / "s.json"))

        storage = get_storage_backend()

        assert isinstance(storage, JSONFileStorage)
        assert storage.file_path == str(tmp_path / "s.json")

    def test_memory(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "memory")
        assert isinstance(get_storage_backend(), MemoryStorage)

    def test_postgresql_requires_url(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "postgresql")
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(StorageError):
            get_storage_backend()

    def test_unknown_backend(self, monkeypatch):
        monkeypatch.setenv("STORAGE_BACKEND", "redis")
        with pytest.raises(StorageError):
            get_storage_backend()
