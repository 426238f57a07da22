"""
StakeWindow - Pool Registry

Creates staking pools and tracks them for enumeration.

Responsibilities:
- Validates pool creation parameters and assigns each pool its ledger address
- Owns the bidirectional owner <-> pool index; pools change it only through
  notify_owner_changed()
- Supplies the per-pool fee lookup (bounded by MAX_FEE_BPS) plus the fee
  collector and emergency-recovery addresses
- Persists and restores every pool and position through a storage backend
"""

import hashlib
import json
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pool_clock import SystemClock
from pool_events import PoolEventType
from pool_exceptions import InvalidAddressError, NotOwnerError, PoolNotFoundError
from staking_pool import PoolStatus, StakingPool
from token_ledger import TokenLedger, require_address

logger = logging.getLogger(__name__)

STATE_VERSION = 1


class PoolRegistry:
    """
    Factory and index for staking pools.

    Fee resolution order for fee_bps(pool_id, owner):
        per-pool override -> per-owner override -> default,
    always capped at MAX_FEE_BPS.
    """

    # Protocol-wide fee ceiling (5%)
    MAX_FEE_BPS = 500

    def __init__(
        self,
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None,
        admin: Optional[str] = None,
        fee_collector: Optional[str] = None,
        emergency_recovery: Optional[str] = None,
        default_fee_bps: int = 0
    ):
        """
        Initialize the registry.

        Args:
            ledger: Token ledger shared by every pool
            clock: Time source (defaults to wall-clock seconds)
            admin: Address allowed to change fees and protocol addresses
            fee_collector: Receives the add_rewards fee
            emergency_recovery: Receives budgets swept by emergency close
            default_fee_bps: Fee applied when no override exists
        """
        self.ledger = ledger
        self.clock = clock or SystemClock()
        self.admin = admin
        self.fee_collector = fee_collector
        self.emergency_recovery = emergency_recovery
        self.default_fee_bps = self._validate_fee(default_fee_bps)

        self.owner_fee_bps: Dict[str, int] = {}
        self.pool_fee_bps: Dict[str, int] = {}

        self.pools: Dict[str, StakingPool] = {}
        self.pool_owner: Dict[str, Optional[str]] = {}   # pool_id -> owner
        self.owner_pools: Dict[str, List[str]] = {}      # owner -> [pool_id]
        self.pool_counter = 0

        # Audit trail
        self.events: List[Dict[str, Any]] = []

        self._lock = threading.RLock()

        if fee_collector and emergency_recovery and fee_collector == emergency_recovery:
            raise InvalidAddressError(
                "Emergency recovery address must differ from the fee collector",
                action="init_registry",
                address=emergency_recovery
            )
        self._require_collector(self.default_fee_bps, "init_registry")

    # ==================== POOL CREATION ====================

    def create_pool(
        self,
        owner: str,
        deposit_asset: str,
        reward_asset: str,
        start_time: int,
        end_time: int
    ) -> StakingPool:
        """
        Deploy a new pool.

        Raises:
            InvalidAddressError: owner or asset missing/zero
            InvalidScheduleError: start_time not in the future or end_time <= start_time
        """
        require_address(owner, action="create_pool", field_name="owner")

        with self._lock:
            pool_id = self._generate_pool_id(owner, deposit_asset, reward_asset, start_time)
            pool = StakingPool(
                pool_id=pool_id,
                owner=owner,
                deposit_asset=deposit_asset,
                reward_asset=reward_asset,
                start_time=start_time,
                end_time=end_time,
                ledger=self.ledger,
                registry=self,
                clock=self.clock,
            )

            self.pools[pool_id] = pool
            self.pool_owner[pool_id] = owner
            self.owner_pools.setdefault(owner, []).append(pool_id)
            self.pool_counter += 1

            pool.events.emit(PoolEventType.POOL_CREATED, pool.created_at, {
                "owner": owner,
                "deposit_asset": deposit_asset,
                "reward_asset": reward_asset,
                "start_time": start_time,
                "end_time": end_time,
            })
            self._emit_event("PoolCreated", {"pool_id": pool_id, "owner": owner})

        pool.events.flush()
        logger.info("Created pool %s for owner %s", pool_id, owner)
        return pool

    # ==================== POOL-FACING INTERFACE ====================

    def fee_bps(self, pool_id: str, owner: Optional[str]) -> int:
        """Fee in basis points charged on add_rewards for this pool (0..MAX_FEE_BPS)."""
        with self._lock:
            if pool_id in self.pool_fee_bps:
                fee = self.pool_fee_bps[pool_id]
            elif owner is not None and owner in self.owner_fee_bps:
                fee = self.owner_fee_bps[owner]
            else:
                fee = self.default_fee_bps
        return min(fee, self.MAX_FEE_BPS)

    def notify_owner_changed(
        self,
        pool_id: str,
        old_owner: Optional[str],
        new_owner: Optional[str]
    ) -> None:
        """
        Move a pool between per-owner lists. The only writer of the owner
        index after creation; a None new_owner removes the pool from every list.

        Raises:
            PoolNotFoundError: unknown pool
            NotOwnerError: old_owner does not match the indexed owner
        """
        with self._lock:
            if pool_id not in self.pools:
                raise PoolNotFoundError(pool_id, action="notify_owner_changed")

            indexed = self.pool_owner.get(pool_id)
            if indexed != old_owner:
                raise NotOwnerError(
                    caller=old_owner,
                    owner=indexed,
                    action="notify_owner_changed",
                    component="pool_registry"
                )

            if old_owner is not None:
                owned = self.owner_pools.get(old_owner, [])
                if pool_id in owned:
                    owned.remove(pool_id)
                if not owned:
                    self.owner_pools.pop(old_owner, None)

            if new_owner is not None:
                self.owner_pools.setdefault(new_owner, []).append(pool_id)

            self.pool_owner[pool_id] = new_owner
            self._emit_event("OwnerChanged", {
                "pool_id": pool_id,
                "old_owner": old_owner,
                "new_owner": new_owner,
            })

        logger.info("Pool %s owner changed from %s to %s", pool_id, old_owner, new_owner)

    # ==================== ADMINISTRATION ====================

    def set_default_fee(self, caller: str, fee_bps: int) -> None:
        self._require_admin(caller, "set_default_fee")
        with self._lock:
            fee = self._validate_fee(fee_bps)
            self._require_collector(fee, "set_default_fee")
            self.default_fee_bps = fee
            self._emit_event("DefaultFeeChanged", {"fee_bps": fee_bps})

    def set_owner_fee(self, caller: str, owner: str, fee_bps: Optional[int]) -> None:
        """Set (or clear, with None) the fee override for every pool of `owner`."""
        self._require_admin(caller, "set_owner_fee")
        require_address(owner, action="set_owner_fee", field_name="owner")
        with self._lock:
            if fee_bps is None:
                self.owner_fee_bps.pop(owner, None)
            else:
                fee = self._validate_fee(fee_bps)
                self._require_collector(fee, "set_owner_fee")
                self.owner_fee_bps[owner] = fee
            self._emit_event("OwnerFeeChanged", {"owner": owner, "fee_bps": fee_bps})

    def set_pool_fee(self, caller: str, pool_id: str, fee_bps: Optional[int]) -> None:
        """Set (or clear, with None) the fee override for one pool."""
        self._require_admin(caller, "set_pool_fee")
        with self._lock:
            self.get_pool(pool_id)
            if fee_bps is None:
                self.pool_fee_bps.pop(pool_id, None)
            else:
                fee = self._validate_fee(fee_bps)
                self._require_collector(fee, "set_pool_fee")
                self.pool_fee_bps[pool_id] = fee
            self._emit_event("PoolFeeChanged", {"pool_id": pool_id, "fee_bps": fee_bps})

    def set_fee_collector(self, caller: str, address: str) -> None:
        self._require_admin(caller, "set_fee_collector")
        require_address(address, action="set_fee_collector", field_name="fee_collector")
        with self._lock:
            if address == self.emergency_recovery:
                raise InvalidAddressError(
                    "Fee collector must differ from the emergency recovery address",
                    action="set_fee_collector",
                    address=address
                )
            self.fee_collector = address
            self._emit_event("FeeCollectorChanged", {"fee_collector": address})

    def set_emergency_recovery(self, caller: str, address: str) -> None:
        self._require_admin(caller, "set_emergency_recovery")
        require_address(address, action="set_emergency_recovery", field_name="emergency_recovery")
        with self._lock:
            if address == self.fee_collector:
                raise InvalidAddressError(
                    "Emergency recovery address must differ from the fee collector",
                    action="set_emergency_recovery",
                    address=address
                )
            self.emergency_recovery = address
            self._emit_event("EmergencyRecoveryChanged", {"emergency_recovery": address})

    def _require_admin(self, caller: str, action: str) -> None:
        if self.admin is None or caller != self.admin:
            raise NotOwnerError(
                caller=caller, owner=self.admin, action=action, component="pool_registry"
            )

    def _require_collector(self, fee_bps: int, action: str) -> None:
        """A non-zero fee needs somewhere to go."""
        if fee_bps and not self.fee_collector:
            raise InvalidAddressError(
                "A non-zero fee requires a fee collector",
                action=action,
                address=self.fee_collector
            )

    def _validate_fee(self, fee_bps: int) -> int:
        if isinstance(fee_bps, bool) or not isinstance(fee_bps, int):
            raise ValueError(f"fee_bps must be an integer, got {fee_bps!r}")
        if not 0 <= fee_bps <= self.MAX_FEE_BPS:
            raise ValueError(f"fee_bps must be between 0 and {self.MAX_FEE_BPS}")
        return fee_bps

    # ==================== QUERIES ====================

    def get_pool(self, pool_id: str) -> StakingPool:
        with self._lock:
            pool = self.pools.get(pool_id)
        if pool is None:
            raise PoolNotFoundError(pool_id)
        return pool

    def get_pools_by_owner(self, owner: str) -> List[str]:
        with self._lock:
            return list(self.owner_pools.get(owner, []))

    def list_pools(
        self,
        status: Optional[PoolStatus] = None,
        owner: Optional[str] = None
    ) -> List[Dict[str, Any]]:
        """Pool summaries, optionally filtered by lifecycle status or owner."""
        with self._lock:
            pools = list(self.pools.values())

        result = []
        for pool in pools:
            info = pool.get_pool_info()
            if status is not None and info["status"] != status.value:
                continue
            if owner is not None and info["owner"] != owner:
                continue
            result.append(info)
        return result

    def get_statistics(self) -> Dict[str, Any]:
        """Registry-wide statistics."""
        with self._lock:
            pools = list(self.pools.values())

        by_status: Dict[str, int] = {}
        staked_by_asset: Dict[str, int] = {}
        remaining_by_asset: Dict[str, int] = {}
        for pool in pools:
            info = pool.get_pool_info()
            by_status[info["status"]] = by_status.get(info["status"], 0) + 1
            deposit_asset = info["deposit_asset"]
            reward_asset = info["reward_asset"]
            staked_by_asset[deposit_asset] = staked_by_asset.get(deposit_asset, 0) + info["total_staked"]
            remaining_by_asset[reward_asset] = (
                remaining_by_asset.get(reward_asset, 0) + info["remaining_rewards"]
            )

        return {
            "pools": {
                "total": len(pools),
                "by_status": by_status,
                "ownerless": sum(1 for p in pools if p.owner is None),
            },
            "owners": len(self.owner_pools),
            "total_staked_by_asset": staked_by_asset,
            "remaining_rewards_by_asset": remaining_by_asset,
            "configuration": {
                "default_fee_bps": self.default_fee_bps,
                "max_fee_bps": self.MAX_FEE_BPS,
                "owner_overrides": len(self.owner_fee_bps),
                "pool_overrides": len(self.pool_fee_bps),
                "fee_collector": self.fee_collector,
                "emergency_recovery": self.emergency_recovery,
            }
        }

    def get_audit_trail(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Recent registry events, newest first."""
        with self._lock:
            return list(reversed(self.events[-limit:])) if limit > 0 else []

    # ==================== PERSISTENCE ====================

    def to_state(self) -> Dict[str, Any]:
        """Full registry snapshot in the storage layout, ledger balances included."""
        # Holding the ledger keeps pool records and balances consistent
        with self.ledger.atomic():
            return self._collect_state()

    def _collect_state(self) -> Dict[str, Any]:
        with self._lock:
            pools = list(self.pools.values())
            settings = {
                "admin": self.admin,
                "fee_collector": self.fee_collector,
                "emergency_recovery": self.emergency_recovery,
                "default_fee_bps": self.default_fee_bps,
                "owner_fee_bps": dict(self.owner_fee_bps),
                "pool_fee_bps": dict(self.pool_fee_bps),
                "pool_counter": self.pool_counter,
            }

        # Pools call back into the registry while holding their own lock
        exported = [pool.export_state() for pool in pools]
        state = {
            "version": STATE_VERSION,
            "registry": settings,
            "pools": [record for record, _ in exported],
            "positions": [p for _, positions in exported for p in positions],
        }
        ledger_state = self.ledger.export_state()
        if ledger_state is not None:
            state["ledger"] = ledger_state
        return state

    def save(self, storage) -> int:
        """
        Persist every pool and position.

        Returns:
            Number of pools saved

        Raises:
            StorageWriteError: If the backend rejects the write
        """
        state = self.to_state()
        storage.save_state(state)
        logger.info("Saved %d pools to %s", len(state["pools"]), type(storage).__name__)
        return len(state["pools"])

    @classmethod
    def from_state(
        cls,
        state: Dict[str, Any],
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None
    ) -> "PoolRegistry":
        if state.get("ledger"):
            ledger.import_state(state["ledger"])

        settings = state.get("registry", {})
        registry = cls(
            ledger=ledger,
            clock=clock,
            admin=settings.get("admin"),
            fee_collector=settings.get("fee_collector"),
            emergency_recovery=settings.get("emergency_recovery"),
            default_fee_bps=settings.get("default_fee_bps", 0),
        )
        registry.owner_fee_bps = dict(settings.get("owner_fee_bps", {}))
        registry.pool_fee_bps = dict(settings.get("pool_fee_bps", {}))
        registry.pool_counter = settings.get("pool_counter", 0)

        positions_by_pool: Dict[str, List[Dict[str, Any]]] = {}
        for record in state.get("positions", []):
            positions_by_pool.setdefault(record["pool_id"], []).append(record)

        for record in state.get("pools", []):
            pool = StakingPool.from_dict(
                record,
                positions_by_pool.get(record["pool_id"], []),
                ledger=ledger,
                registry=registry,
                clock=registry.clock,
                events=record.get("events"),
            )
            registry.pools[pool.pool_id] = pool
            registry.pool_owner[pool.pool_id] = pool.owner
            if pool.owner is not None:
                registry.owner_pools.setdefault(pool.owner, []).append(pool.pool_id)

        return registry

    @classmethod
    def load(
        cls,
        storage,
        ledger: TokenLedger,
        clock: Optional[Callable[[], int]] = None,
        **defaults
    ) -> "PoolRegistry":
        """
        Restore a registry from a storage backend. An empty backend yields a
        fresh registry built from `defaults`.
        """
        state = storage.load_state()
        if not state:
            logger.info("No persisted registry state, starting fresh")
            return cls(ledger=ledger, clock=clock, **defaults)

        registry = cls.from_state(state, ledger, clock)
        logger.info("Loaded %d pools from %s", len(registry.pools), type(storage).__name__)
        return registry

    # ==================== UTILITY METHODS ====================

    def _generate_pool_id(
        self,
        owner: str,
        deposit_asset: str,
        reward_asset: str,
        start_time: int
    ) -> str:
        """Generate the pool's ledger address."""
        data = {
            "owner": owner,
            "deposit_asset": deposit_asset,
            "reward_asset": reward_asset,
            "start_time": start_time,
            "nonce": self.pool_counter,
            "timestamp": datetime.utcnow().isoformat()
        }
        hash_input = json.dumps(data, sort_keys=True)
        return "0x" + hashlib.sha256(hash_input.encode()).hexdigest()[:40]

    def _emit_event(self, event_type: str, data: Dict[str, Any]) -> None:
        """Emit an event for the registry audit trail."""
        event = {
            "event_type": event_type,
            "timestamp": datetime.utcnow().isoformat(),
            "data": data
        }
        self.events.append(event)
