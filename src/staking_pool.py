"""
StakeWindow - Staking Pool Accounting Engine

A time-bounded staking pool that distributes a fixed reward budget to
depositors of one asset, proportionally to stake amount and stake duration,
over an owner-configurable window [start_time, end_time).

Core Properties:
- Reward-per-share accumulator: a user's entitlement is computed from the
  accumulator and the user's reward debt, never by iterating users
- Rate re-basing: every sync divides the *current* remaining budget by the
  *current* remaining duration, so top-ups and schedule edits compose
- Measured transfers: inbound amounts are credited from balance deltas,
  never from the nominal argument
- Ledger first, transfers last: all bookkeeping is committed before any
  outbound transfer, and a reentrancy guard rejects token callbacks
- Atomic operations: any failure restores pool state, the event trail and
  the token ledger to their pre-call values

Lifecycle:
    Pending (now < start) -> Active (start <= now < end) -> Ended (now >= end)
    EmergencyClosed may latch at any point and is terminal.
"""

import copy
import logging
import threading
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, Optional

from monitoring.metrics import metrics
from pool_events import EventLog, PoolEventType
from pool_exceptions import (
    InsufficientRewardsError,
    InsufficientStakeError,
    InvalidAmountError,
    InvalidScheduleError,
    NotAllowedError,
    NotOwnerError,
    PoolEndedError,
    ReentrancyError,
)
from token_ledger import (
    BPS_DENOMINATOR,
    TokenGateway,
    TokenLedger,
    require_address,
    require_amount,
)

logger = logging.getLogger(__name__)

# Fixed-point scale of the reward-per-share accumulator
ACC_PRECISION = 10**12


class PoolStatus(Enum):
    """Lifecycle state of a pool at a given time."""
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    EMERGENCY_CLOSED = "emergency_closed"


@dataclass
class PoolSchedule:
    """Reward window. start_time is fixed at creation."""
    start_time: int
    end_time: int


@dataclass
class RewardTrack:
    """Asset identities and reward budget accounting."""
    deposit_asset: str
    reward_asset: str
    total_rewards_deposited: int = 0
    remaining_rewards: int = 0
    acc_reward_per_share: int = 0


@dataclass
class UserPosition:
    """One depositor's stake and the rewards already accounted for it."""
    staked_amount: int = 0
    reward_debt: int = 0


@dataclass
class PoolState:
    """Aggregate stake and accrual bookkeeping."""
    total_staked: int = 0
    last_accrual_time: int = 0
    emergency_closed: bool = False


class StakingPool:
    """
    Staking pool accounting engine.

    Every public mutating operation:
    1. Runs inside a transaction (per-pool lock, reentrancy guard, rollback)
    2. Synchronizes the accumulator against the clock
    3. Applies its own effect to the ledger
    4. Moves tokens last
    """

    def __init__(
        self,
        pool_id: str,
        owner: Optional[str],
        deposit_asset: str,
        reward_asset: str,
        start_time: int,
        end_time: int,
        ledger: TokenLedger,
        registry,
        clock: Callable[[], int],
        created_at: Optional[int] = None,
        validate_schedule: bool = True
    ):
        """
        Initialize a pool.

        Args:
            pool_id: Pool address on the token ledger
            owner: Owner address (None for a renounced pool)
            deposit_asset: Asset users stake
            reward_asset: Asset paid out as rewards
            start_time: Window start (absolute seconds)
            end_time: Window end (absolute seconds)
            ledger: Token ledger holding both assets
            registry: Registry providing fee lookup, fee/recovery addresses
                and ownership notifications
            clock: Callable returning the current time in seconds
            created_at: Creation time (defaults to now)
            validate_schedule: Require start_time in the future (disabled
                when restoring persisted pools)
        """
        self.pool_id = require_address(pool_id, action="create_pool", field_name="pool_id")
        self.owner = owner
        require_address(deposit_asset, action="create_pool", field_name="deposit_asset")
        require_address(reward_asset, action="create_pool", field_name="reward_asset")

        self.clock = clock
        now = self.clock()
        if validate_schedule and start_time <= now:
            raise InvalidScheduleError(
                "start_time must be in the future",
                action="create_pool",
                start_time=start_time,
                end_time=end_time
            )
        if end_time <= start_time:
            raise InvalidScheduleError(
                "end_time must be after start_time",
                action="create_pool",
                start_time=start_time,
                end_time=end_time
            )

        self.schedule = PoolSchedule(start_time=start_time, end_time=end_time)
        self.track = RewardTrack(deposit_asset=deposit_asset, reward_asset=reward_asset)
        self.state = PoolState(last_accrual_time=start_time)
        self._positions: Dict[str, UserPosition] = {}

        self.ledger = ledger
        self.gateway = TokenGateway(ledger, self.pool_id)
        self.registry = registry
        self.created_at = now if created_at is None else created_at

        self.events = EventLog(self.pool_id)

        # Serializes operations on this pool; re-entry is detected separately
        self._lock = threading.RLock()
        self._active_action: Optional[str] = None

    # ==================== TRANSACTION MACHINERY ====================

    @contextmanager
    def _transaction(self, action: str):
        """Run one operation atomically with respect to this pool."""
        with self.ledger.atomic(), self._lock:
            if self._active_action is not None:
                raise ReentrancyError(action=action, active_action=self._active_action)

            self._active_action = action
            saved = self._capture()
            events_before = len(self.events)
            try:
                yield
            except Exception:
                self._restore(saved)
                self.events.truncate(events_before)
                raise
            finally:
                self._active_action = None

        self.events.flush()
        metrics.increment("pool_operations_total", labels={"operation": action})
        metrics.set_gauge("pool_total_staked", self.state.total_staked, labels={"pool_id": self.pool_id})
        metrics.set_gauge(
            "pool_remaining_rewards", self.track.remaining_rewards, labels={"pool_id": self.pool_id}
        )

    def _capture(self) -> tuple:
        return (
            copy.copy(self.schedule),
            copy.copy(self.track),
            copy.copy(self.state),
            self.owner,
            {user: copy.copy(pos) for user, pos in self._positions.items()},
        )

    def _restore(self, saved: tuple) -> None:
        self.schedule, self.track, self.state, self.owner, self._positions = saved

    def _require_owner(self, caller: Optional[str], action: str) -> None:
        if self.owner is None or caller != self.owner:
            raise NotOwnerError(caller=caller, owner=self.owner, action=action)

    # ==================== ACCUMULATOR ====================

    def _pending_accrual(self, now: int) -> tuple[int, int, int]:
        """
        Accrual owed since last_accrual_time, without applying it.

        Returns:
            Tuple of (effective_now, distributed, acc_increment)
        """
        effective_now = min(now, self.schedule.end_time)
        last = self.state.last_accrual_time

        if self.state.emergency_closed or effective_now <= last:
            return last, 0, 0
        if self.state.total_staked == 0:
            return effective_now, 0, 0

        remaining = self.track.remaining_rewards
        elapsed = effective_now - last
        # Multiply before divide; the remaining duration is always positive here
        distributed = min(remaining * elapsed // (self.schedule.end_time - last), remaining)
        acc_increment = distributed * ACC_PRECISION // self.state.total_staked
        return effective_now, distributed, acc_increment

    def _sync(self) -> None:
        effective_now, distributed, acc_increment = self._pending_accrual(self.clock())
        if effective_now <= self.state.last_accrual_time:
            return

        previous_time = self.state.last_accrual_time
        self.track.acc_reward_per_share += acc_increment
        self.track.remaining_rewards -= distributed
        self.state.last_accrual_time = effective_now

        self.events.emit(PoolEventType.ACCUMULATOR_SYNCED, effective_now, {
            "from_time": previous_time,
            "to_time": effective_now,
            "distributed": distributed,
            "total_staked": self.state.total_staked,
            "acc_reward_per_share": self.track.acc_reward_per_share,
            "remaining_rewards": self.track.remaining_rewards,
        })

    def sync_accumulator(self) -> Dict[str, Any]:
        """Bring the accumulator up to date with the clock."""
        with self._transaction("sync"):
            self._sync()
        return self.get_pool_info()

    # ==================== SETTLEMENT HELPERS ====================

    def _debt_for(self, staked_amount: int) -> int:
        return staked_amount * self.track.acc_reward_per_share // ACC_PRECISION

    def _pending_for(self, position: UserPosition, acc: Optional[int] = None) -> int:
        acc = self.track.acc_reward_per_share if acc is None else acc
        return max(position.staked_amount * acc // ACC_PRECISION - position.reward_debt, 0)

    def _available_reward_balance(self) -> int:
        """Reward tokens held by the pool that do not back staked principal."""
        balance = self.gateway.balance_of(self.track.reward_asset)
        if self.track.reward_asset == self.track.deposit_asset:
            balance -= self.state.total_staked
        return max(balance, 0)

    def _safe_reward_transfer(self, recipient: str, amount: int) -> int:
        """
        Pay min(amount, available reward balance). Never fails for shortfall;
        the unpaid remainder is not carried forward.
        """
        if amount <= 0:
            return 0

        available = self._available_reward_balance()
        payable = min(amount, available)
        if payable < amount:
            logger.warning(
                "Reward shortfall on pool %s: owed %d, paying %d",
                self.pool_id, amount, payable,
                extra={"recipient": recipient},
            )
            metrics.increment("pool_reward_shortfall_total", labels={"pool_id": self.pool_id})

        return self.gateway.transfer_out(self.track.reward_asset, recipient, payable)

    def _position(self, user: str) -> UserPosition:
        return self._positions.get(user) or UserPosition()

    # ==================== USER OPERATIONS ====================

    def deposit(self, user: str, amount: int) -> Dict[str, Any]:
        """
        Stake `amount` of the deposit asset and settle pending rewards.

        A zero deposit is a valid way to settle rewards. The stake is
        credited with the amount actually received by the pool.

        Raises:
            NotAllowedError: Before start, at/after end, or once emergency-closed
        """
        require_address(user, action="deposit", field_name="user")
        require_amount(amount, action="deposit")

        with self._transaction("deposit"):
            now = self.clock()
            if self.state.emergency_closed:
                raise NotAllowedError(
                    "Deposits are disabled after emergency close",
                    action="deposit", pool_status=self.status_at(now).value
                )
            if now < self.schedule.start_time or now >= self.schedule.end_time:
                raise NotAllowedError(
                    "Deposits are only accepted during the reward window",
                    action="deposit",
                    pool_status=self.status_at(now).value,
                    details={"now": now, **asdict(self.schedule)}
                )

            self._sync()
            position = self._position(user)
            pending = self._pending_for(position)

            received = self.gateway.transfer_in(self.track.deposit_asset, user, amount)
            position.staked_amount += received
            position.reward_debt = self._debt_for(position.staked_amount)
            self.state.total_staked += received
            if position.staked_amount or user in self._positions:
                self._positions[user] = position

            paid = self._safe_reward_transfer(user, pending)

            self.events.emit(PoolEventType.DEPOSIT, now, {
                "user": user,
                "amount_requested": amount,
                "amount_received": received,
                "reward_due": pending,
                "reward_paid": paid,
                "staked_amount": position.staked_amount,
                "reward_debt": position.reward_debt,
                "total_staked": self.state.total_staked,
                "acc_reward_per_share": self.track.acc_reward_per_share,
            })

        return {
            "status": "deposited",
            "user": user,
            "amount_received": received,
            "reward_paid": paid,
            "staked_amount": position.staked_amount,
        }

    def withdraw(self, user: str, amount: int) -> Dict[str, Any]:
        """
        Unstake `amount` and settle pending rewards.

        Raises:
            InsufficientStakeError: amount exceeds the caller's stake
        """
        require_address(user, action="withdraw", field_name="user")
        require_amount(amount, action="withdraw")

        with self._transaction("withdraw"):
            position = self._position(user)
            if amount > position.staked_amount:
                raise InsufficientStakeError(user, amount, position.staked_amount)

            result = self._settle(user, position, amount, PoolEventType.WITHDRAW)

        return {"status": "withdrawn", **result}

    def harvest(self, user: str) -> Dict[str, Any]:
        """Settle pending rewards without changing the stake."""
        require_address(user, action="harvest", field_name="user")

        with self._transaction("harvest"):
            result = self._settle(user, self._position(user), 0, PoolEventType.HARVEST)

        return {"status": "harvested", **result}

    def _settle(
        self,
        user: str,
        position: UserPosition,
        amount: int,
        event_type: PoolEventType
    ) -> Dict[str, Any]:
        now = self.clock()
        self._sync()
        pending = self._pending_for(position)

        position.staked_amount -= amount
        position.reward_debt = self._debt_for(position.staked_amount)
        self.state.total_staked -= amount
        if user in self._positions:
            self._positions[user] = position

        # Principal leaves first so reward payouts can never draw on it
        sent = self.gateway.transfer_out(self.track.deposit_asset, user, amount)
        paid = self._safe_reward_transfer(user, pending)

        self.events.emit(event_type, now, {
            "user": user,
            "amount": amount,
            "amount_sent": sent,
            "reward_due": pending,
            "reward_paid": paid,
            "staked_amount": position.staked_amount,
            "reward_debt": position.reward_debt,
            "total_staked": self.state.total_staked,
            "acc_reward_per_share": self.track.acc_reward_per_share,
        })

        return {
            "user": user,
            "amount": amount,
            "amount_sent": sent,
            "reward_paid": paid,
            "staked_amount": position.staked_amount,
        }

    def emergency_withdraw(self, user: str) -> Dict[str, Any]:
        """
        Return the caller's full stake and forfeit any pending reward.

        Available in every lifecycle state.
        """
        require_address(user, action="emergency_withdraw", field_name="user")

        with self._transaction("emergency_withdraw"):
            now = self.clock()
            self._sync()
            position = self._position(user)
            amount = position.staked_amount
            forfeited = self._pending_for(position)

            position.staked_amount = 0
            position.reward_debt = 0
            self.state.total_staked -= amount
            if user in self._positions:
                self._positions[user] = position

            sent = self.gateway.transfer_out(self.track.deposit_asset, user, amount)

            self.events.emit(PoolEventType.EMERGENCY_WITHDRAW, now, {
                "user": user,
                "amount": amount,
                "amount_sent": sent,
                "reward_forfeited": forfeited,
                "total_staked": self.state.total_staked,
            })

        return {
            "status": "emergency_withdrawn",
            "user": user,
            "amount": amount,
            "amount_sent": sent,
            "reward_forfeited": forfeited,
        }

    # ==================== OWNER OPERATIONS ====================

    def add_rewards(self, caller: str, amount: int) -> Dict[str, Any]:
        """
        Top up the reward budget.

        The registry fee is routed from the caller to the fee collector;
        the remainder is pulled into the pool and credited as measured.

        Raises:
            NotOwnerError: caller is not the owner
            PoolEndedError: the window has elapsed
            NotAllowedError: the pool is emergency-closed
        """
        require_amount(amount, action="add_rewards")
        if amount == 0:
            raise InvalidAmountError(amount, action="add_rewards")

        with self._transaction("add_rewards"):
            self._require_owner(caller, "add_rewards")
            now = self.clock()
            if now >= self.schedule.end_time:
                raise PoolEndedError(action="add_rewards", end_time=self.schedule.end_time, now=now)
            if self.state.emergency_closed:
                raise NotAllowedError(
                    "Rewards cannot be added after emergency close",
                    action="add_rewards", pool_status=PoolStatus.EMERGENCY_CLOSED.value
                )

            self._sync()

            fee_bps = self.registry.fee_bps(self.pool_id, self.owner)
            fee = amount * fee_bps // BPS_DENOMINATOR
            fee_received = 0
            if fee:
                fee_received = self.gateway.route(
                    self.track.reward_asset, caller, self.registry.fee_collector, fee
                )

            received = self.gateway.transfer_in(self.track.reward_asset, caller, amount - fee)
            self.track.total_rewards_deposited += received
            self.track.remaining_rewards += received

            self.events.emit(PoolEventType.REWARDS_ADDED, now, {
                "caller": caller,
                "amount": amount,
                "fee": fee,
                "fee_bps": fee_bps,
                "fee_received": fee_received,
                "received": received,
                "total_rewards_deposited": self.track.total_rewards_deposited,
                "remaining_rewards": self.track.remaining_rewards,
            })

        return {
            "status": "rewards_added",
            "amount": amount,
            "fee": fee,
            "received": received,
            "remaining_rewards": self.track.remaining_rewards,
        }

    def withdraw_rewards(self, caller: str, amount: int) -> Dict[str, Any]:
        """
        Remove undistributed budget. Rewards already accrued to the
        accumulator cannot be clawed back.

        Raises:
            NotOwnerError: caller is not the owner
            InsufficientRewardsError: amount exceeds the remaining budget or
                the reward balance held outside staked principal
        """
        require_amount(amount, action="withdraw_rewards")

        with self._transaction("withdraw_rewards"):
            self._require_owner(caller, "withdraw_rewards")
            now = self.clock()
            self._sync()

            # Bounded by the budget and by reward tokens actually held outside principal
            withdrawable = min(self.track.remaining_rewards, self._available_reward_balance())
            if amount > withdrawable:
                raise InsufficientRewardsError(amount, withdrawable)

            self.track.remaining_rewards -= amount
            self.track.total_rewards_deposited = max(
                self.track.total_rewards_deposited - amount, 0
            )

            sent = self.gateway.transfer_out(self.track.reward_asset, caller, amount)

            self.events.emit(PoolEventType.REWARDS_WITHDRAWN, now, {
                "caller": caller,
                "amount": amount,
                "amount_sent": sent,
                "total_rewards_deposited": self.track.total_rewards_deposited,
                "remaining_rewards": self.track.remaining_rewards,
            })

        return {
            "status": "rewards_withdrawn",
            "amount": amount,
            "amount_sent": sent,
            "remaining_rewards": self.track.remaining_rewards,
        }

    def set_schedule(self, caller: str, new_end_time: int) -> Dict[str, Any]:
        """
        Move end_time. Accrual up to now is flushed at the old rate; the
        next sync re-bases on the new remaining duration.

        Raises:
            NotOwnerError: caller is not the owner
            PoolEndedError: the current window has already elapsed
            NotAllowedError: the pool is emergency-closed
            InvalidScheduleError: the new end leaves no forward duration
        """
        with self._transaction("set_schedule"):
            self._require_owner(caller, "set_schedule")
            now = self.clock()
            if now >= self.schedule.end_time:
                raise PoolEndedError(action="set_schedule", end_time=self.schedule.end_time, now=now)
            if self.state.emergency_closed:
                raise NotAllowedError(
                    "Schedule is frozen after emergency close",
                    action="set_schedule", pool_status=PoolStatus.EMERGENCY_CLOSED.value
                )

            floor = max(self.schedule.start_time, now, self.state.last_accrual_time)
            if not isinstance(new_end_time, int) or new_end_time <= floor:
                raise InvalidScheduleError(
                    f"end_time must be after {floor}",
                    start_time=self.schedule.start_time,
                    end_time=new_end_time
                )

            self._sync()
            old_end_time = self.schedule.end_time
            self.schedule.end_time = new_end_time

            self.events.emit(PoolEventType.SCHEDULE_CHANGED, now, {
                "caller": caller,
                "start_time": self.schedule.start_time,
                "old_end_time": old_end_time,
                "new_end_time": new_end_time,
                "last_accrual_time": self.state.last_accrual_time,
                "remaining_rewards": self.track.remaining_rewards,
            })

        return {
            "status": "schedule_changed",
            "old_end_time": old_end_time,
            "new_end_time": new_end_time,
            "reward_rate": self.reward_rate(),
        }

    def activate_emergency_close(self, caller: str) -> Dict[str, Any]:
        """
        Latch the pool closed and sweep the undistributed budget to the
        registry's emergency-recovery address. Staked principal and rewards
        already accrued stay withdrawable.
        """
        with self._transaction("emergency_close"):
            self._require_owner(caller, "emergency_close")
            now = self.clock()
            if self.state.emergency_closed:
                raise NotAllowedError(
                    "Emergency close is already active",
                    action="emergency_close", pool_status=PoolStatus.EMERGENCY_CLOSED.value
                )

            self._sync()
            recovery = require_address(
                self.registry.emergency_recovery, action="emergency_close",
                field_name="emergency_recovery"
            )
            swept = self.track.remaining_rewards
            self.track.remaining_rewards = 0
            self.state.emergency_closed = True

            sent = self._safe_reward_transfer(recovery, swept)

            self.events.emit(PoolEventType.EMERGENCY_CLOSE_ACTIVATED, now, {
                "caller": caller,
                "recovery_address": recovery,
                "swept": swept,
                "amount_sent": sent,
                "total_staked": self.state.total_staked,
                "acc_reward_per_share": self.track.acc_reward_per_share,
            })

        logger.warning("Emergency close activated on pool %s", self.pool_id)
        return {
            "status": "emergency_closed",
            "recovery_address": recovery,
            "swept": swept,
            "amount_sent": sent,
        }

    def transfer_ownership(self, caller: str, new_owner: str) -> Dict[str, Any]:
        """Hand the pool to `new_owner`, updating the registry's owner index."""
        require_address(new_owner, action="transfer_ownership", field_name="new_owner")
        return self._change_owner(caller, new_owner, "transfer_ownership")

    def renounce_ownership(self, caller: str) -> Dict[str, Any]:
        """Leave the pool ownerless. Owner-restricted calls fail from then on."""
        return self._change_owner(caller, None, "renounce_ownership")

    def _change_owner(self, caller: str, new_owner: Optional[str], action: str) -> Dict[str, Any]:
        with self._transaction(action):
            self._require_owner(caller, action)
            now = self.clock()
            self._sync()

            previous_owner = self.owner
            self.registry.notify_owner_changed(self.pool_id, previous_owner, new_owner)
            self.owner = new_owner

            self.events.emit(PoolEventType.OWNERSHIP_TRANSFERRED, now, {
                "previous_owner": previous_owner,
                "new_owner": new_owner,
            })

        return {
            "status": "ownership_transferred",
            "previous_owner": previous_owner,
            "new_owner": new_owner,
        }

    # ==================== VIEWS ====================

    def status_at(self, now: int) -> PoolStatus:
        if self.state.emergency_closed:
            return PoolStatus.EMERGENCY_CLOSED
        if now < self.schedule.start_time:
            return PoolStatus.PENDING
        if now < self.schedule.end_time:
            return PoolStatus.ACTIVE
        return PoolStatus.ENDED

    @property
    def status(self) -> PoolStatus:
        return self.status_at(self.clock())

    def pending_reward(self, user: str) -> int:
        """Reward the user would receive if they harvested now."""
        with self._lock:
            _, _, acc_increment = self._pending_accrual(self.clock())
            position = self._position(user)
            return self._pending_for(position, self.track.acc_reward_per_share + acc_increment)

    def reward_rate(self) -> int:
        """Instantaneous reward rate: remaining budget over remaining duration (per second)."""
        with self._lock:
            if self.state.emergency_closed:
                return 0
            duration = self.schedule.end_time - self.state.last_accrual_time
            if duration <= 0:
                return 0
            return self.track.remaining_rewards // duration

    def get_position(self, user: str) -> Dict[str, Any]:
        with self._lock:
            position = self._position(user)
            return {
                "pool_id": self.pool_id,
                "user": user,
                "staked_amount": position.staked_amount,
                "reward_debt": position.reward_debt,
                "pending_reward": self.pending_reward(user),
            }

    def get_stakers(self) -> list[str]:
        with self._lock:
            return [user for user, pos in self._positions.items() if pos.staked_amount > 0]

    @property
    def total_staked(self) -> int:
        return self.state.total_staked

    def get_pool_info(self) -> Dict[str, Any]:
        """Complete pool record for APIs and dashboards."""
        with self._lock:
            return {
                "pool_id": self.pool_id,
                "owner": self.owner,
                "status": self.status.value,
                "deposit_asset": self.track.deposit_asset,
                "reward_asset": self.track.reward_asset,
                "start_time": self.schedule.start_time,
                "end_time": self.schedule.end_time,
                "total_staked": self.state.total_staked,
                "total_rewards_deposited": self.track.total_rewards_deposited,
                "remaining_rewards": self.track.remaining_rewards,
                "acc_reward_per_share": self.track.acc_reward_per_share,
                "last_accrual_time": self.state.last_accrual_time,
                "emergency_closed": self.state.emergency_closed,
                "reward_rate": self.reward_rate(),
                "staker_count": len(self.get_stakers()),
                "created_at": self.created_at,
            }

    def get_events(
        self,
        limit: int = 100,
        event_type: Optional[PoolEventType] = None,
        user: Optional[str] = None
    ) -> list[Dict[str, Any]]:
        return self.events.get_events(limit=limit, event_type=event_type, user=user)

    # ==================== PERSISTENCE ====================

    def to_dict(self) -> Dict[str, Any]:
        """Pool record (schedule, reward track, state, owner)."""
        with self._lock:
            return {
                "pool_id": self.pool_id,
                "owner": self.owner,
                "created_at": self.created_at,
                **asdict(self.schedule),
                **asdict(self.track),
                **asdict(self.state),
            }

    def position_records(self) -> list[Dict[str, Any]]:
        """One record per (pool, user) position."""
        with self._lock:
            return [
                {
                    "pool_id": self.pool_id,
                    "user": user,
                    "staked_amount": pos.staked_amount,
                    "reward_debt": pos.reward_debt,
                }
                for user, pos in self._positions.items()
            ]

    def export_state(self) -> tuple[Dict[str, Any], list[Dict[str, Any]]]:
        """Pool record (with its event trail) and position records, taken together."""
        with self._lock:
            record = self.to_dict()
            record["events"] = [e.to_dict() for e in self.events.all()]
            return record, self.position_records()

    @classmethod
    def from_dict(
        cls,
        record: Dict[str, Any],
        positions: list[Dict[str, Any]],
        ledger: TokenLedger,
        registry,
        clock: Callable[[], int],
        events: Optional[list[Dict[str, Any]]] = None
    ) -> "StakingPool":
        """Rebuild a pool from persisted records."""
        pool = cls(
            pool_id=record["pool_id"],
            owner=record.get("owner"),
            deposit_asset=record["deposit_asset"],
            reward_asset=record["reward_asset"],
            start_time=int(record["start_time"]),
            end_time=int(record["end_time"]),
            ledger=ledger,
            registry=registry,
            clock=clock,
            created_at=record.get("created_at"),
            validate_schedule=False,
        )
        pool.track.total_rewards_deposited = int(record["total_rewards_deposited"])
        pool.track.remaining_rewards = int(record["remaining_rewards"])
        pool.track.acc_reward_per_share = int(record["acc_reward_per_share"])
        pool.state.total_staked = int(record["total_staked"])
        pool.state.last_accrual_time = int(record["last_accrual_time"])
        pool.state.emergency_closed = bool(record["emergency_closed"])

        for pos in positions:
            pool._positions[pos["user"]] = UserPosition(
                staked_amount=int(pos["staked_amount"]),
                reward_debt=int(pos["reward_debt"]),
            )

        if pool.state.total_staked != sum(p.staked_amount for p in pool._positions.values()):
            raise ValueError(f"Persisted positions do not sum to total_staked for {pool.pool_id}")

        if events:
            pool.events.restore(events)

        return pool
