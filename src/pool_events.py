"""
StakeWindow - Pool Event Trail

Every state transition of a staking pool is recorded as a PoolEvent in an
append-only EventLog. Events carry enough fields to replay the ledger
transition they describe (amounts, resulting stake, accumulator value).

Listeners can subscribe to a log to mirror events elsewhere (metrics,
persistence, the HTTP API).
"""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

logger = logging.getLogger(__name__)


class PoolEventType(Enum):
    """Types of pool events."""
    POOL_CREATED = "PoolCreated"
    DEPOSIT = "Deposit"
    WITHDRAW = "Withdraw"
    HARVEST = "Harvest"
    EMERGENCY_WITHDRAW = "EmergencyWithdraw"
    REWARDS_ADDED = "RewardsAdded"
    REWARDS_WITHDRAWN = "RewardsWithdrawn"
    SCHEDULE_CHANGED = "ScheduleChanged"
    EMERGENCY_CLOSE_ACTIVATED = "EmergencyCloseActivated"
    ACCUMULATOR_SYNCED = "AccumulatorSynced"
    OWNERSHIP_TRANSFERRED = "OwnershipTransferred"


@dataclass
class PoolEvent:
    """One recorded state transition."""
    pool_id: str
    sequence: int
    event_type: str
    block_time: int                  # Pool clock time of the transition
    data: dict[str, Any] = field(default_factory=dict)
    recorded_at: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "pool_id": self.pool_id,
            "sequence": self.sequence,
            "event_type": self.event_type,
            "block_time": self.block_time,
            "recorded_at": self.recorded_at,
            "data": dict(self.data),
        }


EventListener = Callable[[PoolEvent], None]


class EventLog:
    """
    Append-only event trail for one pool.

    Supports truncation back to a previous length so a failed operation
    leaves no events behind.
    """

    def __init__(self, pool_id: str):
        self.pool_id = pool_id
        self._events: list[PoolEvent] = []
        self._listeners: list[EventListener] = []
        self._pending: list[PoolEvent] = []
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def emit(self, event_type: PoolEventType, block_time: int, data: dict[str, Any]) -> PoolEvent:
        """Record an event. It is logged and sent to listeners once the operation commits."""
        with self._lock:
            event = PoolEvent(
                pool_id=self.pool_id,
                sequence=len(self._events),
                event_type=event_type.value,
                block_time=block_time,
                data=data,
            )
            self._events.append(event)
            self._pending.append(event)
        return event

    def truncate(self, length: int) -> None:
        """Drop events recorded after `length` (used on rollback)."""
        with self._lock:
            dropped = self._events[length:]
            del self._events[length:]
            self._pending = [e for e in self._pending if e not in dropped]

    def flush(self) -> None:
        """Log committed events and deliver them to listeners."""
        with self._lock:
            pending, self._pending = self._pending, []
            listeners = list(self._listeners)

        for event in pending:
            logger.info(
                "%s on pool %s",
                event.event_type,
                self.pool_id,
                extra={"event_sequence": event.sequence, "event_data": event.data},
            )
            for listener in listeners:
                try:
                    listener(event)
                except Exception:
                    logger.exception("Event listener failed for %s", event.event_type)

    def subscribe(self, listener: EventListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def restore(self, events: list[dict[str, Any]]) -> None:
        """Replace the trail with persisted events."""
        with self._lock:
            self._events = [
                PoolEvent(
                    pool_id=e["pool_id"],
                    sequence=e["sequence"],
                    event_type=e["event_type"],
                    block_time=e["block_time"],
                    data=e.get("data", {}),
                    recorded_at=e.get("recorded_at", ""),
                )
                for e in events
            ]
            self._pending = []

    def get_events(
        self,
        limit: int = 100,
        event_type: PoolEventType | None = None,
        user: str | None = None
    ) -> list[dict[str, Any]]:
        """Most recent events first, optionally filtered."""
        with self._lock:
            events = list(self._events)

        if event_type:
            events = [e for e in events if e.event_type == event_type.value]
        if user:
            events = [e for e in events if e.data.get("user") == user]

        return [e.to_dict() for e in reversed(events[-limit:])] if limit > 0 else []

    def all(self) -> list[PoolEvent]:
        with self._lock:
            return list(self._events)
