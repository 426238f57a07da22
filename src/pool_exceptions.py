"""
StakeWindow - Staking Pool Exception Hierarchy

Every rejected pool operation raises a subclass of StakingPoolError.
Errors carry structured context so the API layer and the logs can report
exactly which component, action and ledger values caused the rejection.

Taxonomy:
- Lifecycle violations: NotAllowedError, PoolEndedError, ReentrancyError
- Invariant violations: InsufficientStakeError, InsufficientRewardsError,
  InvalidScheduleError, InvalidAddressError, InvalidAmountError,
  PoolNotFoundError
- Authorization failures: NotOwnerError
- Upstream failures: TransferFailedError
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ErrorCategory(Enum):
    """Broad classes of pool errors."""
    LIFECYCLE = "lifecycle"
    INVARIANT = "invariant"
    AUTHORIZATION = "authorization"
    UPSTREAM = "upstream"


class ErrorSeverity(Enum):
    """Severity levels for pool errors."""
    LOW = "low"           # Caller mistake, expected in normal operation
    MEDIUM = "medium"     # Worth monitoring
    HIGH = "high"         # Requires attention
    CRITICAL = "critical" # Ledger or token integrity at risk


@dataclass
class ErrorContext:
    """Structured context for error tracking and debugging."""
    component: str
    action: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    details: dict[str, Any] = field(default_factory=dict)
    severity: ErrorSeverity = ErrorSeverity.LOW

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "component": self.component,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "severity": self.severity.value
        }


class StakingPoolError(Exception):
    """
    Base exception for all staking pool errors.

    Includes structured error context for improved debugging
    and integration with monitoring systems.
    """

    category: ErrorCategory = ErrorCategory.INVARIANT

    def __init__(
        self,
        message: str,
        component: str = "staking_pool",
        action: str = "unknown",
        severity: ErrorSeverity = ErrorSeverity.LOW,
        details: dict[str, Any] | None = None,
        cause: Exception | None = None
    ):
        super().__init__(message)
        self.message = message
        self.context = ErrorContext(
            component=component,
            action=action,
            severity=severity,
            details=details or {}
        )
        self.cause = cause

        if cause:
            self.__cause__ = cause

    @property
    def code(self) -> str:
        """Stable error code derived from the class name."""
        name = type(self).__name__
        return name[:-5] if name.endswith("Error") else name

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        result = {
            "error_type": type(self).__name__,
            "code": self.code,
            "category": self.category.value,
            "message": self.message,
            **self.context.to_dict()
        }
        if self.cause:
            result["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }
        return result

    def __str__(self) -> str:
        base = f"[{self.context.component}:{self.context.action}] {self.message}"
        if self.cause:
            base += f" (caused by: {self.cause})"
        return base


# =============================================================================
# Lifecycle Errors
# =============================================================================

class LifecycleError(StakingPoolError):
    """Mutation attempted outside the permitted lifecycle window."""

    category = ErrorCategory.LIFECYCLE


class NotAllowedError(LifecycleError):
    """
    Raised when the pool state forbids the operation.

    Examples:
    - Deposit before start_time or at/after end_time
    - Deposit or reward top-up after emergency close
    - Activating emergency close twice
    """

    def __init__(
        self,
        message: str,
        action: str = "unknown",
        pool_status: str | None = None,
        details: dict[str, Any] | None = None
    ):
        super().__init__(
            message=message,
            action=action,
            details={"pool_status": pool_status, **(details or {})}
        )
        self.pool_status = pool_status


class PoolEndedError(LifecycleError):
    """Raised when an owner operation targets a pool whose window has elapsed."""

    def __init__(
        self,
        message: str = "Pool has ended",
        action: str = "unknown",
        end_time: int | None = None,
        now: int | None = None
    ):
        super().__init__(
            message=message,
            action=action,
            details={"end_time": end_time, "now": now}
        )
        self.end_time = end_time


class ReentrancyError(LifecycleError):
    """Raised when a token callback re-enters a pool mid-operation."""

    def __init__(self, action: str = "unknown", active_action: str | None = None):
        super().__init__(
            message=f"Reentrant call rejected while '{active_action}' is in progress",
            action=action,
            severity=ErrorSeverity.CRITICAL,
            details={"active_action": active_action}
        )


# =============================================================================
# Invariant Errors
# =============================================================================

class InsufficientStakeError(StakingPoolError):
    """Withdrawal larger than the caller's staked amount."""

    def __init__(self, user: str, requested: int, staked: int):
        super().__init__(
            message=f"Withdrawal of {requested} exceeds stake of {staked}",
            action="withdraw",
            details={"user": user, "requested": requested, "staked": staked}
        )
        self.requested = requested
        self.staked = staked


class InsufficientRewardsError(StakingPoolError):
    """Owner withdrawal larger than the undistributed reward budget."""

    def __init__(self, requested: int, remaining: int):
        super().__init__(
            message=f"Requested {requested} exceeds remaining rewards of {remaining}",
            action="withdraw_rewards",
            details={"requested": requested, "remaining": remaining}
        )
        self.requested = requested
        self.remaining = remaining


class InvalidScheduleError(StakingPoolError):
    """A start/end time pair that leaves no positive forward window."""

    def __init__(
        self,
        message: str,
        action: str = "set_schedule",
        start_time: int | None = None,
        end_time: int | None = None
    ):
        super().__init__(
            message=message,
            action=action,
            details={"start_time": start_time, "end_time": end_time}
        )


class InvalidAddressError(StakingPoolError):
    """Missing, empty or zero address."""

    def __init__(self, message: str, action: str = "unknown", address: Any = None):
        super().__init__(
            message=message,
            action=action,
            details={"address": address}
        )
        self.address = address


class InvalidAmountError(StakingPoolError):
    """Negative or non-integer token amount."""

    def __init__(self, amount: Any, action: str = "unknown"):
        super().__init__(
            message=f"Amount must be a non-negative integer, got {amount!r}",
            action=action,
            details={"amount": repr(amount)}
        )


class PoolNotFoundError(StakingPoolError):
    """Registry lookup for an unknown pool."""

    def __init__(self, pool_id: str, action: str = "get_pool"):
        super().__init__(
            message=f"Pool not found: {pool_id}",
            component="pool_registry",
            action=action,
            details={"pool_id": pool_id}
        )
        self.pool_id = pool_id


# =============================================================================
# Authorization Errors
# =============================================================================

class NotOwnerError(StakingPoolError):
    """Owner-restricted call from a non-owner (or on a renounced pool)."""

    category = ErrorCategory.AUTHORIZATION

    def __init__(
        self,
        caller: str | None,
        owner: str | None,
        action: str = "unknown",
        component: str = "staking_pool"
    ):
        super().__init__(
            message=f"Caller {caller} is not the owner",
            component=component,
            action=action,
            severity=ErrorSeverity.MEDIUM,
            details={"caller": caller, "owner": owner}
        )
        self.caller = caller
        self.owner = owner


# =============================================================================
# Upstream Errors
# =============================================================================

class TransferFailedError(StakingPoolError):
    """The token ledger rejected a pull or push outright."""

    category = ErrorCategory.UPSTREAM

    def __init__(
        self,
        message: str,
        asset: str | None = None,
        source: str | None = None,
        destination: str | None = None,
        amount: int | None = None,
        cause: Exception | None = None
    ):
        super().__init__(
            message=message,
            component="token_ledger",
            action="transfer",
            severity=ErrorSeverity.HIGH,
            details={
                "asset": asset,
                "source": source,
                "destination": destination,
                "amount": amount,
            },
            cause=cause
        )
        self.asset = asset
        self.amount = amount


def log_exception(
    logger,
    e: StakingPoolError,
    level: str = "warning"
) -> None:
    """
    Log a StakingPoolError with full context.

    Args:
        logger: Logger instance
        e: The exception to log
        level: Log level (debug, info, warning, error, critical)
    """
    log_func = getattr(logger, level, logger.warning)
    log_func(
        str(e),
        extra={"error": e.to_dict()},
        exc_info=level in ("error", "critical")
    )
