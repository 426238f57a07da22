"""
StakeWindow - Token Ledger

Fungible-asset balances used for both the deposit asset and the reward
asset of a staking pool.

Components:
- TokenLedger: abstract approve/transfer/transferFrom/balanceOf contract
- InMemoryTokenLedger: multi-asset ledger that can behave like a
  non-standard token (fee-on-transfer, short transfers, outright failures,
  callbacks into the recipient)
- TokenGateway: the pool-facing adapter. Pulls and pushes tokens on behalf
  of one holder and reports the *measured* balance delta, never the
  nominal amount.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable

from pool_exceptions import (
    InvalidAddressError,
    InvalidAmountError,
    StakingPoolError,
    TransferFailedError,
)

logger = logging.getLogger(__name__)

ZERO_ADDRESS = "0x" + "0" * 40

BPS_DENOMINATOR = 10_000

# Called after balances move: hook(asset, sender, recipient, amount)
TransferHook = Callable[[str, str, str, int], None]


def is_valid_address(address: Any) -> bool:
    """True for a non-empty string that is not the zero address."""
    return isinstance(address, str) and bool(address.strip()) and address != ZERO_ADDRESS


def require_address(address: Any, action: str = "unknown", field_name: str = "address") -> str:
    """Return `address` or raise InvalidAddressError."""
    if not is_valid_address(address):
        raise InvalidAddressError(
            f"Invalid {field_name}: {address!r}",
            action=action,
            address=address
        )
    return address


def require_amount(amount: Any, action: str = "unknown") -> int:
    """Return `amount` as an int or raise InvalidAmountError."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmountError(amount, action=action)
    return amount


@dataclass
class AssetConfig:
    """Behaviour of one asset in the in-memory ledger."""
    asset_id: str
    symbol: str
    decimals: int = 18
    transfer_fee_bps: int = 0          # Burned from every transfer
    max_transfer: int | None = None    # Transfers silently cap at this amount
    paused: bool = False               # Every transfer fails outright

    def to_dict(self) -> dict[str, Any]:
        return {
            "asset_id": self.asset_id,
            "symbol": self.symbol,
            "decimals": self.decimals,
            "transfer_fee_bps": self.transfer_fee_bps,
            "max_transfer": self.max_transfer,
            "paused": self.paused,
        }


class TokenLedger(ABC):
    """
    Abstract fungible-token ledger.

    Implementations either complete a transfer (possibly moving less than
    requested) or raise TransferFailedError.
    """

    @abstractmethod
    def balance_of(self, asset: str, holder: str) -> int:
        pass

    @abstractmethod
    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        pass

    @abstractmethod
    def transfer_from(
        self, asset: str, spender: str, owner: str, recipient: str, amount: int
    ) -> None:
        pass

    @abstractmethod
    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        pass

    @abstractmethod
    def allowance(self, asset: str, owner: str, spender: str) -> int:
        pass

    @contextmanager
    def atomic(self):
        """
        Scope in which a failed pool operation is undone.

        Ledgers that cannot roll back simply yield; the pool still restores
        its own state.
        """
        yield

    def export_state(self) -> dict[str, Any] | None:
        """Persistable copy of the ledger, or None when balances live elsewhere."""
        return None

    def import_state(self, state: dict[str, Any]) -> bool:
        """Load a copy produced by export_state(). Returns True if anything was loaded."""
        return False


class InMemoryTokenLedger(TokenLedger):
    """
    In-memory multi-asset ledger.

    Thread-safe. Uses an RLock so recipient hooks may call back into
    the ledger (and into pools) on the same thread.
    """

    def __init__(self):
        self._assets: dict[str, AssetConfig] = {}
        self._balances: dict[str, dict[str, int]] = {}
        self._allowances: dict[str, dict[tuple[str, str], int]] = {}
        self._total_supply: dict[str, int] = {}
        self._hooks: dict[str, list[TransferHook]] = {}
        self._lock = threading.RLock()

    # ==================== ASSET MANAGEMENT ====================

    def register_asset(
        self,
        asset_id: str,
        symbol: str | None = None,
        decimals: int = 18,
        transfer_fee_bps: int = 0,
        max_transfer: int | None = None
    ) -> AssetConfig:
        """Register a new asset. Re-registering an existing asset is an error."""
        require_address(asset_id, action="register_asset", field_name="asset_id")
        if not 0 <= transfer_fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"transfer_fee_bps out of range: {transfer_fee_bps}")

        with self._lock:
            if asset_id in self._assets:
                raise ValueError(f"Asset already registered: {asset_id}")
            config = AssetConfig(
                asset_id=asset_id,
                symbol=symbol or asset_id,
                decimals=decimals,
                transfer_fee_bps=transfer_fee_bps,
                max_transfer=max_transfer,
            )
            self._assets[asset_id] = config
            self._balances[asset_id] = {}
            self._allowances[asset_id] = {}
            self._total_supply[asset_id] = 0
            self._hooks[asset_id] = []

        logger.debug("Registered asset %s (%s)", asset_id, config.symbol)
        return config

    def get_asset(self, asset_id: str) -> AssetConfig:
        with self._lock:
            if asset_id not in self._assets:
                raise TransferFailedError(f"Unknown asset: {asset_id}", asset=asset_id)
            return self._assets[asset_id]

    def has_asset(self, asset_id: str) -> bool:
        with self._lock:
            return asset_id in self._assets

    def list_assets(self) -> list[dict[str, Any]]:
        with self._lock:
            return [
                {**config.to_dict(), "total_supply": self._total_supply[asset_id]}
                for asset_id, config in self._assets.items()
            ]

    def set_transfer_fee(self, asset_id: str, transfer_fee_bps: int) -> None:
        if not 0 <= transfer_fee_bps <= BPS_DENOMINATOR:
            raise ValueError(f"transfer_fee_bps out of range: {transfer_fee_bps}")
        self.get_asset(asset_id).transfer_fee_bps = transfer_fee_bps

    def set_max_transfer(self, asset_id: str, max_transfer: int | None) -> None:
        self.get_asset(asset_id).max_transfer = max_transfer

    def set_paused(self, asset_id: str, paused: bool) -> None:
        self.get_asset(asset_id).paused = paused

    def add_transfer_hook(self, asset_id: str, hook: TransferHook) -> None:
        """Run `hook` after every completed transfer of `asset_id`."""
        self.get_asset(asset_id)
        with self._lock:
            self._hooks[asset_id].append(hook)

    def clear_transfer_hooks(self, asset_id: str) -> None:
        with self._lock:
            self._hooks[asset_id] = []

    # ==================== SUPPLY ====================

    def mint(self, asset: str, to: str, amount: int) -> None:
        require_address(to, action="mint", field_name="recipient")
        require_amount(amount, action="mint")
        with self._lock:
            self.get_asset(asset)
            balances = self._balances[asset]
            balances[to] = balances.get(to, 0) + amount
            self._total_supply[asset] += amount

    def burn(self, asset: str, holder: str, amount: int) -> None:
        """Destroy tokens held by `holder` (models external balance reduction)."""
        require_amount(amount, action="burn")
        with self._lock:
            self.get_asset(asset)
            balance = self._balances[asset].get(holder, 0)
            if amount > balance:
                raise TransferFailedError(
                    "Burn exceeds balance", asset=asset, source=holder, amount=amount
                )
            self._balances[asset][holder] = balance - amount
            self._total_supply[asset] -= amount

    def total_supply(self, asset: str) -> int:
        with self._lock:
            self.get_asset(asset)
            return self._total_supply[asset]

    # ==================== TOKEN CONTRACT ====================

    def balance_of(self, asset: str, holder: str) -> int:
        with self._lock:
            self.get_asset(asset)
            return self._balances[asset].get(holder, 0)

    def allowance(self, asset: str, owner: str, spender: str) -> int:
        with self._lock:
            self.get_asset(asset)
            return self._allowances[asset].get((owner, spender), 0)

    def approve(self, asset: str, owner: str, spender: str, amount: int) -> None:
        require_address(owner, action="approve", field_name="owner")
        require_address(spender, action="approve", field_name="spender")
        require_amount(amount, action="approve")
        with self._lock:
            self.get_asset(asset)
            self._allowances[asset][(owner, spender)] = amount

    def transfer(self, asset: str, sender: str, recipient: str, amount: int) -> None:
        with self._lock:
            delivered, hooks = self._move(asset, sender, recipient, amount)
        self._run_hooks(hooks, asset, sender, recipient, delivered)

    def transfer_from(
        self, asset: str, spender: str, owner: str, recipient: str, amount: int
    ) -> None:
        with self._lock:
            self.get_asset(asset)
            allowed = self._allowances[asset].get((owner, spender), 0)
            if amount > allowed:
                raise TransferFailedError(
                    f"Allowance {allowed} below requested {amount}",
                    asset=asset,
                    source=owner,
                    destination=recipient,
                    amount=amount,
                )
            delivered, hooks = self._move(asset, owner, recipient, amount)
            self._allowances[asset][(owner, spender)] = allowed - amount
        self._run_hooks(hooks, asset, owner, recipient, delivered)

    def _move(
        self, asset: str, sender: str, recipient: str, amount: int
    ) -> tuple[int, list[TransferHook]]:
        """Apply a transfer to the balances. Caller must hold the lock."""
        require_amount(amount, action="transfer")
        if not is_valid_address(recipient):
            raise TransferFailedError(
                f"Invalid recipient: {recipient!r}", asset=asset, source=sender, amount=amount
            )

        config = self.get_asset(asset)
        if config.paused:
            raise TransferFailedError(
                f"Transfers of {asset} are paused",
                asset=asset,
                source=sender,
                destination=recipient,
                amount=amount,
            )

        moved = amount
        if config.max_transfer is not None:
            moved = min(moved, config.max_transfer)

        balances = self._balances[asset]
        balance = balances.get(sender, 0)
        if moved > balance:
            raise TransferFailedError(
                f"Balance {balance} below requested {moved}",
                asset=asset,
                source=sender,
                destination=recipient,
                amount=amount,
            )

        fee = moved * config.transfer_fee_bps // BPS_DENOMINATOR
        delivered = moved - fee

        balances[sender] = balance - moved
        balances[recipient] = balances.get(recipient, 0) + delivered
        self._total_supply[asset] -= fee

        if moved != amount or fee:
            logger.debug(
                "Non-standard transfer of %s: requested=%d moved=%d delivered=%d",
                asset, amount, moved, delivered
            )

        return delivered, list(self._hooks[asset])

    @staticmethod
    def _run_hooks(
        hooks: list[TransferHook], asset: str, sender: str, recipient: str, delivered: int
    ) -> None:
        for hook in hooks:
            hook(asset, sender, recipient, delivered)

    # ==================== ROLLBACK ====================

    @contextmanager
    def atomic(self):
        """
        Hold the ledger for the whole scope and restore every balance,
        allowance and supply figure if the scope raises.

        Re-entrant: nested scopes roll back independently.
        """
        with self._lock:
            saved = self.snapshot()
            try:
                yield
            except BaseException:
                self.restore(saved)
                raise

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                "balances": copy.deepcopy(self._balances),
                "allowances": copy.deepcopy(self._allowances),
                "total_supply": dict(self._total_supply),
            }

    def restore(self, snapshot: Any) -> None:
        if snapshot is None:
            return
        with self._lock:
            self._balances = copy.deepcopy(snapshot["balances"])
            self._allowances = copy.deepcopy(snapshot["allowances"])
            self._total_supply = dict(snapshot["total_supply"])

    # ==================== PERSISTENCE ====================

    def export_state(self) -> dict[str, Any]:
        """
        JSON-safe copy of assets, balances, allowances and supply.

        Transfer hooks are runtime behaviour and are not included.
        """
        with self._lock:
            return {
                "assets": [config.to_dict() for config in self._assets.values()],
                "balances": copy.deepcopy(self._balances),
                "allowances": {
                    asset: [[owner, spender, amount] for (owner, spender), amount in allowed.items()]
                    for asset, allowed in self._allowances.items()
                },
                "total_supply": dict(self._total_supply),
            }

    def import_state(self, state: dict[str, Any]) -> bool:
        """
        Restore an exported ledger into this one.

        Only an empty ledger is populated; a ledger that already holds
        assets is the authority and is left untouched.
        """
        with self._lock:
            if self._assets:
                logger.info("Ledger already holds %d assets, not importing", len(self._assets))
                return False

            for record in state.get("assets", []):
                config = AssetConfig(**record)
                asset_id = config.asset_id
                self._assets[asset_id] = config
                self._balances[asset_id] = {
                    holder: int(amount)
                    for holder, amount in state.get("balances", {}).get(asset_id, {}).items()
                }
                self._allowances[asset_id] = {
                    (owner, spender): int(amount)
                    for owner, spender, amount in state.get("allowances", {}).get(asset_id, [])
                }
                self._total_supply[asset_id] = int(state.get("total_supply", {}).get(asset_id, 0))
                self._hooks[asset_id] = []

            logger.info("Imported %d assets into the ledger", len(self._assets))
            return bool(self._assets)


class TokenGateway:
    """
    Pool-facing token adapter.

    All amounts returned are measured balance deltas. Ledger failures are
    surfaced as TransferFailedError; pool errors raised from token
    callbacks propagate unchanged.
    """

    def __init__(self, ledger: TokenLedger, holder: str):
        self.ledger = ledger
        self.holder = require_address(holder, action="gateway", field_name="holder")

    def balance_of(self, asset: str, holder: str | None = None) -> int:
        return self.ledger.balance_of(asset, holder or self.holder)

    def transfer_in(self, asset: str, source: str, amount: int) -> int:
        """Pull `amount` from `source` (needs allowance). Returns tokens received."""
        if amount == 0:
            return 0
        before = self.balance_of(asset)
        self._call(
            self.ledger.transfer_from, asset, self.holder, source, self.holder, amount,
            source=source, destination=self.holder
        )
        received = self.balance_of(asset) - before
        if received < 0:
            raise TransferFailedError(
                "Holder balance decreased during a pull",
                asset=asset, source=source, destination=self.holder, amount=amount
            )
        return received

    def transfer_out(self, asset: str, destination: str, amount: int) -> int:
        """Push `amount` to `destination`. Returns tokens that left the holder."""
        if amount == 0:
            return 0
        before = self.balance_of(asset)
        self._call(
            self.ledger.transfer, asset, self.holder, destination, amount,
            source=self.holder, destination=destination
        )
        return max(before - self.balance_of(asset), 0)

    def route(self, asset: str, source: str, destination: str, amount: int) -> int:
        """Move `amount` from `source` straight to `destination` using our allowance."""
        if amount == 0:
            return 0
        before = self.balance_of(asset, destination)
        self._call(
            self.ledger.transfer_from, asset, self.holder, source, destination, amount,
            source=source, destination=destination
        )
        return max(self.balance_of(asset, destination) - before, 0)

    def _call(self, func, *args, source: str, destination: str):
        asset, amount = args[0], args[-1]
        try:
            return func(*args)
        except StakingPoolError:
            raise
        except Exception as e:
            raise TransferFailedError(
                f"Token ledger call failed: {e}",
                asset=asset,
                source=source,
                destination=destination,
                amount=amount,
                cause=e
            ) from e
