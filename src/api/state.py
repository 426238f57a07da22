"""
Shared state for the StakeWindow API.

This module holds the instances shared by every blueprint: the pool
registry, the token ledger it settles against, the optional storage
backend and the runtime configuration. create_app() populates it.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any

from config import StakingConfig
from monitoring.middleware import timed
from pool_registry import PoolRegistry
from token_ledger import TokenLedger

logger = logging.getLogger(__name__)


@dataclass
class ServiceState:
    """
    Centralized holder for the services behind the API.

    Storage is optional; without it the registry lives in memory only.
    """
    registry: PoolRegistry | None = None
    ledger: TokenLedger | None = None
    storage: Any = None
    config: StakingConfig | None = None

    def __post_init__(self):
        # Serializes saves so two requests never interleave writes
        self._persist_lock = threading.Lock()

    def is_ready(self) -> bool:
        return self.registry is not None and self.ledger is not None

    def persist(self) -> None:
        """Save the registry and ledger after a successful mutation, if storage is configured."""
        if self.storage is None or self.registry is None:
            return
        self._save()

    @timed("registry_save")
    def _save(self) -> None:
        with self._persist_lock:
            self.registry.save(self.storage)

    def reset(self) -> None:
        self.registry = None
        self.ledger = None
        self.storage = None
        self.config = None


# Global service state instance
services = ServiceState()
