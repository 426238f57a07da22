"""
StakeWindow configuration.

All runtime settings come from environment variables (optionally loaded
from a .env file by the entry points):

    STAKING_ADMIN               Registry admin address
    STAKING_FEE_COLLECTOR       Receives add_rewards fees
    STAKING_EMERGENCY_RECOVERY  Receives budgets swept by emergency close
    STAKING_DEFAULT_FEE_BPS     Default reward fee (0..500, default 0)
    STORAGE_BACKEND             json | postgresql | memory (default json)
    STAKING_DATA_FILE           JSON state file (default data/staking_state.json)
    DATABASE_URL                PostgreSQL connection string
    STAKING_API_KEY             API key for mutating HTTP routes
    STAKING_REQUIRE_AUTH        Require the API key (default true)
    LOG_LEVEL                   Logging level (default INFO)
"""

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class StakingConfig:
    """Runtime configuration for the registry, storage and HTTP API."""

    admin: str | None = None
    fee_collector: str | None = None
    emergency_recovery: str | None = None
    default_fee_bps: int = 0
    storage_backend: str = "json"
    data_file: str = "data/staking_state.json"
    database_url: str | None = None
    api_key: str | None = None
    require_auth: bool = True
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "StakingConfig":
        """Create configuration from environment variables."""
        return cls(
            admin=os.getenv("STAKING_ADMIN") or None,
            fee_collector=os.getenv("STAKING_FEE_COLLECTOR") or None,
            emergency_recovery=os.getenv("STAKING_EMERGENCY_RECOVERY") or None,
            default_fee_bps=int(os.getenv("STAKING_DEFAULT_FEE_BPS", "0")),
            storage_backend=os.getenv("STORAGE_BACKEND", "json").lower(),
            data_file=os.getenv("STAKING_DATA_FILE", "data/staking_state.json"),
            database_url=os.getenv("DATABASE_URL") or None,
            api_key=os.getenv("STAKING_API_KEY") or None,
            require_auth=_env_bool("STAKING_REQUIRE_AUTH", True),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )

    def registry_kwargs(self) -> dict:
        """Keyword arguments for PoolRegistry()."""
        return {
            "admin": self.admin,
            "fee_collector": self.fee_collector,
            "emergency_recovery": self.emergency_recovery,
            "default_fee_bps": self.default_fee_bps,
        }

    def to_dict(self) -> dict:
        """Configuration with secrets masked."""
        return {
            "admin": self.admin,
            "fee_collector": self.fee_collector,
            "emergency_recovery": self.emergency_recovery,
            "default_fee_bps": self.default_fee_bps,
            "storage_backend": self.storage_backend,
            "data_file": self.data_file,
            "database_url": "configured" if self.database_url else "not set",
            "api_key": "configured" if self.api_key else "not set",
            "require_auth": self.require_auth,
            "log_level": self.log_level,
        }
