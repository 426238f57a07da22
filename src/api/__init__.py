"""
StakeWindow API Package.

This package contains the modular Flask blueprints for the StakeWindow API.

Blueprints:
- pools: Registry, staking and owner operations on pools
- tokens: Balances, approvals and admin minting on the token ledger
- monitoring: Health probes and metrics export
"""

import logging

from flask import Flask

from api.monitoring import monitoring_bp
from api.pools import pools_bp
from api.state import services
from api.tokens import tokens_bp
from config import StakingConfig
from monitoring import setup_request_logging
from pool_registry import PoolRegistry
from token_ledger import InMemoryTokenLedger

logger = logging.getLogger(__name__)

# List of all blueprints for registration
# Tuple format: (blueprint, url_prefix)
ALL_BLUEPRINTS = [
    (pools_bp, ''),
    (tokens_bp, ''),
    (monitoring_bp, ''),
]


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    for blueprint, url_prefix in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint, url_prefix=url_prefix)


def create_app(
    registry: PoolRegistry | None = None,
    ledger=None,
    storage=None,
    config: StakingConfig | None = None,
    clock=None,
) -> Flask:
    """
    Build the Flask application.

    Args:
        registry: Existing registry (otherwise loaded from storage or created)
        ledger: Token ledger (defaults to the registry's, or a new in-memory one)
        storage: Optional backend; mutations are persisted when set
        config: Runtime configuration (defaults to StakingConfig.from_env())
        clock: Time source for a newly created registry

    Returns:
        Configured Flask app
    """
    config = config or StakingConfig.from_env()

    if registry is not None:
        ledger = ledger or registry.ledger
    else:
        ledger = ledger or InMemoryTokenLedger()
        if storage is not None:
            registry = PoolRegistry.load(storage, ledger, clock, **config.registry_kwargs())
        else:
            registry = PoolRegistry(ledger=ledger, clock=clock, **config.registry_kwargs())

    services.registry = registry
    services.ledger = ledger
    services.storage = storage
    services.config = config

    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    register_blueprints(app)
    setup_request_logging(app)

    logger.info(
        "StakeWindow API initialized with %d pools (storage: %s)",
        len(registry.pools),
        type(storage).__name__ if storage is not None else "none",
    )
    return app


def run_server(host: str = "0.0.0.0", port: int = 5000, debug: bool = False) -> None:
    """Load configuration from the environment and serve the API."""
    from dotenv import load_dotenv

    from monitoring import configure_logging
    from storage import get_storage_backend

    load_dotenv()
    config = StakingConfig.from_env()
    configure_logging(level=config.log_level)

    storage = get_storage_backend()
    app = create_app(storage=storage, config=config)
    app.run(host=host, port=port, debug=debug)
