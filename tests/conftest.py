"""
Pytest configuration and shared fixtures for StakeWindow tests.

This module provides shared fixtures and test configuration including:
- A manually advanced clock and an in-memory token ledger
- A registry with admin, fee collector and recovery addresses
- A pool whose window opens shortly after the fixed test time
- Flask app setup with authentication disabled
- Metrics reset between tests
"""

import os
import sys

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

# Set up test environment before any imports
os.environ["STAKING_API_KEY"] = "test-api-key-12345"
os.environ["STAKING_REQUIRE_AUTH"] = "false"
os.environ["STORAGE_BACKEND"] = "memory"

from config import StakingConfig
from monitoring import metrics
from pool_clock import ManualClock
from pool_registry import PoolRegistry
from token_ledger import InMemoryTokenLedger

T0 = 1_700_000_000
DAY = 86_400
E18 = 10**18

OWNER = "0xowner"
ALICE = "0xalice"
BOB = "0xbob"
ADMIN = "0xadmin"
FEE_COLLECTOR = "0xfeecollector"
RECOVERY = "0xrecovery"

START = T0 + 100
END = START + DAY

REWARDS = 100_000 * E18
STAKE = 1_000 * E18


@pytest.fixture(autouse=True)
def reset_metrics():
    """Each test starts from empty counters and gauges."""
    metrics.reset()
    yield


@pytest.fixture
def clock():
    """Clock frozen at T0 until a test moves it."""
    return ManualClock(start=T0)


@pytest.fixture
def ledger():
    """Ledger with a deposit asset (STAKE) and a reward asset (RWD)."""
    ledger = InMemoryTokenLedger()
    ledger.register_asset("STAKE")
    ledger.register_asset("RWD")
    return ledger


@pytest.fixture
def registry(ledger, clock):
    return PoolRegistry(
        ledger,
        clock=clock,
        admin=ADMIN,
        fee_collector=FEE_COLLECTOR,
        emergency_recovery=RECOVERY,
    )


@pytest.fixture
def pool(registry):
    """Pool with a one-day window starting 100 seconds after T0."""
    return registry.create_pool(OWNER, "STAKE", "RWD", START, END)


@pytest.fixture
def fund(ledger):
    """Mint `amount` of `asset` to `holder` and approve `spender` for it."""
    def _fund(asset, holder, spender, amount):
        ledger.mint(asset, holder, amount)
        ledger.approve(asset, holder, spender, ledger.allowance(asset, holder, spender) + amount)
    return _fund


@pytest.fixture
def funded_pool(pool, fund):
    """
    Pool holding REWARDS in its budget, with ALICE and BOB each holding
    STAKE deposit tokens approved to it.
    """
    fund("RWD", OWNER, pool.pool_id, REWARDS)
    pool.add_rewards(OWNER, REWARDS)
    fund("STAKE", ALICE, pool.pool_id, STAKE)
    fund("STAKE", BOB, pool.pool_id, STAKE)
    return pool


@pytest.fixture
def test_config():
    """Configuration with authentication disabled."""
    return StakingConfig(admin=ADMIN, require_auth=False, api_key="test-api-key-12345")


@pytest.fixture
def flask_app(registry, ledger, test_config):
    """Create Flask test app around the test registry."""
    from api import create_app
    from api.state import services

    app = create_app(registry=registry, ledger=ledger, config=test_config)
    app.config['TESTING'] = True
    yield app
    services.reset()


@pytest.fixture
def flask_client(flask_app):
    """Create Flask test client."""
    return flask_app.test_client()


@pytest.fixture
def test_auth_headers():
    """Headers for authenticated requests."""
    return {
        "Content-Type": "application/json",
        "X-API-Key": "test-api-key-12345"
    }
