"""
Tests for the StakeWindow REST API.

Tests cover:
- Pool creation, lookup and enumeration
- Staking and owner operations over HTTP
- Error-to-status mapping for rejected operations
- API key authentication
- Token ledger endpoints
- Persistence after mutations
- Health and metrics endpoints
"""

import pytest

from conftest import ADMIN, ALICE, BOB, DAY, END, E18, OWNER, REWARDS, STAKE, START
from config import StakingConfig
from monitoring import metrics
from storage.json_file import JSONFileStorage
from storage.memory import MemoryStorage


@pytest.fixture
def api_pool(funded_pool):
    """The funded pool, addressed through the API."""
    return funded_pool


def post(client, path, body, headers=None):
    return client.post(path, json=body, headers=headers or {})


# ============================================================
# Registry Endpoints
# ============================================================

class TestPoolRegistryEndpoints:
    """Tests for pool creation and enumeration."""

    def test_create_pool(self, flask_client, registry):
        response = post(flask_client, "/pools", {
            "owner": OWNER,
            "deposit_asset": "STAKE",
            "reward_asset": "RWD",
            "start_time": START,
            "end_time": END,
        })

        assert response.status_code == 201
        data = response.get_json()
        assert data["owner"] == OWNER
        assert data["status"] == "pending"
        assert data["pool_id"] in registry.pools

    def test_create_pool_missing_field(self, flask_client):
        response = post(flask_client, "/pools", {"owner": OWNER})
        assert response.status_code == 400
        assert "Missing required field" in response.get_json()["error"]

    def test_create_pool_invalid_schedule(self, flask_client):
        response = post(flask_client, "/pools", {
            "owner": OWNER,
            "deposit_asset": "STAKE",
            "reward_asset": "RWD",
            "start_time": START,
            "end_time": START,
        })

        assert response.status_code == 400
        assert response.get_json()["code"] == "InvalidSchedule"

    def test_list_pools(self, flask_client, api_pool):
        response = flask_client.get("/pools")
        data = response.get_json()

        assert response.status_code == 200
        assert data["count"] == 1
        assert data["pools"][0]["pool_id"] == api_pool.pool_id

    def test_list_pools_by_status(self, flask_client, api_pool):
        assert flask_client.get("/pools?status=active").get_json()["count"] == 0
        assert flask_client.get("/pools?status=pending").get_json()["count"] == 1

    def test_list_pools_bad_status(self, flask_client):
        assert flask_client.get("/pools?status=sleeping").status_code == 400

    def test_get_pool(self, flask_client, api_pool):
        response = flask_client.get(f"/pools/{api_pool.pool_id}")
        assert response.status_code == 200
        assert response.get_json()["remaining_rewards"] == REWARDS

    def test_get_unknown_pool(self, flask_client):
        response = flask_client.get("/pools/0xmissing")
        assert response.status_code == 404
        assert response.get_json()["code"] == "PoolNotFound"

    def test_owner_pools(self, flask_client, api_pool):
        data = flask_client.get(f"/owners/{OWNER}/pools").get_json()
        assert data["pools"] == [api_pool.pool_id]

    def test_registry_stats(self, flask_client, api_pool):
        data = flask_client.get("/registry/stats").get_json()
        assert data["pools"]["total"] == 1


# ============================================================
# Staking Endpoints
# ============================================================

class TestStakingEndpoints:
    """Tests for deposit, withdraw, harvest and emergency withdraw."""

    def test_deposit_before_start(self, flask_client, api_pool):
        response = post(flask_client, f"/pools/{api_pool.pool_id}/deposit", {
            "user": ALICE, "amount": STAKE,
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "NotAllowed"

    def test_full_cycle(self, flask_client, api_pool, clock, ledger):
        pool_id = api_pool.pool_id
        clock.warp(START)

        response = post(flask_client, f"/pools/{pool_id}/deposit", {
            "user": ALICE, "amount": str(STAKE),
        })
        assert response.status_code == 200
        assert response.get_json()["amount_received"] == STAKE

        clock.warp(START + DAY // 2)
        pending = flask_client.get(f"/pools/{pool_id}/pending/{ALICE}").get_json()
        assert pending["pending_reward"] == 50_000 * E18

        response = post(flask_client, f"/pools/{pool_id}/harvest", {"user": ALICE})
        assert response.get_json()["reward_paid"] == 50_000 * E18

        clock.warp(END)
        response = post(flask_client, f"/pools/{pool_id}/withdraw", {
            "user": ALICE, "amount": STAKE,
        })
        assert response.status_code == 200
        assert ledger.balance_of("RWD", ALICE) == REWARDS

        position = flask_client.get(f"/pools/{pool_id}/positions/{ALICE}").get_json()
        assert position["staked_amount"] == 0

    def test_withdraw_more_than_staked(self, flask_client, api_pool, clock):
        clock.warp(START)
        response = post(flask_client, f"/pools/{api_pool.pool_id}/withdraw", {
            "user": ALICE, "amount": 1,
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "InsufficientStake"

    def test_transfer_failure_is_bad_gateway(self, flask_client, api_pool, clock, ledger):
        clock.warp(START)
        ledger.set_paused("STAKE", True)

        response = post(flask_client, f"/pools/{api_pool.pool_id}/deposit", {
            "user": ALICE, "amount": STAKE,
        })

        assert response.status_code == 502
        assert response.get_json()["category"] == "upstream"

    def test_invalid_amounts(self, flask_client, api_pool, clock):
        clock.warp(START)
        path = f"/pools/{api_pool.pool_id}/deposit"

        assert post(flask_client, path, {"user": ALICE, "amount": -5}).status_code == 400
        assert post(flask_client, path, {"user": ALICE, "amount": "12abc"}).status_code == 400
        assert post(flask_client, path, {"user": ALICE, "amount": True}).status_code == 400
        assert post(flask_client, path, {"user": ALICE, "amount": 1.5}).status_code == 400

    def test_emergency_withdraw(self, flask_client, api_pool, clock, ledger):
        clock.warp(START)
        api_pool.deposit(ALICE, STAKE)
        clock.warp(START + DAY // 2)

        response = post(flask_client, f"/pools/{api_pool.pool_id}/emergency-withdraw", {
            "user": ALICE,
        })

        assert response.status_code == 200
        assert response.get_json()["reward_forfeited"] == 50_000 * E18
        assert ledger.balance_of("STAKE", ALICE) == STAKE

    def test_sync(self, flask_client, api_pool, clock):
        clock.warp(START)
        api_pool.deposit(ALICE, STAKE)
        clock.advance(60)

        response = post(flask_client, f"/pools/{api_pool.pool_id}/sync", {})
        assert response.get_json()["last_accrual_time"] == START + 60

    def test_events(self, flask_client, api_pool, clock):
        clock.warp(START)
        api_pool.deposit(ALICE, STAKE)
        api_pool.deposit(BOB, STAKE)

        data = flask_client.get(
            f"/pools/{api_pool.pool_id}/events?event_type=Deposit&user={BOB}"
        ).get_json()

        assert data["count"] == 1
        assert data["events"][0]["data"]["user"] == BOB

        limited = flask_client.get(f"/pools/{api_pool.pool_id}/events?limit=1").get_json()
        assert limited["count"] == 1


# ============================================================
# Owner Endpoints
# ============================================================

class TestOwnerEndpoints:
    """Tests for owner-restricted routes."""

    def test_add_rewards_non_owner(self, flask_client, api_pool):
        response = post(flask_client, f"/pools/{api_pool.pool_id}/rewards", {
            "caller": ALICE, "amount": 1,
        })
        assert response.status_code == 403
        assert response.get_json()["code"] == "NotOwner"

    def test_add_and_withdraw_rewards(self, flask_client, api_pool, fund, ledger):
        fund("RWD", OWNER, api_pool.pool_id, 5_000)

        response = post(flask_client, f"/pools/{api_pool.pool_id}/rewards", {
            "caller": OWNER, "amount": 5_000,
        })
        assert response.get_json()["remaining_rewards"] == REWARDS + 5_000

        response = post(flask_client, f"/pools/{api_pool.pool_id}/rewards/withdraw", {
            "caller": OWNER, "amount": 5_000,
        })
        assert response.status_code == 200
        assert ledger.balance_of("RWD", OWNER) == 5_000

    def test_withdraw_rewards_too_much(self, flask_client, api_pool):
        response = post(flask_client, f"/pools/{api_pool.pool_id}/rewards/withdraw", {
            "caller": OWNER, "amount": REWARDS + 1,
        })
        assert response.status_code == 400
        assert response.get_json()["code"] == "InsufficientRewards"

    def test_set_schedule(self, flask_client, api_pool):
        response = post(flask_client, f"/pools/{api_pool.pool_id}/schedule", {
            "caller": OWNER, "end_time": END + DAY,
        })
        assert response.status_code == 200
        assert response.get_json()["new_end_time"] == END + DAY

    def test_set_schedule_after_end(self, flask_client, api_pool, clock):
        clock.warp(END)
        response = post(flask_client, f"/pools/{api_pool.pool_id}/schedule", {
            "caller": OWNER, "end_time": END + DAY,
        })
        assert response.status_code == 409
        assert response.get_json()["code"] == "PoolEnded"

    def test_emergency_close(self, flask_client, api_pool):
        path = f"/pools/{api_pool.pool_id}/emergency-close"

        response = post(flask_client, path, {"caller": OWNER})
        assert response.status_code == 200
        assert response.get_json()["swept"] == REWARDS

        assert post(flask_client, path, {"caller": OWNER}).status_code == 409

    def test_ownership(self, flask_client, api_pool, registry):
        response = post(flask_client, f"/pools/{api_pool.pool_id}/ownership", {
            "caller": OWNER, "new_owner": BOB,
        })
        assert response.status_code == 200
        assert registry.get_pools_by_owner(BOB) == [api_pool.pool_id]

        response = post(flask_client, f"/pools/{api_pool.pool_id}/ownership/renounce", {
            "caller": BOB,
        })
        assert response.get_json()["new_owner"] is None


# ============================================================
# Token Endpoints
# ============================================================

class TestTokenEndpoints:
    """Tests for the token ledger routes."""

    def test_list_assets(self, flask_client):
        data = flask_client.get("/tokens").get_json()
        assert {a["asset_id"] for a in data["assets"]} == {"STAKE", "RWD"}

    def test_register_asset_admin_only(self, flask_client):
        body = {"caller": ALICE, "asset_id": "NEW"}
        assert post(flask_client, "/tokens", body).status_code == 403

        body["caller"] = ADMIN
        response = post(flask_client, "/tokens", body)
        assert response.status_code == 201
        assert response.get_json()["symbol"] == "NEW"

    def test_mint_and_balance(self, flask_client):
        response = post(flask_client, "/tokens/RWD/mint", {
            "caller": ADMIN, "to": ALICE, "amount": "1000",
        })
        assert response.status_code == 200

        data = flask_client.get(f"/tokens/RWD/balances/{ALICE}").get_json()
        assert data["balance"] == 1_000

    def test_mint_non_admin(self, flask_client):
        response = post(flask_client, "/tokens/RWD/mint", {
            "caller": ALICE, "to": ALICE, "amount": 1,
        })
        assert response.status_code == 403

    def test_approve_and_transfer(self, flask_client, ledger):
        ledger.mint("STAKE", ALICE, 100)

        post(flask_client, "/tokens/STAKE/approve", {
            "owner": ALICE, "spender": BOB, "amount": 40,
        })
        allowance = flask_client.get(f"/tokens/STAKE/allowances/{ALICE}/{BOB}").get_json()
        assert allowance["allowance"] == 40

        response = post(flask_client, "/tokens/STAKE/transfer", {
            "sender": ALICE, "recipient": BOB, "amount": 30,
        })
        assert response.get_json()["recipient_balance"] == 30

    def test_transfer_insufficient_balance(self, flask_client):
        response = post(flask_client, "/tokens/STAKE/transfer", {
            "sender": ALICE, "recipient": BOB, "amount": 1,
        })
        assert response.status_code == 502


# ============================================================
# Authentication
# ============================================================

class TestAuthentication:
    """API key checks on mutating routes."""

    @pytest.fixture
    def secured_client(self, registry, ledger):
        from api import create_app
        from api.state import services

        config = StakingConfig(admin=ADMIN, require_auth=True, api_key="test-api-key-12345")
        app = create_app(registry=registry, ledger=ledger, config=config)
        app.config["TESTING"] = True
        yield app.test_client()
        services.reset()

    def test_missing_key(self, secured_client):
        response = post(secured_client, "/tokens/RWD/mint", {"caller": ADMIN, "to": ALICE, "amount": 1})
        assert response.status_code == 401

    def test_wrong_key(self, secured_client):
        response = post(
            secured_client, "/tokens/RWD/mint",
            {"caller": ADMIN, "to": ALICE, "amount": 1},
            headers={"X-API-Key": "wrong"},
        )
        assert response.status_code == 403

    def test_valid_key(self, secured_client, test_auth_headers):
        response = post(
            secured_client, "/tokens/RWD/mint",
            {"caller": ADMIN, "to": ALICE, "amount": 1},
            headers=test_auth_headers,
        )
        assert response.status_code == 200

    def test_reads_need_no_key(self, secured_client):
        assert secured_client.get("/pools").status_code == 200

    def test_server_key_missing(self, registry, ledger):
        from api import create_app
        from api.state import services

        config = StakingConfig(require_auth=True, api_key=None)
        client = create_app(registry=registry, ledger=ledger, config=config).test_client()
        try:
            response = post(client, "/pools/0xany/sync", {}, headers={"X-API-Key": "anything"})
            assert response.status_code == 503
        finally:
            services.reset()


# ============================================================
# Persistence and Monitoring
# ============================================================

class TestPersistenceAndHealth:
    """Mutations are saved; health and metrics are exposed."""

    def test_mutation_persisted(self, registry, ledger, test_config, api_pool, clock):
        from api import create_app
        from api.state import services

        storage = MemoryStorage()
        client = create_app(
            registry=registry, ledger=ledger, storage=storage, config=test_config
        ).test_client()
        try:
            clock.warp(START)
            post(client, f"/pools/{api_pool.pool_id}/deposit", {"user": ALICE, "amount": STAKE})

            saved = storage.get_pool_record(api_pool.pool_id)
            assert saved["total_staked"] == STAKE
            assert storage.get_position_records(api_pool.pool_id)[0]["user"] == ALICE
        finally:
            services.reset()

    def test_app_loads_from_storage(self, registry, ledger, test_config, api_pool, clock):
        from api import create_app
        from api.state import services

        storage = MemoryStorage()
        registry.save(storage)
        try:
            client = create_app(
                ledger=ledger, storage=storage, config=test_config, clock=clock
            ).test_client()
            data = client.get(f"/pools/{api_pool.pool_id}").get_json()
            assert data["remaining_rewards"] == REWARDS
        finally:
            services.reset()

    def test_restart_keeps_principal_withdrawable(
        self, registry, ledger, test_config, api_pool, clock, tmp_path
    ):
        """A fresh process restores ledger balances along with the pools."""
        from api import create_app
        from api.state import services

        storage = JSONFileStorage(str(tmp_path / "staking.json"))
        client = create_app(
            registry=registry, ledger=ledger, storage=storage, config=test_config
        ).test_client()
        clock.warp(START)
        post(client, f"/pools/{api_pool.pool_id}/deposit", {"user": ALICE, "amount": STAKE})
        services.reset()

        try:
            restarted = create_app(storage=storage, config=test_config, clock=clock).test_client()
            assert services.ledger is not ledger
            assert services.ledger.balance_of("STAKE", api_pool.pool_id) == STAKE

            response = post(restarted, f"/pools/{api_pool.pool_id}/emergency-withdraw", {
                "user": ALICE,
            })

            assert response.status_code == 200
            assert response.get_json()["amount_sent"] == STAKE
            balance = restarted.get(f"/tokens/STAKE/balances/{ALICE}").get_json()["balance"]
            assert balance == STAKE
        finally:
            services.reset()

    def test_token_mutations_persisted(self, registry, ledger, test_config):
        """Ledger changes made through the token routes are saved too."""
        from api import create_app
        from api.state import services

        storage = MemoryStorage()
        client = create_app(
            registry=registry, ledger=ledger, storage=storage, config=test_config
        ).test_client()
        try:
            post(client, "/tokens/STAKE/mint", {"caller": ADMIN, "to": BOB, "amount": 42})

            assert storage.load_state()["ledger"]["balances"]["STAKE"][BOB] == 42
            assert metrics.get_histogram("registry_save").count == 1
        finally:
            services.reset()

    def test_health(self, flask_client):
        data = flask_client.get("/health").get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["storage"]["status"] == "disabled"

    def test_liveness_and_readiness(self, flask_client):
        assert flask_client.get("/health/live").status_code == 200
        assert flask_client.get("/health/ready").get_json()["status"] == "ready"

    def test_metrics(self, flask_client, api_pool, clock):
        clock.warp(START)
        post(flask_client, f"/pools/{api_pool.pool_id}/deposit", {"user": ALICE, "amount": STAKE})

        text = flask_client.get("/metrics").get_data(as_text=True)
        assert 'stakewindow_pool_operations_total{operation="deposit"} 1' in text
        assert "stakewindow_pools_total 1" in text

        data = flask_client.get("/metrics/json").get_json()
        assert data["gauges"]["pool_total_staked"][f'pool_id="{api_pool.pool_id}"'] == STAKE

    def test_request_id_header(self, flask_client):
        response = flask_client.get("/health", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"
