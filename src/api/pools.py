"""
StakeWindow - Pools API Blueprint

REST API endpoints for staking pools.
Provides access to:
- Pool creation and enumeration (registry)
- Staking: deposit, withdraw, harvest, emergency withdraw
- Owner operations: reward top-ups and withdrawals, schedule edits,
  emergency close, ownership transfer
- Positions, pending rewards and the per-pool event trail
"""

from flask import Blueprint, jsonify, request

from api.state import services
from api.utils import (
    DEFAULT_PAGE_LIMIT,
    get_json_body,
    handle_pool_errors,
    parse_amount,
    require_api_key,
    require_services,
    validate_json_schema,
    validate_limit,
)
from monitoring import counted
from pool_events import PoolEventType
from staking_pool import PoolStatus

pools_bp = Blueprint("pools", __name__)


def _commit(result, status: int = 200):
    services.persist()
    return jsonify(result), status


# =============================================================================
# Registry Endpoints
# =============================================================================


@pools_bp.route("/pools", methods=["GET"])
@require_services
@handle_pool_errors
def list_pools():
    """
    List pools.

    Query params:
        status: pending | active | ended | emergency_closed
        owner: Owner address
    """
    status = request.args.get("status")
    owner = request.args.get("owner")
    pools = services.registry.list_pools(
        status=PoolStatus(status) if status else None,
        owner=owner,
    )
    return jsonify({"count": len(pools), "pools": pools})


@pools_bp.route("/pools", methods=["POST"])
@counted("pool_create_requests_total")
@require_api_key
@require_services
@handle_pool_errors
def create_pool():
    """
    Create a pool.

    Request body:
        {
            "owner": "0x...",
            "deposit_asset": "STAKE",
            "reward_asset": "RWD",
            "start_time": 1700000000,
            "end_time": 1700086400
        }
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={
            "owner": str,
            "deposit_asset": str,
            "reward_asset": str,
            "start_time": int,
            "end_time": int,
        },
        max_lengths={"owner": 255, "deposit_asset": 255, "reward_asset": 255},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.create_pool(
        owner=data["owner"],
        deposit_asset=data["deposit_asset"],
        reward_asset=data["reward_asset"],
        start_time=data["start_time"],
        end_time=data["end_time"],
    )
    return _commit(pool.get_pool_info(), 201)


@pools_bp.route("/pools/<pool_id>", methods=["GET"])
@require_services
@handle_pool_errors
def get_pool(pool_id: str):
    """Pool schedule, reward track and state."""
    return jsonify(services.registry.get_pool(pool_id).get_pool_info())


@pools_bp.route("/owners/<owner>/pools", methods=["GET"])
@require_services
def get_owner_pools(owner: str):
    """Pools currently owned by an address."""
    pool_ids = services.registry.get_pools_by_owner(owner)
    return jsonify({"owner": owner, "count": len(pool_ids), "pools": pool_ids})


@pools_bp.route("/registry/stats", methods=["GET"])
@require_services
def registry_stats():
    """Registry-wide statistics."""
    return jsonify(services.registry.get_statistics())


# =============================================================================
# Read-only Pool Endpoints
# =============================================================================


@pools_bp.route("/pools/<pool_id>/positions/<user>", methods=["GET"])
@require_services
@handle_pool_errors
def get_position(pool_id: str, user: str):
    """A user's stake, reward debt and pending reward."""
    return jsonify(services.registry.get_pool(pool_id).get_position(user))


@pools_bp.route("/pools/<pool_id>/pending/<user>", methods=["GET"])
@require_services
@handle_pool_errors
def get_pending_reward(pool_id: str, user: str):
    """Reward the user would receive by harvesting now."""
    pool = services.registry.get_pool(pool_id)
    return jsonify({
        "pool_id": pool_id,
        "user": user,
        "pending_reward": pool.pending_reward(user),
    })


@pools_bp.route("/pools/<pool_id>/events", methods=["GET"])
@require_services
@handle_pool_errors
def get_pool_events(pool_id: str):
    """
    Pool event trail, newest first.

    Query params:
        limit: Maximum events (default 50, max 100)
        event_type: e.g. Deposit, RewardsAdded
        user: Only events for this user
    """
    pool = services.registry.get_pool(pool_id)
    event_type = request.args.get("event_type")
    events = pool.get_events(
        limit=validate_limit(request.args.get("limit", DEFAULT_PAGE_LIMIT)),
        event_type=PoolEventType(event_type) if event_type else None,
        user=request.args.get("user"),
    )
    return jsonify({"pool_id": pool_id, "count": len(events), "events": events})


# =============================================================================
# Staking Endpoints
# =============================================================================


@pools_bp.route("/pools/<pool_id>/sync", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def sync_pool(pool_id: str):
    """Bring the reward accumulator up to date."""
    return _commit(services.registry.get_pool(pool_id).sync_accumulator())


@pools_bp.route("/pools/<pool_id>/deposit", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def deposit(pool_id: str):
    """
    Stake tokens.

    Request body:
        {"user": "0x...", "amount": 1000}
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"user": str, "amount": (int, str)})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.deposit(data["user"], parse_amount(data["amount"])))


@pools_bp.route("/pools/<pool_id>/withdraw", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def withdraw(pool_id: str):
    """
    Unstake tokens and collect pending rewards.

    Request body:
        {"user": "0x...", "amount": 1000}
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"user": str, "amount": (int, str)})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.withdraw(data["user"], parse_amount(data["amount"])))


@pools_bp.route("/pools/<pool_id>/harvest", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def harvest(pool_id: str):
    """Collect pending rewards. Request body: {"user": "0x..."}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"user": str})
    if not is_valid:
        return jsonify({"error": error}), 400

    return _commit(services.registry.get_pool(pool_id).harvest(data["user"]))


@pools_bp.route("/pools/<pool_id>/emergency-withdraw", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def emergency_withdraw(pool_id: str):
    """Withdraw the full stake, forfeiting pending rewards. Body: {"user": "0x..."}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"user": str})
    if not is_valid:
        return jsonify({"error": error}), 400

    return _commit(services.registry.get_pool(pool_id).emergency_withdraw(data["user"]))


# =============================================================================
# Owner Endpoints
# =============================================================================


@pools_bp.route("/pools/<pool_id>/rewards", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def add_rewards(pool_id: str):
    """
    Top up the reward budget (owner only).

    Request body:
        {"caller": "0x...", "amount": "100000000000000000000000"}
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str, "amount": (int, str)})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.add_rewards(data["caller"], parse_amount(data["amount"])))


@pools_bp.route("/pools/<pool_id>/rewards/withdraw", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def withdraw_rewards(pool_id: str):
    """Remove undistributed rewards (owner only). Body: {"caller", "amount"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str, "amount": (int, str)})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.withdraw_rewards(data["caller"], parse_amount(data["amount"])))


@pools_bp.route("/pools/<pool_id>/schedule", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def set_schedule(pool_id: str):
    """Move the pool's end time (owner only). Body: {"caller", "end_time"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str, "end_time": int})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.set_schedule(data["caller"], data["end_time"]))


@pools_bp.route("/pools/<pool_id>/emergency-close", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def emergency_close(pool_id: str):
    """Latch the pool closed and sweep remaining rewards. Body: {"caller"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str})
    if not is_valid:
        return jsonify({"error": error}), 400

    return _commit(services.registry.get_pool(pool_id).activate_emergency_close(data["caller"]))


@pools_bp.route("/pools/<pool_id>/ownership", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def transfer_ownership(pool_id: str):
    """Transfer pool ownership. Body: {"caller", "new_owner"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str, "new_owner": str})
    if not is_valid:
        return jsonify({"error": error}), 400

    pool = services.registry.get_pool(pool_id)
    return _commit(pool.transfer_ownership(data["caller"], data["new_owner"]))


@pools_bp.route("/pools/<pool_id>/ownership/renounce", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def renounce_ownership(pool_id: str):
    """Leave the pool ownerless. Body: {"caller"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str})
    if not is_valid:
        return jsonify({"error": error}), 400

    return _commit(services.registry.get_pool(pool_id).renounce_ownership(data["caller"]))
