"""
StakeWindow - Tokens API Blueprint

REST API endpoints for the token ledger the pools settle against:
- Asset listing and balances
- Approvals (users approve a pool before depositing or adding rewards)
- Transfers
- Admin-only asset registration and minting on the in-memory ledger
"""

from flask import Blueprint, jsonify

from api.state import services
from api.utils import (
    get_json_body,
    handle_pool_errors,
    parse_amount,
    require_api_key,
    require_services,
    validate_json_schema,
)
from pool_exceptions import NotOwnerError
from token_ledger import InMemoryTokenLedger

tokens_bp = Blueprint("tokens", __name__)


def _require_admin(caller: str, action: str) -> None:
    admin = services.config.admin if services.config else None
    if admin is None or caller != admin:
        raise NotOwnerError(caller=caller, owner=admin, action=action, component="token_ledger")


def _commit(result, status: int = 200):
    services.persist()
    return jsonify(result), status


def _in_memory_ledger():
    if isinstance(services.ledger, InMemoryTokenLedger):
        return services.ledger
    return None


@tokens_bp.route("/tokens", methods=["GET"])
@require_services
def list_assets():
    """Registered assets with their transfer behaviour and supply."""
    ledger = _in_memory_ledger()
    if ledger is None:
        return jsonify({"error": "Asset listing not supported by this ledger"}), 501
    assets = ledger.list_assets()
    return jsonify({"count": len(assets), "assets": assets})


@tokens_bp.route("/tokens", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def register_asset():
    """
    Register an asset (admin only).

    Request body:
        {
            "caller": "0x...",
            "asset_id": "RWD",
            "symbol": "RWD",
            "decimals": 18,
            "transfer_fee_bps": 0
        }
    """
    ledger = _in_memory_ledger()
    if ledger is None:
        return jsonify({"error": "Asset registration not supported by this ledger"}), 501

    data = get_json_body()
    is_valid, error = validate_json_schema(
        data,
        required_fields={"caller": str, "asset_id": str},
        optional_fields={"symbol": str, "decimals": int, "transfer_fee_bps": int},
        max_lengths={"asset_id": 255, "symbol": 32},
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    _require_admin(data["caller"], "register_asset")
    config = ledger.register_asset(
        data["asset_id"],
        symbol=data.get("symbol"),
        decimals=data.get("decimals", 18),
        transfer_fee_bps=data.get("transfer_fee_bps", 0),
    )
    return _commit(config.to_dict(), 201)


@tokens_bp.route("/tokens/<asset>/balances/<holder>", methods=["GET"])
@require_services
@handle_pool_errors
def get_balance(asset: str, holder: str):
    return jsonify({
        "asset": asset,
        "holder": holder,
        "balance": services.ledger.balance_of(asset, holder),
    })


@tokens_bp.route("/tokens/<asset>/allowances/<owner>/<spender>", methods=["GET"])
@require_services
@handle_pool_errors
def get_allowance(asset: str, owner: str, spender: str):
    return jsonify({
        "asset": asset,
        "owner": owner,
        "spender": spender,
        "allowance": services.ledger.allowance(asset, owner, spender),
    })


@tokens_bp.route("/tokens/<asset>/approve", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def approve(asset: str):
    """
    Approve a spender (typically a pool).

    Request body:
        {"owner": "0x...", "spender": "0x<pool_id>", "amount": 1000}
    """
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data, {"owner": str, "spender": str, "amount": (int, str)}
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    amount = parse_amount(data["amount"])
    services.ledger.approve(asset, data["owner"], data["spender"], amount)
    return _commit({
        "asset": asset,
        "owner": data["owner"],
        "spender": data["spender"],
        "allowance": amount,
    })


@tokens_bp.route("/tokens/<asset>/transfer", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def transfer(asset: str):
    """Move tokens between accounts. Body: {"sender", "recipient", "amount"}"""
    data = get_json_body()
    is_valid, error = validate_json_schema(
        data, {"sender": str, "recipient": str, "amount": (int, str)}
    )
    if not is_valid:
        return jsonify({"error": error}), 400

    services.ledger.transfer(asset, data["sender"], data["recipient"], parse_amount(data["amount"]))
    return _commit({
        "asset": asset,
        "sender": data["sender"],
        "recipient": data["recipient"],
        "sender_balance": services.ledger.balance_of(asset, data["sender"]),
        "recipient_balance": services.ledger.balance_of(asset, data["recipient"]),
    })


@tokens_bp.route("/tokens/<asset>/mint", methods=["POST"])
@require_api_key
@require_services
@handle_pool_errors
def mint(asset: str):
    """Mint tokens (admin only). Body: {"caller", "to", "amount"}"""
    ledger = _in_memory_ledger()
    if ledger is None:
        return jsonify({"error": "Minting not supported by this ledger"}), 501

    data = get_json_body()
    is_valid, error = validate_json_schema(data, {"caller": str, "to": str, "amount": (int, str)})
    if not is_valid:
        return jsonify({"error": error}), 400

    _require_admin(data["caller"], "mint")
    ledger.mint(asset, data["to"], parse_amount(data["amount"]))
    return _commit({
        "asset": asset,
        "to": data["to"],
        "balance": ledger.balance_of(asset, data["to"]),
        "total_supply": ledger.total_supply(asset),
    })
