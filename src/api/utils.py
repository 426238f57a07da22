"""
Shared utilities for the StakeWindow API.

This module contains common utilities, decorators, and helpers
used across all API blueprints.
"""

import logging
import secrets
from functools import wraps
from typing import Any

from flask import jsonify, request

from api.state import services
from pool_exceptions import (
    ErrorCategory,
    NotOwnerError,
    PoolNotFoundError,
    StakingPoolError,
    log_exception,
)

logger = logging.getLogger(__name__)

# Bounded parameters
MAX_RESULTS = 100
DEFAULT_PAGE_LIMIT = 50

# HTTP status per error category; exact classes take precedence
CATEGORY_STATUS = {
    ErrorCategory.LIFECYCLE: 409,
    ErrorCategory.INVARIANT: 400,
    ErrorCategory.AUTHORIZATION: 403,
    ErrorCategory.UPSTREAM: 502,
}
ERROR_STATUS = {
    PoolNotFoundError: 404,
    NotOwnerError: 403,
}


# ============================================================
# Validation Utilities
# ============================================================

def validate_limit(limit: Any, max_limit: int = MAX_RESULTS) -> int:
    """Bound a requested result limit to [1, max_limit]."""
    try:
        value = int(limit) if limit else max_limit
    except (TypeError, ValueError):
        value = max_limit
    return max(1, min(value, max_limit))


def validate_json_schema(
    data: dict[str, Any],
    required_fields: dict[str, type | tuple],
    optional_fields: dict[str, type | tuple] | None = None,
    max_lengths: dict[str, int] | None = None
) -> tuple:
    """
    Validate JSON payload against a simple schema.

    Args:
        data: The JSON data to validate
        required_fields: Dict mapping field names to expected types
        optional_fields: Dict mapping optional field names to expected types
        max_lengths: Dict mapping field names to maximum string lengths

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not isinstance(data, dict):
        return False, "Request body must be a JSON object"

    for field_name, expected_type in required_fields.items():
        if field_name not in data:
            return False, f"Missing required field: {field_name}"
        if not isinstance(data[field_name], expected_type):
            return False, f"Field '{field_name}' has the wrong type"

    if optional_fields:
        for field_name, expected_type in optional_fields.items():
            if field_name in data and data[field_name] is not None:
                if not isinstance(data[field_name], expected_type):
                    return False, f"Field '{field_name}' has the wrong type"

    if max_lengths:
        for field_name, max_len in max_lengths.items():
            if field_name in data and isinstance(data[field_name], str):
                if len(data[field_name]) > max_len:
                    return False, f"Field '{field_name}' exceeds maximum length of {max_len}"

    return True, None


def parse_amount(value: Any, field_name: str = "amount") -> int:
    """
    Parse a token amount from JSON.

    Accepts an integer or a decimal-digit string (for amounts beyond the
    range JSON clients can represent exactly).

    Raises:
        ValueError: If the value is not a non-negative integer
    """
    if isinstance(value, bool):
        raise ValueError(f"Field '{field_name}' must be an integer amount")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"Field '{field_name}' must be an integer amount")
    if amount < 0:
        raise ValueError(f"Field '{field_name}' must be non-negative")
    return amount


def get_json_body() -> dict[str, Any]:
    return request.get_json(silent=True) or {}


# ============================================================
# Error Mapping
# ============================================================

def error_status(error: StakingPoolError) -> int:
    for error_type, status in ERROR_STATUS.items():
        if isinstance(error, error_type):
            return status
    return CATEGORY_STATUS.get(error.category, 400)


def error_response(error: StakingPoolError):
    """Log a rejected operation and render it as JSON."""
    log_exception(logger, error, level="warning")
    body = error.to_dict()
    body["error"] = error.message
    return jsonify(body), error_status(error)


def handle_pool_errors(f):
    """Render StakingPoolError and ValueError as JSON error responses."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except StakingPoolError as e:
            return error_response(e)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
    return decorated_function


def require_services(f):
    """Return 503 until create_app() has wired a registry and ledger."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not services.is_ready():
            return jsonify({"error": "Staking services not initialized"}), 503
        return f(*args, **kwargs)
    return decorated_function


# ============================================================
# Authentication Decorator
# ============================================================

def require_api_key(f):
    """Decorator to require API key authentication."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        config = services.config
        if config is None or not config.require_auth:
            return f(*args, **kwargs)

        provided_key = request.headers.get('X-API-Key')

        if not provided_key:
            return jsonify({
                "error": "API key required",
                "hint": "Provide API key in X-API-Key header"
            }), 401

        if not config.api_key:
            return jsonify({
                "error": "Server API key not configured",
                "hint": "Set STAKING_API_KEY environment variable"
            }), 503

        if not secrets.compare_digest(provided_key, config.api_key):
            return jsonify({"error": "Invalid API key"}), 403

        return f(*args, **kwargs)
    return decorated_function
