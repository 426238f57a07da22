"""
Monitoring and metrics API endpoints.

This blueprint provides:
- /metrics: Prometheus-compatible metrics endpoint
- /metrics/json: JSON format metrics
- /health: Basic health check
- /health/live: Kubernetes liveness probe
- /health/ready: Kubernetes readiness probe
"""

import time

from flask import Blueprint, Response, jsonify

from api.state import services
from monitoring import metrics

monitoring_bp = Blueprint('monitoring', __name__)

# Track startup time
_startup_time = time.time()


def _update_dynamic_metrics() -> None:
    """Refresh registry-level gauges before export."""
    if services.registry is None:
        return
    stats = services.registry.get_statistics()
    metrics.set_gauge("pools_total", stats["pools"]["total"])
    for status, count in stats["pools"]["by_status"].items():
        metrics.set_gauge("pools_by_status", count, labels={"status": status})


def _check_storage() -> dict:
    """Check storage backend status."""
    if services.storage is None:
        return {"status": "disabled"}
    try:
        available = services.storage.is_available()
    except Exception as e:
        return {"status": "error", "error": str(e)}
    return {
        "status": "ok" if available else "unavailable",
        "backend": type(services.storage).__name__,
    }


@monitoring_bp.route('/metrics', methods=['GET'])
def prometheus_metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns metrics in Prometheus text exposition format.
    """
    _update_dynamic_metrics()
    return Response(
        metrics.to_prometheus(),
        mimetype='text/plain; charset=utf-8'
    )


@monitoring_bp.route('/metrics/json', methods=['GET'])
def json_metrics():
    """Returns all collected metrics as JSON."""
    _update_dynamic_metrics()
    return jsonify(metrics.get_all())


@monitoring_bp.route('/health', methods=['GET'])
def health():
    """
    Basic health check endpoint.

    Returns service status and key statistics.
    """
    registry = services.registry
    return jsonify({
        "status": "healthy",
        "service": "StakeWindow API",
        "uptime_seconds": time.time() - _startup_time,
        "checks": {
            "registry": {
                "status": "ok" if registry is not None else "unavailable",
                "pools": len(registry.pools) if registry is not None else 0,
            },
            "storage": _check_storage(),
        }
    })


@monitoring_bp.route('/health/live', methods=['GET'])
def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the application is running.
    """
    return jsonify({"status": "alive"})


@monitoring_bp.route('/health/ready', methods=['GET'])
def readiness():
    """
    Kubernetes readiness probe.

    Returns 200 once the registry is wired and storage (if any) is reachable.
    """
    issues = []

    if not services.is_ready():
        issues.append("registry: not initialized")

    storage = _check_storage()
    if storage["status"] not in ("ok", "disabled"):
        issues.append(f"storage: {storage['status']}")

    if issues:
        return jsonify({
            "status": "not_ready",
            "issues": issues,
        }), 503

    return jsonify({"status": "ready"})
