"""
Flask middleware for request logging and metrics.

Provides:
- Request/response logging with timing
- Automatic metrics collection for all requests
- Request ID tracking for distributed tracing
"""

import re
import time
import uuid
from collections.abc import Callable
from functools import wraps

from flask import Flask, Response, g, request

from monitoring.logging import clear_request_context, get_logger, set_request_context
from monitoring.metrics import metrics

logger = get_logger("stakewindow.request")

ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def setup_request_logging(app: Flask) -> None:
    """
    Set up request logging middleware for a Flask app.

    Adds:
    - Request ID generation and tracking
    - Request timing
    - Structured logging of requests/responses
    - Metrics collection

    Args:
        app: Flask application instance
    """

    @app.before_request
    def before_request():
        """Run before each request."""
        g.request_id = request.headers.get("X-Request-ID", str(uuid.uuid4())[:8])
        g.start_time = time.perf_counter()

        set_request_context(
            request_id=g.request_id,
            method=request.method,
            path=request.path,
        )
        metrics.increment_gauge("http_requests_active")

    @app.after_request
    def after_request(response: Response) -> Response:
        """Run after each request (for successful responses)."""
        _record_request_metrics(response.status_code)

        if hasattr(g, "request_id"):
            response.headers["X-Request-ID"] = g.request_id

        return response

    @app.teardown_request
    def teardown_request(exception=None):
        """Run after each request (always, even on error)."""
        clear_request_context()
        metrics.decrement_gauge("http_requests_active")

        if exception:
            logger.error(
                "Request failed with exception",
                exc_info=exception,
                extra={
                    "request_id": getattr(g, "request_id", "unknown"),
                    "path": request.path,
                    "method": request.method,
                },
            )


def _record_request_metrics(status_code: int) -> None:
    """Record metrics for a completed request."""
    duration_ms = 0.0
    if hasattr(g, "start_time"):
        duration_ms = (time.perf_counter() - g.start_time) * 1000

    path = _normalize_path(request.path)
    metrics.increment(
        "http_requests_total",
        labels={
            "method": request.method,
            "path": path,
            "status": str(status_code),
        },
    )
    metrics.timing(
        "http_request_duration_ms",
        duration_ms,
        labels={"method": request.method, "path": path},
    )

    log_level = "info"
    if status_code >= 500:
        log_level = "error"
    elif status_code >= 400:
        log_level = "warning"

    getattr(logger, log_level)(
        f"{request.method} {request.path} -> {status_code}",
        extra={
            "status_code": status_code,
            "duration_ms": round(duration_ms, 2),
            "request_id": getattr(g, "request_id", "unknown"),
        },
    )


def _normalize_path(path: str) -> str:
    """
    Normalize path for metrics labels.

    Replaces pool and account addresses and other dynamic segments with
    placeholders to prevent high cardinality in metrics.
    """
    parts = path.strip("/").split("/")
    normalized = []

    for part in parts:
        if ADDRESS_RE.match(part):
            normalized.append(":address")
        elif part.isdigit():
            normalized.append(":id")
        elif len(part) == 36 and part.count("-") == 4:
            normalized.append(":uuid")
        else:
            normalized.append(part)

    return "/" + "/".join(normalized) if normalized else "/"


def timed(metric_name: str | None = None):
    """
    Decorator for timing function execution.

    Args:
        metric_name: Custom metric name (defaults to function name)

    Usage:
        @timed("registry_save")
        def _save(self):
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            with metrics.timer(metric_name or f"function_{func.__name__}"):
                return func(*args, **kwargs)

        return wrapper

    return decorator


def counted(metric_name: str | None = None, labels: dict[str, str] | None = None):
    """
    Decorator for counting function calls.

    Args:
        metric_name: Custom metric name (defaults to function name)
        labels: Additional labels for the counter

    Usage:
        @counted("pool_create_requests_total")
        def create_pool():
            ...
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            metrics.increment(metric_name or f"function_{func.__name__}_total", labels=labels)
            return func(*args, **kwargs)

        return wrapper

    return decorator
