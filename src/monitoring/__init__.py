"""
Monitoring and metrics infrastructure for StakeWindow.

This package provides:
- Application metrics collection (counters, gauges, histograms)
- Structured logging with JSON output
- Request timing middleware

Usage:
    from monitoring import metrics, get_logger

    # Record a metric
    metrics.increment("pool_operations_total", labels={"operation": "deposit"})
    metrics.set_gauge("pool_total_staked", pool.total_staked, labels={"pool_id": pool.pool_id})

    # Get a logger
    logger = get_logger("my_module")
    logger.info("Something happened", extra={"pool_id": "0x..."})
"""

from monitoring.metrics import MetricsCollector, metrics
from monitoring.logging import LoggingContext, configure_logging, get_logger
from monitoring.middleware import counted, setup_request_logging, timed

__all__ = [
    "LoggingContext",
    "MetricsCollector",
    "metrics",
    "get_logger",
    "configure_logging",
    "setup_request_logging",
    "timed",
    "counted",
]
