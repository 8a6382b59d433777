"""
Prometheus metrics helpers

The masking job is a short-lived batch process, so metrics are pushed to a
Pushgateway at the end of a run instead of being scraped.

Usage:
    from utils.metrics import MetricsPusher, get_or_create_metric

    ROWS = get_or_create_metric(
        lambda: Counter("masking_rows_total", "Rows processed", ["table"]),
        "masking_rows_total",
    )
    MetricsPusher("pushgateway:9091", job="db-masking").push()
"""

import logging
from typing import Callable, TypeVar

from prometheus_client import REGISTRY, CollectorRegistry

from .publisher import MetricsPusher

logger = logging.getLogger(__name__)

T = TypeVar("T")


def get_or_create_metric(
    metric_factory: Callable[[], T],
    metric_name: str,
    registry: CollectorRegistry = REGISTRY,
) -> T:
    """
    Create a metric or return the one already registered under ``metric_name``.

    Module reloads (and test collection) would otherwise fail with
    "Duplicated timeseries in CollectorRegistry".

    Args:
        metric_factory: Callable that creates the metric (e.g., lambda: Counter(...))
        metric_name: Name of the metric for lookup if already registered
        registry: Prometheus registry to use (default: global REGISTRY)

    Returns:
        The metric instance (either newly created or existing)
    """
    try:
        return metric_factory()
    except ValueError:
        existing = registry._names_to_collectors.get(metric_name)
        if existing is not None:
            return existing
        raise


__all__ = [
    "MetricsPusher",
    "get_or_create_metric",
]
