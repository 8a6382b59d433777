"""
Metrics publisher for the Prometheus Pushgateway.

Batch jobs finish before a scraper could see them; the pusher sends the
registry to a Pushgateway once the run is over.
"""

import logging

from prometheus_client import REGISTRY, CollectorRegistry, push_to_gateway

logger = logging.getLogger(__name__)


class MetricsPusher:
    """
    Push a Prometheus registry to a Pushgateway

    Grouping keys let several databases masked by the same job keep
    separate series on the gateway.
    """

    def __init__(
        self,
        gateway: str,
        job: str = "db-masking",
        registry: CollectorRegistry | None = None,
        grouping_key: dict[str, str] | None = None,
        timeout: float = 10.0,
    ):
        """
        Initialize metrics pusher

        Args:
            gateway: Pushgateway address (host:port or URL)
            job: Job label for the pushed series
            registry: Registry to push (default: global REGISTRY)
            grouping_key: Extra grouping labels (e.g. {"database": "staging"})
            timeout: HTTP timeout in seconds
        """
        self.gateway = gateway
        self.job = job
        self.registry = registry or REGISTRY
        self.grouping_key = grouping_key or {}
        self.timeout = timeout

    def push(self) -> None:
        """Push all metrics of the registry, replacing the job's previous group."""
        push_to_gateway(
            self.gateway,
            job=self.job,
            registry=self.registry,
            grouping_key=self.grouping_key,
            timeout=self.timeout,
        )
        logger.info(f"Pushed metrics to {self.gateway} (job={self.job})")
