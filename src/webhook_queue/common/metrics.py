import time
from functools import wraps
from typing import Callable, Dict, Optional, Union

from loguru import logger
from prometheus_client import REGISTRY, Counter, Gauge, Histogram, start_http_server

from webhook_queue.common.events import CriticalError, QueueEvent, WebhookFailed, WebhookProcessed


class MetricsRegistry:
    def __init__(self, registry=None):
        # Use a provided registry or the default one
        self.registry = registry or REGISTRY

        # Intake metrics
        self.webhook_received_total = Counter(
            "webhook_queue_received_total",
            "Total number of webhooks received over HTTP",
            ["source"],
            registry=self.registry,
        )
        self.webhook_intake_time = Histogram(
            "webhook_queue_intake_seconds",
            "Time spent accepting webhooks over HTTP",
            ["source"],
            registry=self.registry,
        )
        self.enqueued_total = Counter(
            "webhook_queue_enqueued_total",
            "Total number of webhooks written to the queue",
            ["source"],
            registry=self.registry,
        )

        # Processor metrics
        self.processed_total = Counter(
            "webhook_queue_processed_total",
            "Total number of webhooks processed successfully",
            ["source"],
            registry=self.registry,
        )
        self.failed_total = Counter(
            "webhook_queue_failed_total",
            "Total number of failed processing attempts",
            ["source"],
            registry=self.registry,
        )
        self.dead_total = Counter(
            "webhook_queue_dead_total",
            "Total number of webhooks that exhausted their attempts",
            ["source"],
            registry=self.registry,
        )
        self.critical_errors_total = Counter(
            "webhook_queue_critical_errors_total",
            "Total number of critical queue errors",
            registry=self.registry,
        )
        self.processing_time = Histogram(
            "webhook_queue_processing_seconds",
            "Time spent running webhook handlers",
            ["source"],
            registry=self.registry,
        )
        self.batch_size = Histogram(
            "webhook_queue_batch_size",
            "Number of items picked per processor tick",
            buckets=(0, 1, 2, 5, 10, 20, 50, 100),
            registry=self.registry,
        )

        # Maintenance metrics
        self.rebalanced_total = Counter(
            "webhook_queue_rebalanced_total",
            "Total number of pending items promoted by aging",
            registry=self.registry,
        )
        self.cleaned_total = Counter(
            "webhook_queue_cleaned_total",
            "Total number of completed items purged",
            registry=self.registry,
        )

        # Common metrics
        self.up = Gauge(
            "webhook_queue_up",
            "Whether the webhook queue component is up",
            ["component"],
            registry=self.registry,
        )

    def record_queue_event(self, event: QueueEvent) -> None:
        """Event bus listener translating queue events into metrics."""
        if isinstance(event, WebhookProcessed):
            self.processed_total.labels(source=event.source).inc()
            self.processing_time.labels(source=event.source).observe(
                event.processing_time_ms / 1000
            )
        elif isinstance(event, WebhookFailed):
            self.failed_total.labels(source=event.source).inc()
            self.processing_time.labels(source=event.source).observe(
                event.processing_time_ms / 1000
            )
            if event.terminal:
                self.dead_total.labels(source=event.source).inc()
        elif isinstance(event, CriticalError):
            self.critical_errors_total.inc()


# Global metrics registry
metrics = MetricsRegistry()


def start_metrics_server(port: int = 9090, host: str = "127.0.0.1"):
    """Start the Prometheus metrics server."""
    start_http_server(port, host)


def measure_time(
    metric: Histogram, labels: Optional[Union[Dict[str, str], Callable]] = None
) -> Callable:
    """Decorator to measure the execution time of a coroutine function.

    ``labels`` is either a fixed label dict or a callable receiving the
    call's keyword arguments and returning one.
    """

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            labels_dict = {}
            if callable(labels):
                try:
                    labels_dict = labels(kwargs)
                except Exception as e:
                    logger.error(f"Error getting labels from function: {e}")
            elif isinstance(labels, dict):
                labels_dict = labels

            start_time = time.perf_counter()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.perf_counter() - start_time
                try:
                    metric.labels(**labels_dict).observe(duration)
                except Exception as e:
                    logger.error(f"Error recording metric: {e}")

        return wrapper

    return decorator
