"""Common configuration, models, events and metrics for the webhook queue."""

from webhook_queue.common.config import (
    BaseConfig,
    CollectorConfig,
    DatabaseConfig,
    ForwardHandlerConfig,
    MaintenanceConfig,
    MetricsConfig,
    ProcessorAppConfig,
    ProcessorConfig,
    RetryPolicy,
    StatsConfig,
    WebhookSourceConfig,
)
from webhook_queue.common.events import (
    CriticalError,
    EventBus,
    QueueEvent,
    WebhookFailed,
    WebhookProcessed,
)
from webhook_queue.common.models import (
    QueueStatus,
    WebhookQueueItem,
    WebhookSource,
    default_priority,
)
from webhook_queue.common.metrics import (
    MetricsRegistry,
    metrics,
    measure_time,
    start_metrics_server,
)

__all__ = [
    # Config
    "BaseConfig",
    "CollectorConfig",
    "DatabaseConfig",
    "ForwardHandlerConfig",
    "MaintenanceConfig",
    "MetricsConfig",
    "ProcessorAppConfig",
    "ProcessorConfig",
    "RetryPolicy",
    "StatsConfig",
    "WebhookSourceConfig",
    # Events
    "CriticalError",
    "EventBus",
    "QueueEvent",
    "WebhookFailed",
    "WebhookProcessed",
    # Models
    "QueueStatus",
    "WebhookQueueItem",
    "WebhookSource",
    "default_priority",
    # Metrics
    "MetricsRegistry",
    "metrics",
    "measure_time",
    "start_metrics_server",
]
