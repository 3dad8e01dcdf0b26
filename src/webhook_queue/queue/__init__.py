"""Durable webhook queue with prioritised, backed-off processing."""

from webhook_queue.queue.handlers import (
    ForwardError,
    HandlerNotFoundError,
    HttpForwardHandler,
    UnknownWebhookVariantError,
    WebhookHandler,
)
from webhook_queue.queue.registry import HandlerRegistry, MetaWebhookDispatcher
from webhook_queue.queue.service import WebhookQueueService, build_queue_service
from webhook_queue.queue.stats import ProcessingStatsCollector, WebhookStatsService
from webhook_queue.queue.store import QueueStore
from webhook_queue.queue.validators import InvalidWebhookError, validate_webhook

__all__ = [
    "ForwardError",
    "HandlerNotFoundError",
    "HttpForwardHandler",
    "UnknownWebhookVariantError",
    "WebhookHandler",
    "HandlerRegistry",
    "MetaWebhookDispatcher",
    "WebhookQueueService",
    "build_queue_service",
    "ProcessingStatsCollector",
    "WebhookStatsService",
    "QueueStore",
    "InvalidWebhookError",
    "validate_webhook",
]
