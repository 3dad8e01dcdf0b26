"""Collector component: HTTP intake and admin API for the webhook queue."""

from webhook_queue.collector.app import (
    cli,
    get_app_config,
    get_queue_service,
    get_stats_service,
    get_tester,
    load_config_from_file,
    setup_app,
)
from webhook_queue.collector.server import create_app, run_server
from webhook_queue.collector.tester import WebhookTester

__all__ = [
    "get_app_config",
    "get_queue_service",
    "get_stats_service",
    "get_tester",
    "load_config_from_file",
    "setup_app",
    "cli",
    "create_app",
    "run_server",
    "WebhookTester",
]
