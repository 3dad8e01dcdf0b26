import sys
from pathlib import Path
from typing import Optional

import click
import yaml
from loguru import logger

from webhook_queue.collector.server import run_server
from webhook_queue.collector.tester import WebhookTester
from webhook_queue.common.config import CollectorConfig
from webhook_queue.common.log import configure_logging
from webhook_queue.queue.service import WebhookQueueService, build_queue_service
from webhook_queue.queue.stats import WebhookStatsService


_app_config: Optional[CollectorConfig] = None
_queue_service: Optional[WebhookQueueService] = None
_stats_service: Optional[WebhookStatsService] = None
_tester: Optional[WebhookTester] = None


def get_app_config() -> CollectorConfig:
    global _app_config
    if not _app_config:
        raise RuntimeError("Application config not initialized")
    return _app_config


def get_queue_service() -> WebhookQueueService:
    global _queue_service
    if not _queue_service:
        raise RuntimeError("Queue service not initialized")
    return _queue_service


def get_stats_service() -> WebhookStatsService:
    global _stats_service
    if not _stats_service:
        raise RuntimeError("Stats service not initialized")
    return _stats_service


def get_tester() -> WebhookTester:
    global _tester
    if not _tester:
        raise RuntimeError("Webhook tester not initialized")
    return _tester


def load_config_from_file(config_path: str) -> CollectorConfig:
    """Load configuration from a YAML file."""
    file_path = Path(config_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(file_path, "r") as f:
        config_data = yaml.safe_load(f) or {}

    return CollectorConfig.model_validate(config_data)


def setup_app(config: CollectorConfig):
    """Initialize the application with the given config."""
    global _app_config, _queue_service, _stats_service, _tester

    configure_logging(config.log_level)

    _queue_service = build_queue_service(config)
    _stats_service = WebhookStatsService(_queue_service)
    _tester = WebhookTester(_queue_service)
    _app_config = config

    logger.info("Webhook Queue Collector initialized")
    logger.info(f"Registered handler sources: {', '.join(_queue_service.registry.sources())}")


@click.group()
def cli():
    """Webhook Queue Collector CLI"""
    pass


@cli.command("serve")
@click.option(
    "--config",
    "-c",
    required=True,
    help="Path to configuration file",
)
def serve(config: str):
    """Start the collector server."""
    try:
        config_obj = load_config_from_file(config)
        setup_app(config_obj)
        run_server(config_obj)
    except Exception as e:
        logger.error(f"Failed to start collector: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
