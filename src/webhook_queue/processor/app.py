import asyncio
import signal
import sys
from pathlib import Path
from typing import Awaitable, Callable, Optional

import click
import yaml
from loguru import logger

from webhook_queue.common.config import ProcessorAppConfig
from webhook_queue.common.log import configure_logging
from webhook_queue.common.metrics import metrics, start_metrics_server
from webhook_queue.queue.service import WebhookQueueService, build_queue_service


_app_config: Optional[ProcessorAppConfig] = None
_queue_service: Optional[WebhookQueueService] = None
_shutdown_event: Optional[asyncio.Event] = None


def get_app_config() -> ProcessorAppConfig:
    global _app_config
    if not _app_config:
        raise RuntimeError("Application config not initialized")
    return _app_config


def get_queue_service() -> WebhookQueueService:
    global _queue_service
    if not _queue_service:
        raise RuntimeError("Queue service not initialized")
    return _queue_service


def load_config_from_file(config_path: str) -> ProcessorAppConfig:
    """Load configuration from a YAML file."""
    file_path = Path(config_path)
    if not file_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(file_path, "r") as f:
        config_data = yaml.safe_load(f) or {}

    return ProcessorAppConfig.model_validate(config_data)


def setup_app(config: ProcessorAppConfig):
    """Initialize the processor with the given config."""
    global _app_config, _queue_service

    configure_logging(config.log_level)

    _queue_service = build_queue_service(config)
    _app_config = config

    logger.info("Webhook Queue Processor initialized")
    logger.info(f"Registered handler sources: {', '.join(_queue_service.registry.sources())}")


async def run_periodic(
    name: str,
    interval: float,
    job: Callable[[], Awaitable[int]],
    shutdown_event: asyncio.Event,
):
    """Run ``job`` every ``interval`` seconds until shutdown is requested."""
    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
            break
        except asyncio.TimeoutError:
            pass

        try:
            count = await job()
            logger.debug(f"Maintenance job {name} touched {count} items")
        except Exception as e:
            logger.error(f"Maintenance job {name} failed: {e}")


async def run_processor():
    """Run the processor loop and maintenance jobs until shutdown."""
    global _app_config, _queue_service, _shutdown_event

    # Must belong to the loop the processor runs on
    _shutdown_event = asyncio.Event()

    if _app_config.metrics.enabled:
        start_metrics_server(_app_config.metrics.port, _app_config.metrics.host)
        logger.info(f"Metrics server started on {_app_config.metrics.host}:{_app_config.metrics.port}")

    metrics.up.labels(component="processor").set(1)

    maintenance = _app_config.maintenance
    jobs = []
    try:
        await _queue_service.store.create_all()
        _queue_service.start_processor(_app_config.processor.interval_seconds)
        jobs = [
            asyncio.create_task(
                run_periodic(
                    "rebalance",
                    maintenance.rebalance_interval,
                    _queue_service.auto_rebalance_queue,
                    _shutdown_event,
                )
            ),
            asyncio.create_task(
                run_periodic(
                    "cleanup",
                    maintenance.cleanup_interval,
                    _queue_service.cleanup_queue,
                    _shutdown_event,
                )
            ),
        ]
        logger.info("Webhook Queue Processor started")
        await _shutdown_event.wait()
    except Exception as e:
        logger.error(f"Processor error: {e}")
    finally:
        _queue_service.stop_processor()
        await _queue_service.wait_for_inflight()
        for job in jobs:
            job.cancel()
        await asyncio.gather(*jobs, return_exceptions=True)
        await _queue_service.store.dispose()
        metrics.up.labels(component="processor").set(0)
        logger.info("Webhook Queue Processor stopped")


def handle_signal(sig, frame):
    """Handle termination signals."""
    global _shutdown_event
    if _shutdown_event:
        logger.info(f"Received signal {sig}, shutting down...")
        _shutdown_event.set()


@click.group()
def cli():
    """Webhook Queue Processor CLI"""
    pass


@cli.command("serve")
@click.option(
    "--config",
    "-c",
    required=True,
    help="Path to configuration file",
)
def serve(config: str):
    """Start the processor service."""
    try:
        config_obj = load_config_from_file(config)
        setup_app(config_obj)

        signal.signal(signal.SIGINT, handle_signal)
        signal.signal(signal.SIGTERM, handle_signal)

        asyncio.run(run_processor())
    except Exception as e:
        logger.error(f"Failed to start processor: {e}")
        sys.exit(1)


if __name__ == "__main__":
    cli()
