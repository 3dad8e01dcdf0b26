"""Processor component: standalone queue worker with maintenance jobs."""

from webhook_queue.processor.app import (
    cli,
    get_app_config,
    get_queue_service,
    load_config_from_file,
    run_periodic,
    run_processor,
    setup_app,
)

__all__ = [
    "get_app_config",
    "get_queue_service",
    "load_config_from_file",
    "setup_app",
    "run_periodic",
    "run_processor",
    "cli",
]
