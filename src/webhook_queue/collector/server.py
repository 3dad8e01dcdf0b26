from typing import Optional

import uvicorn
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from webhook_queue.collector.routes import admin_router, router, verify_admin_token
from webhook_queue.common.config import CollectorConfig
from webhook_queue.common.log import configure_logging
from webhook_queue.common.metrics import metrics, start_metrics_server


def create_app(config: CollectorConfig) -> FastAPI:
    app = FastAPI(
        title="Webhook Queue Collector",
        description="Receives provider webhooks and processes them asynchronously",
        version="0.1.0",
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/webhooks")
    app.include_router(
        admin_router,
        prefix="/api/webhooks",
        dependencies=[Depends(verify_admin_token)],
    )

    @app.on_event("startup")
    async def startup_event():
        from webhook_queue.collector.app import get_queue_service

        configure_logging(config.log_level)

        if config.metrics.enabled:
            start_metrics_server(config.metrics.port, config.metrics.host)
            logger.info(
                f"Metrics server started on {config.metrics.host}:{config.metrics.port}"
            )

        queue_service = get_queue_service()
        await queue_service.store.create_all()
        if config.processor.enabled:
            queue_service.start_processor(config.processor.interval_seconds)

        metrics.up.labels(component="collector").set(1)

        logger.info(f"Webhook Queue Collector started on {config.host}:{config.port}")

        for source in config.webhook_sources:
            signature_check = (
                "with signature validation"
                if source.secret
                else "without signature validation"
            )
            logger.info(f"Configured webhook source: {source.name} {signature_check}")

    @app.on_event("shutdown")
    async def shutdown_event():
        from webhook_queue.collector.app import get_queue_service

        queue_service = get_queue_service()
        queue_service.stop_processor()
        await queue_service.wait_for_inflight()
        await queue_service.store.dispose()

        metrics.up.labels(component="collector").set(0)
        logger.info("Webhook Queue Collector shutting down")

    return app


def run_server(config: Optional[CollectorConfig] = None):
    if not config:
        from webhook_queue.collector.app import get_app_config

        config = get_app_config()

    app = create_app(config)

    uvicorn.run(
        app,
        host=config.host,
        port=config.port,
        log_level="info",
    )
