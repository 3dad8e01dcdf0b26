import hashlib
import hmac
import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from loguru import logger
from pydantic import BaseModel, Field

from webhook_queue.collector.tester import WebhookTester
from webhook_queue.common.config import CollectorConfig
from webhook_queue.common.metrics import measure_time, metrics
from webhook_queue.common.models import WebhookSource
from webhook_queue.queue.handlers import HandlerNotFoundError
from webhook_queue.queue.service import WebhookQueueService
from webhook_queue.queue.stats import WebhookStatsService
from webhook_queue.queue.validators import InvalidWebhookError, ensure_valid_webhook


router = APIRouter()
admin_router = APIRouter()

MAX_BATCH_SIZE = 100


async def get_config() -> CollectorConfig:
    from webhook_queue.collector.app import get_app_config
    return get_app_config()


async def get_queue_service() -> WebhookQueueService:
    from webhook_queue.collector.app import get_queue_service
    return get_queue_service()


async def get_stats_service() -> WebhookStatsService:
    from webhook_queue.collector.app import get_stats_service
    return get_stats_service()


async def get_tester() -> WebhookTester:
    from webhook_queue.collector.app import get_tester
    return get_tester()


async def verify_admin_token(
    config: CollectorConfig = Depends(get_config),
    x_admin_token: Optional[str] = Header(None),
) -> None:
    if not config.admin_token:
        return
    if not x_admin_token or not hmac.compare_digest(x_admin_token, config.admin_token):
        raise HTTPException(status_code=401, detail="Invalid admin token")


async def validate_webhook_signature(
    request: Request,
    source: str,
    config: CollectorConfig,
) -> bool:
    """Validate the webhook signature if the source is configured for it."""
    webhook_source = next(
        (src for src in config.webhook_sources if src.name == source), None
    )

    if not webhook_source or not webhook_source.secret or not webhook_source.signature_header:
        # No signature validation required
        return True

    signature_header = webhook_source.signature_header
    expected_signature = request.headers.get(signature_header)

    if not expected_signature:
        raise HTTPException(
            status_code=400,
            detail=f"Missing signature header: {signature_header}"
        )

    body = await request.body()
    digest = hmac.new(
        webhook_source.secret.encode(),
        body,
        hashlib.sha256
    ).hexdigest()

    calculated_signature = f"sha256={digest}"

    if not hmac.compare_digest(calculated_signature, expected_signature):
        raise HTTPException(status_code=401, detail="Invalid signature")

    return True


def parse_source(value: str) -> WebhookSource:
    try:
        return WebhookSource(value)
    except ValueError:
        raise HTTPException(
            status_code=400,
            detail={
                "error": f"Invalid webhook type: {value}",
                "valid_types": [source.value for source in WebhookSource],
            },
        )


@router.get("/health")
async def health_check():
    return {"status": "ok"}


@router.post("/{source}", status_code=202)
@measure_time(metrics.webhook_intake_time, lambda kwargs: {"source": kwargs.get("source", "unknown")})
async def receive_webhook(
    source: str,
    request: Request,
    channel_id: Optional[int] = Query(None),
    config: CollectorConfig = Depends(get_config),
    queue_service: WebhookQueueService = Depends(get_queue_service),
):
    await validate_webhook_signature(request, source, config)

    body = await request.body()
    try:
        payload = json.loads(body)
    except json.JSONDecodeError:
        raise HTTPException(status_code=400, detail="Invalid JSON payload")

    try:
        ensure_valid_webhook(source, payload)
    except InvalidWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))

    metrics.webhook_received_total.labels(source=source).inc()

    try:
        item = await queue_service.enqueue_webhook(source, payload, channel_id=channel_id)
    except Exception as e:
        logger.error(f"Failed to queue webhook from {source}: {e}")
        raise HTTPException(status_code=500, detail="Failed to queue webhook")

    return {"status": "accepted", "id": item.id}


class SimulateRequest(BaseModel):
    type: str
    custom_data: Dict[str, Any] = Field(default_factory=dict)
    process_directly: bool = False
    channel_id: Optional[int] = None
    skip_validation: bool = False


class SimulateBatchRequest(BaseModel):
    type: str
    count: int = 10


@admin_router.get("/stats")
async def overall_stats(stats: WebhookStatsService = Depends(get_stats_service)):
    return await stats.get_overall_stats()


@admin_router.get("/stats/sources")
async def stats_by_source(queue_service: WebhookQueueService = Depends(get_queue_service)):
    return await queue_service.get_queue_stats_by_source()


@admin_router.get("/stats/performance")
async def performance_metrics(queue_service: WebhookQueueService = Depends(get_queue_service)):
    return await queue_service.get_queue_performance_metrics()


@admin_router.get("/stats/period/{period}")
async def stats_by_period(period: str, stats: WebhookStatsService = Depends(get_stats_service)):
    try:
        return await stats.get_webhook_stats_by_period(period)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@admin_router.get("/stats/advanced")
async def advanced_metrics(stats: WebhookStatsService = Depends(get_stats_service)):
    return await stats.get_advanced_metrics()


@admin_router.get("/recent")
async def recent_webhooks(
    limit: int = Query(50, ge=1, le=500),
    source: Optional[str] = None,
    stats: WebhookStatsService = Depends(get_stats_service),
):
    return await stats.get_recent_webhooks(limit, source)


@admin_router.get("/failed")
async def failed_webhooks(
    limit: int = Query(50, ge=1, le=500),
    source: Optional[str] = None,
    stats: WebhookStatsService = Depends(get_stats_service),
):
    return await stats.get_failed_webhooks(limit, source)


@admin_router.get("/problematic")
async def problematic_webhooks(
    limit: int = Query(10, ge=1, le=500),
    queue_service: WebhookQueueService = Depends(get_queue_service),
):
    return await queue_service.get_problematic_items(limit)


@admin_router.get("/pending")
async def pending_webhooks(
    limit: int = Query(10, ge=1, le=500),
    source: Optional[str] = None,
    batch_id: Optional[str] = None,
    tags: Optional[List[str]] = Query(None),
    queue_service: WebhookQueueService = Depends(get_queue_service),
):
    items = await queue_service.get_pending_items(
        limit, source=source, tags=tags, batch_id=batch_id
    )
    return {"count": await queue_service.count_pending_items(source), "items": items}


@admin_router.post("/simulate")
async def simulate_webhook(
    body: SimulateRequest,
    tester: WebhookTester = Depends(get_tester),
):
    source = parse_source(body.type)
    try:
        result = await tester.simulate_webhook(
            source,
            body.custom_data,
            process_directly=body.process_directly,
            channel_id=body.channel_id,
            skip_validation=body.skip_validation,
        )
    except HandlerNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidWebhookError as e:
        raise HTTPException(status_code=400, detail=str(e))

    message = (
        "Webhook processed directly"
        if body.process_directly
        else "Webhook queued"
    )
    return {"success": True, "message": message, "result": result}


@admin_router.post("/simulate-batch")
async def simulate_batch(
    body: SimulateBatchRequest,
    tester: WebhookTester = Depends(get_tester),
):
    source = parse_source(body.type)
    safe_count = min(max(1, body.count), MAX_BATCH_SIZE)

    result = await tester.simulate_batch(source, safe_count)
    return {
        "success": True,
        "message": f"Batch of {result['count']} webhooks queued",
        "batch_id": result["batch_id"],
        "requested_count": body.count,
        "actual_count": safe_count,
    }


@admin_router.post("/process")
async def process_now(queue_service: WebhookQueueService = Depends(get_queue_service)):
    if queue_service.get_processing_status():
        return {"handled": 0, "busy": True}
    return {"handled": await queue_service.process_pending(), "busy": False}


@admin_router.post("/rebalance")
async def rebalance(queue_service: WebhookQueueService = Depends(get_queue_service)):
    return {"reprioritized": await queue_service.auto_rebalance_queue()}


@admin_router.post("/cleanup")
async def cleanup(
    max_age_days: Optional[int] = Query(None, ge=0),
    queue_service: WebhookQueueService = Depends(get_queue_service),
):
    return {"removed": await queue_service.cleanup_queue(max_age_days)}
