from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from webhook_queue.collector.server import create_app
from webhook_queue.common.config import (
    CollectorConfig,
    DatabaseConfig,
    MetricsConfig,
    ProcessorAppConfig,
    ProcessorConfig,
    RetryPolicy,
)
from webhook_queue.common.db import create_engine
from webhook_queue.common.events import EventBus
from webhook_queue.common.models import QueueStatus, WebhookQueueItem
from webhook_queue.queue.handlers import WebhookHandler
from webhook_queue.queue.registry import HandlerRegistry
from webhook_queue.queue.service import WebhookQueueService
from webhook_queue.queue.store import QueueStore


class FakeClock:
    """Controllable replacement for utcnow."""

    def __init__(self, start=datetime(2024, 5, 1, 12, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


class RecordingHandler(WebhookHandler):
    """Handler that records payloads and succeeds."""

    def __init__(self):
        self.payloads = []

    async def handle_webhook(self, payload):
        self.payloads.append(payload)


class FailingHandler(WebhookHandler):
    """Handler that always raises."""

    def __init__(self, message="provider rejected payload"):
        self.message = message
        self.calls = 0

    async def handle_webhook(self, payload):
        self.calls += 1
        raise RuntimeError(self.message)


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def store(tmp_path, clock):
    """Queue store backed by a temporary SQLite database."""
    engine = create_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"))
    queue_store = QueueStore(engine, clock=clock)
    await queue_store.create_all()
    yield queue_store
    await queue_store.dispose()


@pytest.fixture
def registry():
    return HandlerRegistry()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def queue_service(store, registry, events, clock):
    return WebhookQueueService(
        store,
        registry=registry,
        events=events,
        retry=RetryPolicy(),
        processor=ProcessorConfig(batch_size=10, handler_timeout=5),
        clock=clock,
    )


@pytest.fixture
def recording_handler():
    return RecordingHandler()


@pytest.fixture
def failing_handler():
    return FailingHandler()


@pytest.fixture
def sample_queue_item():
    """Fixture that provides a detached queue item snapshot."""
    now = datetime(2024, 5, 1, 12, 0, 0)
    return WebhookQueueItem(
        id=1,
        source="telegram",
        payload={"update_id": 1, "message": {"text": "hello"}},
        status=QueueStatus.PENDING,
        priority=3,
        process_after=now,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def collector_config():
    """Fixture that provides a sample collector configuration."""
    return CollectorConfig(
        host="0.0.0.0",
        port=8000,
        log_level="INFO",
        metrics=MetricsConfig(enabled=False),
        webhook_sources=[
            {
                "name": "twilio",
                "secret": "test-secret",
                "signature_header": "X-Twilio-Signature",
            },
            {"name": "telegram"},  # No signature verification
        ],
    )


@pytest.fixture
def processor_config():
    """Fixture that provides a sample processor configuration."""
    return ProcessorAppConfig(
        log_level="INFO",
        database={"url": "sqlite+aiosqlite:///:memory:"},
        processor={"interval_seconds": 1, "batch_size": 5},
        handlers=[
            {
                "source": "asaas",
                "target_url": "http://billing:8080/webhooks/asaas",
                "headers": {"Authorization": "Bearer test-token"},
            }
        ],
    )


@pytest.fixture
def mock_queue_service(sample_queue_item):
    """Queue service double for HTTP tests."""
    service = MagicMock(spec=WebhookQueueService)
    service.enqueue_webhook = AsyncMock(return_value=sample_queue_item)
    service.get_queue_stats_by_source = AsyncMock(return_value=[])
    service.get_queue_performance_metrics = AsyncMock()
    service.get_problematic_items = AsyncMock(return_value=[])
    service.get_pending_items = AsyncMock(return_value=[sample_queue_item])
    service.count_pending_items = AsyncMock(return_value=1)
    service.process_pending = AsyncMock(return_value=0)
    service.auto_rebalance_queue = AsyncMock(return_value=2)
    service.cleanup_queue = AsyncMock(return_value=3)
    service.get_processing_status.return_value = False
    return service


@pytest.fixture
def mock_stats_service():
    service = MagicMock()
    service.get_overall_stats = AsyncMock(return_value={"processing": {}, "queue": []})
    service.get_webhook_stats_by_period = AsyncMock(return_value=[])
    service.get_advanced_metrics = AsyncMock(return_value={})
    service.get_recent_webhooks = AsyncMock(return_value=[])
    service.get_failed_webhooks = AsyncMock(return_value=[])
    return service


@pytest.fixture
def mock_tester():
    tester = MagicMock()
    tester.simulate_webhook = AsyncMock(return_value={"id": 1, "payload": {}})
    tester.simulate_batch = AsyncMock(return_value={"batch_id": "batch-1", "count": 5})
    return tester


@pytest.fixture
def collector_app(collector_config, mock_queue_service, mock_stats_service, mock_tester):
    """Fixture that provides a configured collector FastAPI app."""
    with patch("webhook_queue.collector.app.get_app_config") as mock_get_config, patch(
        "webhook_queue.collector.app.get_queue_service"
    ) as mock_get_service, patch(
        "webhook_queue.collector.app.get_stats_service"
    ) as mock_get_stats, patch(
        "webhook_queue.collector.app.get_tester"
    ) as mock_get_tester:
        mock_get_config.return_value = collector_config
        mock_get_service.return_value = mock_queue_service
        mock_get_stats.return_value = mock_stats_service
        mock_get_tester.return_value = mock_tester
        app = create_app(collector_config)
        yield app


@pytest.fixture
def collector_client(collector_app):
    """Fixture that provides a test client for the collector API."""
    return TestClient(collector_app)
