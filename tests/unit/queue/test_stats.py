from datetime import datetime

import pytest

from webhook_queue.common.config import StatsConfig
from webhook_queue.common.events import CriticalError, WebhookFailed, WebhookProcessed
from webhook_queue.common.models import QueueStatus
from webhook_queue.queue.service import WebhookQueueService
from webhook_queue.queue.stats import ProcessingStatsCollector, WebhookStatsService, bucket_counts


class TestProcessingStatsCollector:

    def test_running_average(self, clock):
        """The average covers successful and failed attempts."""
        collector = ProcessingStatsCollector(clock)

        collector(WebhookProcessed(id=1, source="slack", processing_time_ms=100))
        collector(WebhookFailed(id=2, source="slack", error="e", attempts=1, processing_time_ms=200))
        collector(WebhookProcessed(id=3, source="slack", processing_time_ms=300))

        stats = collector.snapshot()
        assert stats.total_processed == 3
        assert stats.success_count == 2
        assert stats.failure_count == 1
        assert stats.avg_processing_time == pytest.approx(200)

    def test_critical_errors_and_uptime(self, clock):
        collector = ProcessingStatsCollector(clock)
        collector(CriticalError(message="db down"))
        clock.advance(seconds=90)

        stats = collector.snapshot()
        assert stats.critical_errors == 1
        assert stats.total_processed == 0
        assert stats.uptime == 90

    def test_snapshot_is_a_copy(self, clock):
        collector = ProcessingStatsCollector(clock)
        snapshot = collector.snapshot()
        collector(WebhookProcessed(id=1, source="slack", processing_time_ms=10))

        assert snapshot.success_count == 0


def test_bucket_counts():
    timestamps = [
        datetime(2024, 5, 2, 10),
        datetime(2024, 5, 1, 9),
        datetime(2024, 5, 2, 11),
        None,
    ]
    buckets = bucket_counts(timestamps, "%Y-%m-%d")
    assert [(b.date, b.count) for b in buckets] == [("2024-05-01", 1), ("2024-05-02", 2)]


class TestWebhookStatsService:

    @pytest.fixture
    def stats_service(self, queue_service):
        return WebhookStatsService(queue_service)

    @pytest.mark.asyncio
    async def test_overall_stats(self, stats_service, queue_service):
        await queue_service.enqueue_webhook("telegram", {})

        overall = await stats_service.get_overall_stats()

        assert overall["processing"].total_processed == 0
        assert overall["queue"][0].source == "telegram"
        assert overall["queue"][0].pending == 1

    @pytest.mark.asyncio
    async def test_stats_by_day(self, stats_service, queue_service, clock):
        """Day stats are bucketed by hour and source."""
        clock.now = datetime(2024, 5, 1, 9, 15)
        item = await queue_service.enqueue_webhook("slack", {})
        await queue_service.store.update(item.id, status=QueueStatus.COMPLETED)
        clock.now = datetime(2024, 5, 1, 9, 45)
        item = await queue_service.enqueue_webhook("slack", {})
        await queue_service.store.update(item.id, status=QueueStatus.FAILED)
        clock.now = datetime(2024, 5, 1, 10, 5)
        await queue_service.enqueue_webhook("telegram", {})

        buckets = await stats_service.get_webhook_stats_by_period("day")

        assert [(b.date, b.source, b.count, b.success, b.failed) for b in buckets] == [
            ("2024-05-01 09:00", "slack", 2, 1, 1),
            ("2024-05-01 10:00", "telegram", 1, 0, 0),
        ]

    @pytest.mark.asyncio
    async def test_stats_window(self, stats_service, queue_service, clock):
        """Only items inside the trailing window are counted."""
        clock.now = datetime(2024, 5, 1, 12)
        await queue_service.enqueue_webhook("slack", {})
        clock.now = datetime(2024, 5, 5, 12)
        await queue_service.enqueue_webhook("slack", {})

        assert len(await stats_service.get_webhook_stats_by_period("day")) == 1
        week = await stats_service.get_webhook_stats_by_period("week")
        assert [b.date for b in week] == ["2024-05-01", "2024-05-05"]
        assert len(await stats_service.get_webhook_stats_by_period("month")) == 2

    @pytest.mark.asyncio
    async def test_unsupported_period(self, stats_service):
        with pytest.raises(ValueError, match="Unsupported period: year"):
            await stats_service.get_webhook_stats_by_period("year")

    @pytest.mark.asyncio
    async def test_advanced_metrics(self, store, registry, events, clock):
        service = WebhookQueueService(
            store,
            registry=registry,
            events=events,
            stats_config=StatsConfig(min_samples=2),
            clock=clock,
        )
        stats_service = WebhookStatsService(service)

        clock.now = datetime(2024, 5, 1, 8)
        for n in range(4):
            item = await service.enqueue_webhook("asaas", {})
            status = QueueStatus.FAILED if n == 0 else QueueStatus.COMPLETED
            await store.update(item.id, status=status, processing_time_ms=100 * (n + 1))
        clock.now = datetime(2024, 5, 1, 14)
        await service.enqueue_webhook("slack", {})

        metrics = await stats_service.get_advanced_metrics()

        assert [(v.hour, v.count) for v in metrics.volume_by_hour] == [(8, 4), (14, 1)]
        assert [(t.source, t.avg_time_ms) for t in metrics.avg_processing_time_by_source] == [
            ("asaas", pytest.approx(250))
        ]
        assert [(r.source, r.rate) for r in metrics.error_rate_by_source] == [
            ("asaas", pytest.approx(0.25))
        ]

    @pytest.mark.asyncio
    async def test_recent_and_failed(self, stats_service, queue_service, clock):
        first = await queue_service.enqueue_webhook("slack", {})
        clock.advance(seconds=1)
        second = await queue_service.enqueue_webhook("telegram", {})
        await queue_service.store.update(first.id, status=QueueStatus.FAILED)

        recent = await stats_service.get_recent_webhooks(limit=10)
        assert [item.id for item in recent] == [second.id, first.id]

        assert [i.id for i in await stats_service.get_recent_webhooks(source="telegram")] == [
            second.id
        ]
        assert [i.id for i in await stats_service.get_failed_webhooks()] == [first.id]
