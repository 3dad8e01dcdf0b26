"""Live processing counters and store-derived queue statistics."""

from collections import Counter, defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

from loguru import logger

from webhook_queue.common.events import CriticalError, QueueEvent, WebhookFailed, WebhookProcessed
from webhook_queue.common.models import (
    AdvancedMetrics,
    HourVolume,
    PeriodBucket,
    ProcessingStats,
    QueueStatus,
    SourceRate,
    SourceTiming,
    ThroughputBucket,
    WebhookQueueItem,
    utcnow,
)

if TYPE_CHECKING:
    from webhook_queue.queue.service import WebhookQueueService

DAY_FORMAT = "%Y-%m-%d"
HOUR_FORMAT = "%Y-%m-%d %H:00"

# period -> (trailing window, bucket label format)
PERIODS: Dict[str, Tuple[timedelta, str]] = {
    "day": (timedelta(days=1), HOUR_FORMAT),
    "week": (timedelta(days=7), DAY_FORMAT),
    "month": (timedelta(days=30), DAY_FORMAT),
}

VOLUME_WINDOW = timedelta(days=7)
ANALYSIS_WINDOW = timedelta(days=30)


def bucket_counts(timestamps: List[datetime], fmt: str) -> List[ThroughputBucket]:
    counts = Counter(ts.strftime(fmt) for ts in timestamps if ts is not None)
    return [ThroughputBucket(date=date, count=count) for date, count in sorted(counts.items())]


class ProcessingStatsCollector:
    """Event bus listener keeping process-lifetime counters."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self.started_at = clock()
        self._stats = ProcessingStats()

    def __call__(self, event: QueueEvent) -> None:
        if isinstance(event, WebhookProcessed):
            self._stats.success_count += 1
            self._record_attempt(event.processing_time_ms)
            self._stats.last_processed_time = event.occurred_at
        elif isinstance(event, WebhookFailed):
            self._stats.failure_count += 1
            self._record_attempt(event.processing_time_ms)
        elif isinstance(event, CriticalError):
            self._stats.critical_errors += 1
            logger.critical(f"Webhook queue critical error: {event.message}")

    def _record_attempt(self, processing_time_ms: int) -> None:
        self._stats.total_processed += 1
        n = self._stats.success_count + self._stats.failure_count
        self._stats.avg_processing_time = (
            self._stats.avg_processing_time * (n - 1) + processing_time_ms
        ) / n

    def snapshot(self) -> ProcessingStats:
        uptime = int((self._clock() - self.started_at).total_seconds())
        return self._stats.model_copy(update={"uptime": uptime})


class WebhookStatsService:
    """Reporting views over the queue used by the admin API."""

    def __init__(self, queue_service: "WebhookQueueService"):
        self.queue_service = queue_service
        self.store = queue_service.store

    def _now(self) -> datetime:
        return self.queue_service.clock()

    async def get_overall_stats(self) -> dict:
        return {
            "processing": self.queue_service.get_processing_stats(),
            "queue": await self.queue_service.get_queue_stats_by_source(),
        }

    async def get_webhook_stats_by_period(self, period: str = "day") -> List[PeriodBucket]:
        if period not in PERIODS:
            raise ValueError(f"Unsupported period: {period}")
        window, fmt = PERIODS[period]

        buckets: Dict[Tuple[str, str], PeriodBucket] = {}
        for created_at, source, status in await self.store.select_activity(self._now() - window):
            date = created_at.strftime(fmt)
            bucket = buckets.get((date, source))
            if bucket is None:
                bucket = buckets[(date, source)] = PeriodBucket(date=date, source=source)
            bucket.count += 1
            if status == QueueStatus.COMPLETED.value:
                bucket.success += 1
            elif status == QueueStatus.FAILED.value:
                bucket.failed += 1
        return [buckets[key] for key in sorted(buckets)]

    async def get_advanced_metrics(self) -> AdvancedMetrics:
        now = self._now()

        hours = defaultdict(int)
        for created_at, _, _ in await self.store.select_activity(now - VOLUME_WINDOW):
            hours[created_at.hour] += 1

        since = now - ANALYSIS_WINDOW
        avg_times = await self.store.avg_processing_time_by_source(since=since)
        error_rates = await self.store.failure_rate_by_source(
            self.queue_service.stats_config.min_samples, since=since
        )
        return AdvancedMetrics(
            volume_by_hour=[HourVolume(hour=hour, count=hours[hour]) for hour in sorted(hours)],
            avg_processing_time_by_source=[
                SourceTiming(source=source, avg_time_ms=avg) for source, avg in avg_times
            ],
            error_rate_by_source=[SourceRate(source=source, rate=rate) for source, rate in error_rates],
        )

    async def get_recent_webhooks(
        self, limit: int = 50, source: Optional[str] = None
    ) -> List[WebhookQueueItem]:
        return await self.store.select_recent(limit=limit, source=source)

    async def get_failed_webhooks(
        self, limit: int = 50, source: Optional[str] = None
    ) -> List[WebhookQueueItem]:
        return await self.store.select_recent(limit=limit, source=source, status=QueueStatus.FAILED)
