"""Webhook queue: enqueueing, the processor loop and queue maintenance."""

import asyncio
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional, Set

from loguru import logger

from webhook_queue.common.config import (
    BaseConfig,
    MaintenanceConfig,
    ProcessorConfig,
    RetryPolicy,
    StatsConfig,
)
from webhook_queue.common.db import create_engine
from webhook_queue.common.events import CriticalError, EventBus, WebhookFailed, WebhookProcessed
from webhook_queue.common.metrics import metrics
from webhook_queue.common.models import (
    PerformanceMetrics,
    ProcessingStats,
    QueueStatus,
    SourceRate,
    SourceStats,
    SourceTiming,
    WebhookQueueItem,
    WebhookSource,
    default_priority,
    utcnow,
)
from webhook_queue.queue.handlers import HttpForwardHandler, WebhookHandler
from webhook_queue.queue.registry import HandlerRegistry
from webhook_queue.queue.stats import DAY_FORMAT, ProcessingStatsCollector, bucket_counts
from webhook_queue.queue.store import QueueStore

THROUGHPUT_WINDOW = timedelta(days=7)


def _elapsed_ms(start: float) -> int:
    return int(round((time.perf_counter() - start) * 1000))


class WebhookQueueService:
    def __init__(
        self,
        store: QueueStore,
        registry: Optional[HandlerRegistry] = None,
        events: Optional[EventBus] = None,
        retry: Optional[RetryPolicy] = None,
        processor: Optional[ProcessorConfig] = None,
        maintenance: Optional[MaintenanceConfig] = None,
        stats_config: Optional[StatsConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.registry = registry or HandlerRegistry()
        self.events = events or EventBus()
        self.retry = retry or RetryPolicy()
        self.processor = processor or ProcessorConfig()
        self.maintenance = maintenance or MaintenanceConfig()
        self.stats_config = stats_config or StatsConfig()
        self.clock = clock

        self.is_processing = False
        self._timer: Optional[asyncio.Task] = None
        self._ticks: Set[asyncio.Task] = set()

        self.stats = ProcessingStatsCollector(clock)
        self.events.subscribe(self.stats)

    def register_webhook_handler(self, source: str, handler: WebhookHandler) -> None:
        self.registry.register(source, handler)

    async def enqueue_webhook(
        self,
        source: str,
        payload: Any,
        channel_id: Optional[int] = None,
        priority: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
        process_after: Optional[datetime] = None,
    ) -> WebhookQueueItem:
        if isinstance(source, WebhookSource):
            source = source.value
        if source not in self.registry:
            logger.warning(f"Enqueueing webhook for source without a handler: {source}")

        if priority is None:
            priority = default_priority(source)

        try:
            item = await self.store.insert(
                source,
                payload,
                channel_id=channel_id,
                priority=priority,
                tags=tags,
                batch_id=batch_id,
                process_after=process_after,
            )
        except Exception as e:
            logger.error(f"Failed to enqueue webhook from {source}: {e}")
            self.events.emit(
                CriticalError(
                    message=f"Failed to enqueue webhook from {source}: {e}",
                    source=source,
                    occurred_at=self.clock(),
                )
            )
            raise

        metrics.enqueued_total.labels(source=source).inc()
        logger.info(f"Webhook from {source} queued with ID {item.id}, priority {item.priority}")
        return item

    async def process_queue_item(self, item: WebhookQueueItem) -> bool:
        """Run one item through its handler and record the outcome.

        Returns True on success. Handler errors, a missing handler and handler
        timeouts are recorded as failed attempts and never raised; errors
        writing the outcome to the store are.
        """
        claimed = await self._claim(item)
        if claimed is None:
            return False
        return await self._run_claimed(claimed)

    async def _claim(self, item: WebhookQueueItem) -> Optional[WebhookQueueItem]:
        try:
            claimed = await self.store.claim(item.id)
        except Exception as e:
            self.events.emit(
                CriticalError(
                    message=f"Failed to claim webhook {item.id}: {e}",
                    source=item.source,
                    item_id=item.id,
                    occurred_at=self.clock(),
                )
            )
            raise
        if claimed is None:
            logger.warning(f"Webhook {item.id} is no longer pending, skipping")
        return claimed

    async def _run_claimed(self, claimed: WebhookQueueItem) -> bool:
        start = time.perf_counter()
        try:
            handler = self.registry.require(claimed.source)
            await asyncio.wait_for(
                handler.handle_webhook(claimed.payload),
                timeout=self.processor.handler_timeout,
            )
        except asyncio.TimeoutError:
            error = f"Handler timed out after {self.processor.handler_timeout}s"
            await self._record_failure(claimed, error, _elapsed_ms(start))
            return False
        except Exception as e:
            await self._record_failure(claimed, str(e) or type(e).__name__, _elapsed_ms(start))
            return False

        processing_time_ms = _elapsed_ms(start)
        await self._record_outcome(
            claimed,
            status=QueueStatus.COMPLETED,
            completed_at=self.clock(),
            processing_time_ms=processing_time_ms,
        )
        logger.info(
            f"Processed webhook {claimed.id} from {claimed.source} in {processing_time_ms}ms"
        )
        self.events.emit(
            WebhookProcessed(
                id=claimed.id,
                source=claimed.source,
                processing_time_ms=processing_time_ms,
                occurred_at=self.clock(),
            )
        )
        return True

    async def _record_failure(
        self, item: WebhookQueueItem, error: str, processing_time_ms: int
    ) -> None:
        delay = self.retry.next_delay(item.attempts)
        attempts = item.attempts + 1
        terminal = attempts >= self.retry.max_attempts

        await self._record_outcome(
            item,
            status=QueueStatus.FAILED if terminal else QueueStatus.PENDING,
            attempts=attempts,
            last_error=error,
            process_after=self.clock() + timedelta(seconds=delay),
            processing_time_ms=processing_time_ms,
        )

        if terminal:
            logger.error(
                f"Webhook {item.id} from {item.source} failed permanently "
                f"after {attempts} attempts: {error}"
            )
        else:
            logger.warning(
                f"Webhook {item.id} from {item.source} failed after {processing_time_ms}ms "
                f"(attempt {attempts}/{self.retry.max_attempts}, retry in {delay:.0f}s): {error}"
            )

        self.events.emit(
            WebhookFailed(
                id=item.id,
                source=item.source,
                error=error,
                attempts=attempts,
                processing_time_ms=processing_time_ms,
                terminal=terminal,
                occurred_at=self.clock(),
            )
        )
        if terminal:
            self.events.emit(
                CriticalError(
                    message=f"Webhook {item.id} failed permanently after {attempts} attempts",
                    source=item.source,
                    item_id=item.id,
                    occurred_at=self.clock(),
                )
            )

    async def _record_outcome(self, item: WebhookQueueItem, **fields) -> None:
        try:
            await self.store.update(item.id, **fields)
        except Exception as e:
            self.events.emit(
                CriticalError(
                    message=f"Failed to record outcome of webhook {item.id}: {e}",
                    source=item.source,
                    item_id=item.id,
                    occurred_at=self.clock(),
                )
            )
            raise

    async def process_pending(self) -> int:
        """One processor tick. Returns the number of items claimed and run."""
        if self.is_processing:
            return 0

        self.is_processing = True
        handled = 0
        try:
            items = await self.store.select_pending(limit=self.processor.batch_size)
            metrics.batch_size.observe(len(items))
            if items:
                logger.info(f"Processing {len(items)} webhooks from the queue")
            for item in items:
                claimed = await self._claim(item)
                if claimed is None:
                    continue
                await self._run_claimed(claimed)
                handled += 1
        except Exception as e:
            logger.error(f"Error in webhook queue processor: {e}")
        finally:
            self.is_processing = False
        return handled

    def start_processor(self, interval_seconds: Optional[float] = None) -> None:
        if self._timer is not None:
            logger.warning("Webhook queue processor is already running")
            return

        interval = interval_seconds or self.processor.interval_seconds
        logger.info(f"Starting webhook queue processor (interval={interval}s)")
        self._timer = asyncio.create_task(self._run_timer(interval))

    async def _run_timer(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            # Each tick runs as its own task so stopping the timer never
            # interrupts an item in flight
            tick = asyncio.create_task(self.process_pending())
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    def stop_processor(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.info("Webhook queue processor stopped")

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    async def wait_for_inflight(self) -> None:
        if self._ticks:
            await asyncio.gather(*self._ticks, return_exceptions=True)

    def get_processing_status(self) -> bool:
        return self.is_processing

    def get_processing_stats(self) -> ProcessingStats:
        return self.stats.snapshot()

    async def get_pending_items(
        self,
        limit: int = 10,
        source: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
    ) -> List[WebhookQueueItem]:
        return await self.store.select_pending(
            limit=limit, source=source, tags=tags, batch_id=batch_id
        )

    async def count_pending_items(self, source: Optional[str] = None) -> int:
        return await self.store.count_pending(source)

    async def get_pending_items_by_channel(
        self, channel_id: int, limit: int = 5
    ) -> List[WebhookQueueItem]:
        return await self.store.select_pending(limit=limit, channel_id=channel_id)

    async def get_queue_stats_by_source(self) -> List[SourceStats]:
        return await self.store.stats_by_source()

    async def get_queue_performance_metrics(self) -> PerformanceMetrics:
        processing_times = await self.store.avg_processing_time_by_source()
        completions = await self.store.select_completion_times(self.clock() - THROUGHPUT_WINDOW)
        failure_rates = await self.store.failure_rate_by_source(self.stats_config.min_samples)
        return PerformanceMetrics(
            processing_times=[
                SourceTiming(source=source, avg_time_ms=avg) for source, avg in processing_times
            ],
            throughput=bucket_counts(completions, DAY_FORMAT),
            failure_rate=[SourceRate(source=source, rate=rate) for source, rate in failure_rates],
        )

    async def auto_rebalance_queue(self) -> int:
        cutoff = self.clock() - timedelta(minutes=self.maintenance.rebalance_age_minutes)
        count = await self.store.age_pending(cutoff)
        if count > 0:
            metrics.rebalanced_total.inc(count)
            logger.info(f"Queue rebalance: {count} items reprioritized")
        return count

    async def get_problematic_items(self, limit: int = 10) -> List[WebhookQueueItem]:
        return await self.store.select_failed(limit)

    async def cleanup_queue(self, max_age_in_days: Optional[int] = None) -> int:
        if max_age_in_days is None:
            max_age_in_days = self.maintenance.retention_days
        cutoff = self.clock() - timedelta(days=max_age_in_days)
        count = await self.store.delete_completed_before(cutoff)
        if count > 0:
            metrics.cleaned_total.inc(count)
            logger.info(f"Queue cleanup: {count} completed webhooks removed")
        return count


def build_queue_service(
    config: BaseConfig, clock: Callable[[], datetime] = utcnow
) -> WebhookQueueService:
    """Wire a queue service, its store and configured handlers from config."""
    config.validate_handler_config()

    store = QueueStore(create_engine(config.database), clock=clock)
    events = EventBus()
    events.subscribe(metrics.record_queue_event)

    service = WebhookQueueService(
        store,
        events=events,
        retry=config.retry,
        processor=config.processor,
        maintenance=config.maintenance,
        stats_config=config.stats,
        clock=clock,
    )
    for handler_config in config.handlers:
        service.register_webhook_handler(
            handler_config.source,
            HttpForwardHandler(
                source=handler_config.source,
                target_url=handler_config.target_url,
                headers=handler_config.headers,
                timeout=handler_config.timeout,
            ),
        )
    return service
