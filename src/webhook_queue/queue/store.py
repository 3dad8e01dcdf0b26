from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from webhook_queue.common.db import Base, WebhookQueueRecord, create_session_factory
from webhook_queue.common.models import (
    DEFAULT_PRIORITY,
    QueueStatus,
    SourceStats,
    WebhookQueueItem,
    utcnow,
)

Q = WebhookQueueRecord

# Rows fetched per query when tag filtering has to happen in Python
TAG_PAGE_SIZE = 100


def _status_count(status: QueueStatus):
    return func.sum(case((Q.status == status.value, 1), else_=0))


class QueueStore:
    """Persistence and query surface for webhook queue items.

    Every method opens its own session and commits before returning, and
    returns detached ``WebhookQueueItem`` snapshots. Database errors are not
    caught here.
    """

    def __init__(self, engine: AsyncEngine, clock: Callable[[], datetime] = utcnow):
        self.engine = engine
        self._sessions = create_session_factory(engine)
        self._clock = clock

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    async def insert(
        self,
        source: str,
        payload: Any,
        channel_id: Optional[int] = None,
        priority: int = DEFAULT_PRIORITY,
        tags: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
        process_after: Optional[datetime] = None,
    ) -> WebhookQueueItem:
        now = self._clock()
        record = Q(
            source=source,
            channel_id=channel_id,
            payload=payload,
            status=QueueStatus.PENDING.value,
            priority=priority,
            attempts=0,
            last_error=None,
            tags=list(tags or []),
            batch_id=batch_id,
            process_after=process_after or now,
            processing_time_ms=None,
            created_at=now,
            updated_at=now,
            completed_at=None,
        )
        async with self._sessions() as session:
            async with session.begin():
                session.add(record)
        return WebhookQueueItem.model_validate(record)

    async def update(self, item_id: int, **fields) -> bool:
        fields.setdefault("updated_at", self._clock())
        if isinstance(fields.get("status"), QueueStatus):
            fields["status"] = fields["status"].value
        statement = (
            update(Q)
            .where(Q.id == item_id)
            .values(**fields)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(statement)
        return result.rowcount > 0

    async def claim(self, item_id: int) -> Optional[WebhookQueueItem]:
        """Flip a pending item to processing in a single conditional update.

        Returns the claimed item, or None when the item is no longer pending.
        """
        statement = (
            update(Q)
            .where(Q.id == item_id, Q.status == QueueStatus.PENDING.value)
            .values(status=QueueStatus.PROCESSING.value, updated_at=self._clock())
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(statement)
                if result.rowcount != 1:
                    return None
                record = await session.get(Q, item_id)
                return WebhookQueueItem.model_validate(record)

    async def get(self, item_id: int) -> Optional[WebhookQueueItem]:
        async with self._sessions() as session:
            record = await session.get(Q, item_id)
            return WebhookQueueItem.model_validate(record) if record else None

    def _eligible(self):
        return select(Q).where(
            Q.status == QueueStatus.PENDING.value,
            Q.process_after <= self._clock(),
        )

    async def select_pending(
        self,
        limit: int = 10,
        source: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        batch_id: Optional[str] = None,
        channel_id: Optional[int] = None,
    ) -> List[WebhookQueueItem]:
        query = self._eligible()
        if source:
            query = query.where(Q.source == source)
        if batch_id:
            query = query.where(Q.batch_id == batch_id)
        if channel_id is not None:
            query = query.where(Q.channel_id == channel_id)
        query = query.order_by(Q.priority.asc(), Q.created_at.asc(), Q.id.asc())

        wanted = set(tags or [])
        if not wanted:
            async with self._sessions() as session:
                records = (await session.scalars(query.limit(limit))).all()
            return [WebhookQueueItem.model_validate(record) for record in records]

        # Tags live in a JSON column, so containment is checked here a page at a time
        page_size = max(limit, TAG_PAGE_SIZE)
        items: List[WebhookQueueItem] = []
        offset = 0
        async with self._sessions() as session:
            while len(items) < limit:
                records = (await session.scalars(query.limit(page_size).offset(offset))).all()
                for record in records:
                    item = WebhookQueueItem.model_validate(record)
                    if wanted.issubset(item.tags):
                        items.append(item)
                if len(records) < page_size:
                    break
                offset += page_size
        return items[:limit]

    async def count_pending(self, source: Optional[str] = None) -> int:
        query = select(func.count()).select_from(Q).where(
            Q.status == QueueStatus.PENDING.value,
            Q.process_after <= self._clock(),
        )
        if source:
            query = query.where(Q.source == source)
        async with self._sessions() as session:
            return int(await session.scalar(query) or 0)

    async def select_failed(self, limit: int = 10) -> List[WebhookQueueItem]:
        query = (
            select(Q)
            .where(Q.status == QueueStatus.FAILED.value)
            .order_by(Q.attempts.desc(), Q.updated_at.desc(), Q.id.desc())
            .limit(limit)
        )
        async with self._sessions() as session:
            records = (await session.scalars(query)).all()
        return [WebhookQueueItem.model_validate(record) for record in records]

    async def select_recent(
        self,
        limit: int = 50,
        source: Optional[str] = None,
        status: Optional[QueueStatus] = None,
    ) -> List[WebhookQueueItem]:
        query = select(Q)
        if source:
            query = query.where(Q.source == source)
        if status:
            query = query.where(Q.status == QueueStatus(status).value)
        query = query.order_by(Q.created_at.desc(), Q.id.desc()).limit(limit)
        async with self._sessions() as session:
            records = (await session.scalars(query)).all()
        return [WebhookQueueItem.model_validate(record) for record in records]

    async def age_pending(self, created_before: datetime) -> int:
        """Decrement priority of old pending items, never below 1."""
        statement = (
            update(Q)
            .where(
                Q.status == QueueStatus.PENDING.value,
                Q.created_at < created_before,
                Q.priority > 1,
            )
            .values(priority=Q.priority - 1)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(statement)
        return result.rowcount or 0

    async def delete_completed_before(self, cutoff: datetime) -> int:
        statement = (
            delete(Q)
            .where(Q.status == QueueStatus.COMPLETED.value, Q.completed_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions() as session:
            async with session.begin():
                result = await session.execute(statement)
        return result.rowcount or 0

    async def stats_by_source(self) -> List[SourceStats]:
        pending = _status_count(QueueStatus.PENDING).label("pending")
        failed = _status_count(QueueStatus.FAILED).label("failed")
        query = (
            select(
                Q.source,
                pending,
                _status_count(QueueStatus.PROCESSING).label("processing"),
                _status_count(QueueStatus.COMPLETED).label("completed"),
                failed,
                func.avg(
                    case((Q.processing_time_ms > 0, Q.processing_time_ms), else_=None)
                ).label("avg_processing_time_ms"),
            )
            .group_by(Q.source)
            .order_by(pending.desc(), failed.desc())
        )
        async with self._sessions() as session:
            rows = (await session.execute(query)).all()
        return [
            SourceStats(
                source=row.source,
                pending=int(row.pending or 0),
                processing=int(row.processing or 0),
                completed=int(row.completed or 0),
                failed=int(row.failed or 0),
                avg_processing_time_ms=(
                    float(row.avg_processing_time_ms)
                    if row.avg_processing_time_ms is not None
                    else None
                ),
            )
            for row in rows
        ]

    async def avg_processing_time_by_source(
        self, since: Optional[datetime] = None
    ) -> List[Tuple[str, float]]:
        avg_time = func.avg(Q.processing_time_ms).label("avg_time")
        query = select(Q.source, avg_time).where(Q.processing_time_ms.is_not(None))
        if since:
            query = query.where(Q.created_at >= since)
        query = query.group_by(Q.source).order_by(avg_time.desc())
        async with self._sessions() as session:
            rows = (await session.execute(query)).all()
        return [(row.source, float(row.avg_time or 0)) for row in rows]

    async def failure_rate_by_source(
        self, min_samples: int, since: Optional[datetime] = None
    ) -> List[Tuple[str, float]]:
        total = func.count().label("total")
        query = select(Q.source, _status_count(QueueStatus.FAILED).label("failed"), total)
        if since:
            query = query.where(Q.created_at >= since)
        query = query.group_by(Q.source).having(func.count() > min_samples)
        async with self._sessions() as session:
            rows = (await session.execute(query)).all()
        rates = [(row.source, int(row.failed or 0) / int(row.total)) for row in rows]
        return sorted(rates, key=lambda rate: rate[1], reverse=True)

    async def select_activity(self, since: datetime) -> List[Tuple[datetime, str, str]]:
        """(created_at, source, status) for every item created since ``since``."""
        query = select(Q.created_at, Q.source, Q.status).where(Q.created_at >= since)
        async with self._sessions() as session:
            rows = (await session.execute(query)).all()
        return [(row.created_at, row.source, row.status) for row in rows]

    async def select_completion_times(self, since: datetime) -> List[datetime]:
        query = select(Q.completed_at).where(
            Q.status == QueueStatus.COMPLETED.value,
            Q.completed_at >= since,
        )
        async with self._sessions() as session:
            return list((await session.scalars(query)).all())
