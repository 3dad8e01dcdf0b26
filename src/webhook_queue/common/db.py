from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from webhook_queue.common.config import DatabaseConfig
from webhook_queue.common.models import DEFAULT_PRIORITY, QueueStatus


class Base(DeclarativeBase):
    pass


class WebhookQueueRecord(Base):
    __tablename__ = "webhook_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    channel_id: Mapped[Optional[int]] = mapped_column(Integer)
    payload: Mapped[Any] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=QueueStatus.PENDING.value
    )
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=DEFAULT_PRIORITY)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    tags: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    batch_id: Mapped[Optional[str]] = mapped_column(String(64))
    process_after: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        Index("ix_webhook_queue_pickup", "status", "process_after", "priority", "created_at"),
        Index("ix_webhook_queue_source", "source"),
        Index("ix_webhook_queue_channel", "channel_id"),
        Index("ix_webhook_queue_batch", "batch_id"),
    )

    def __repr__(self) -> str:
        return f"<WebhookQueueRecord {self.id} {self.source} ({self.status})>"


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    return create_async_engine(config.url, echo=config.echo)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )
