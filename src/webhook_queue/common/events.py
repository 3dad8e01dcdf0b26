"""Typed events published by the queue service."""

from datetime import datetime
from typing import Callable, List, Optional, Union

from loguru import logger
from pydantic import BaseModel, Field

from webhook_queue.common.models import utcnow


class WebhookProcessed(BaseModel):
    id: int
    source: str
    processing_time_ms: int
    occurred_at: datetime = Field(default_factory=utcnow)


class WebhookFailed(BaseModel):
    id: int
    source: str
    error: str
    attempts: int
    processing_time_ms: int
    terminal: bool = False
    occurred_at: datetime = Field(default_factory=utcnow)


class CriticalError(BaseModel):
    message: str
    source: Optional[str] = None
    item_id: Optional[int] = None
    occurred_at: datetime = Field(default_factory=utcnow)


QueueEvent = Union[WebhookProcessed, WebhookFailed, CriticalError]
EventListener = Callable[[QueueEvent], None]


class EventBus:
    def __init__(self):
        self._listeners: List[EventListener] = []

    def subscribe(self, listener: EventListener) -> None:
        self._listeners.append(listener)

    def emit(self, event: QueueEvent) -> None:
        # A broken listener must not affect processing or other listeners
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Event listener {listener!r} failed on {type(event).__name__}: {e}")
