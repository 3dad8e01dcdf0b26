from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the queue table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class QueueStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class WebhookSource(str, Enum):
    TWILIO = "twilio"
    TWILIO_SMS = "twilio-sms"
    META = "meta"  # Messenger and Instagram share one endpoint
    MESSENGER = "messenger"
    INSTAGRAM = "instagram"
    TELEGRAM = "telegram"
    ZAPAPI = "zapapi"
    WHATSAPP_BUSINESS = "whatsapp-business"
    SENDGRID = "sendgrid"
    SLACK = "slack"
    DISCORD = "discord"
    ASAAS = "asaas"
    TEST = "test"


class MetaObjectType(str, Enum):
    INSTAGRAM = "instagram"
    PAGE = "page"


# Lower number = processed first
SOURCE_PRIORITIES = {
    WebhookSource.TWILIO: 2,
    WebhookSource.TWILIO_SMS: 3,
    WebhookSource.ZAPAPI: 2,
    WebhookSource.WHATSAPP_BUSINESS: 2,
    WebhookSource.MESSENGER: 4,
    WebhookSource.INSTAGRAM: 4,
    WebhookSource.TELEGRAM: 3,
    WebhookSource.SENDGRID: 6,
    WebhookSource.ASAAS: 7,
    WebhookSource.SLACK: 5,
    WebhookSource.DISCORD: 5,
    WebhookSource.TEST: 10,
}

DEFAULT_PRIORITY = 5


def default_priority(source: str) -> int:
    try:
        return SOURCE_PRIORITIES.get(WebhookSource(source), DEFAULT_PRIORITY)
    except ValueError:
        return DEFAULT_PRIORITY


class WebhookQueueItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    source: str
    channel_id: Optional[int] = None
    payload: Any = None
    status: QueueStatus = QueueStatus.PENDING
    priority: int = DEFAULT_PRIORITY
    attempts: int = 0
    last_error: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    batch_id: Optional[str] = None
    process_after: datetime
    processing_time_ms: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None


class ProcessingStats(BaseModel):
    total_processed: int = 0
    success_count: int = 0
    failure_count: int = 0
    last_processed_time: Optional[datetime] = None
    avg_processing_time: float = 0.0
    critical_errors: int = 0
    uptime: int = 0  # seconds


class SourceStats(BaseModel):
    source: str
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    avg_processing_time_ms: Optional[float] = None


class SourceTiming(BaseModel):
    source: str
    avg_time_ms: float


class SourceRate(BaseModel):
    source: str
    rate: float


class ThroughputBucket(BaseModel):
    date: str
    count: int


class PeriodBucket(BaseModel):
    date: str
    source: str
    count: int = 0
    success: int = 0
    failed: int = 0


class HourVolume(BaseModel):
    hour: int
    count: int


class PerformanceMetrics(BaseModel):
    processing_times: List[SourceTiming] = Field(default_factory=list)
    throughput: List[ThroughputBucket] = Field(default_factory=list)
    failure_rate: List[SourceRate] = Field(default_factory=list)


class AdvancedMetrics(BaseModel):
    volume_by_hour: List[HourVolume] = Field(default_factory=list)
    avg_processing_time_by_source: List[SourceTiming] = Field(default_factory=list)
    error_rate_by_source: List[SourceRate] = Field(default_factory=list)
