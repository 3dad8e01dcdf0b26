from typing import Dict, List, Optional

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseConfig(BaseModel):
    url: str = "sqlite+aiosqlite:///webhook_queue.db"
    echo: bool = False


class RetryPolicy(BaseModel):
    initial_delay: float = 30  # seconds
    backoff_factor: float = 2
    max_delay: float = 3600  # seconds
    max_attempts: int = 5

    def next_delay(self, attempts: int) -> float:
        """Delay before the next attempt, given the attempts made so far."""
        delay = self.initial_delay
        for _ in range(attempts):
            # Stop growing at the cap so large attempt counts cannot overflow
            if delay >= self.max_delay:
                break
            delay *= self.backoff_factor
        return min(delay, self.max_delay)


class ProcessorConfig(BaseModel):
    enabled: bool = True
    interval_seconds: float = 5
    batch_size: int = 10
    handler_timeout: Optional[float] = 60  # seconds, None disables


class MaintenanceConfig(BaseModel):
    rebalance_interval: float = 300  # seconds
    rebalance_age_minutes: int = 60
    cleanup_interval: float = 3600  # seconds
    retention_days: int = 7


class StatsConfig(BaseModel):
    min_samples: int = 10


class MetricsConfig(BaseModel):
    enabled: bool = True
    host: str = "127.0.0.1"
    port: int = 9090
    path: str = "/metrics"


class WebhookSourceConfig(BaseModel):
    name: str
    secret: Optional[str] = None
    signature_header: Optional[str] = None


class ForwardHandlerConfig(BaseModel):
    source: str
    target_url: str
    headers: Dict[str, str] = Field(default_factory=dict)
    timeout: int = 10  # seconds


class BaseConfig(BaseSettings):
    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="WEBHOOK_QUEUE_",
        extra="ignore",
    )

    log_level: str = "INFO"
    database: DatabaseConfig = DatabaseConfig()
    retry: RetryPolicy = RetryPolicy()
    processor: ProcessorConfig = ProcessorConfig()
    maintenance: MaintenanceConfig = MaintenanceConfig()
    stats: StatsConfig = StatsConfig()
    metrics: MetricsConfig = MetricsConfig()
    handlers: List[ForwardHandlerConfig] = []

    def validate_handler_config(self) -> None:
        seen = set()
        for handler in self.handlers:
            if handler.source in seen:
                raise ValueError(f"Duplicate handler configured for source: {handler.source}")
            seen.add(handler.source)


class CollectorConfig(BaseConfig):
    host: str = "0.0.0.0"
    port: int = 8000
    admin_token: Optional[str] = None
    webhook_sources: List[WebhookSourceConfig] = []


class ProcessorAppConfig(BaseConfig):
    pass
