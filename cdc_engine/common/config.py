"""Configuration management for the CDC engine."""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class KafkaConfig(BaseSettings):
    """Kafka / Redpanda transport configuration."""

    model_config = SettingsConfigDict(env_prefix="KAFKA_")

    bootstrap_servers: str = "localhost:29092"
    topic_prefix: str = "cdc"
    database: str = "imdb"
    group_id: str = "clickhouse-cdc-group"
    console_url: Optional[str] = None

    def topic_for(self, table: str) -> str:
        """Debezium topic name for a source table."""
        return f"{self.topic_prefix}.{self.database}.{table}"

    def server_list(self) -> list[str]:
        """Bootstrap servers as a list."""
        return [s.strip() for s in self.bootstrap_servers.split(",") if s.strip()]


class LoaderConfig(BaseSettings):
    """Chunked bulk-load configuration."""

    model_config = SettingsConfigDict(env_prefix="LOADER_")

    chunk_size: int = Field(default=5_000_000, gt=0)
    lag_threshold: int = Field(default=1_000_000, ge=0)
    max_wait_seconds: float = Field(default=300, ge=0)
    poll_interval_seconds: float = Field(default=5, gt=0)
    wait_for_cdc: bool = False
    on_drain_timeout: str = Field(default="warn", pattern="^(warn|fail)$")


class RetentionConfig(BaseSettings):
    """Event log retention configuration."""

    model_config = SettingsConfigDict(env_prefix="RETENTION_")

    min_hours: float = 1
    max_hours: float = 168
    high_lag_threshold: int = 10_000
    superseded_seconds: float = 3600


class CompactionConfig(BaseSettings):
    """Background compaction configuration."""

    model_config = SettingsConfigDict(env_prefix="COMPACTION_")

    enabled: bool = True
    interval_seconds: float = Field(default=60, gt=0)


class ObservabilityConfig(BaseSettings):
    """Observability configuration."""

    model_config = SettingsConfigDict(env_prefix="")

    metrics_port: int = Field(default=8000, alias="METRICS_PORT")


class ApplicationConfig(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    log_level: str = "INFO"
    log_format: str = "json"
    ingest_partitions: int = Field(default=4, gt=0)
    cdc_lag_threshold_seconds: int = Field(default=300, gt=0)


class Settings(BaseSettings):
    """Main settings container."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    loader: LoaderConfig = Field(default_factory=LoaderConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    compaction: CompactionConfig = Field(default_factory=CompactionConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)
    app: ApplicationConfig = Field(default_factory=ApplicationConfig)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
