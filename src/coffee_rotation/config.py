"""Application configuration loading.

Config is split into sections (log, db, kafka, outbox, rotation) to simplify
maintenance and testing. AppConfig composes them.
"""

from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV = SettingsConfigDict(
    env_file=".env",
    env_file_encoding="utf-8",
    extra="ignore",
)

_FLAT_KEYS = {
    "log": ["LOG_LEVEL", "LOG_FORMAT"],
    "db": [
        "DATABASE_URL",
        "DB_POOL_SIZE",
        "DB_MAX_OVERFLOW",
        "DB_POOL_TIMEOUT",
    ],
    "kafka": [
        "KAFKA_ENABLED",
        "KAFKA_BOOTSTRAP_SERVERS",
        "KAFKA_CLIENT_ID",
        "KAFKA_SEND_TIMEOUT_SECONDS",
        "KAFKA_REQUEST_TIMEOUT_MS",
    ],
    "outbox": [
        "OUTBOX_MAX_RETRIES",
        "OUTBOX_BATCH_SIZE",
        "OUTBOX_POLL_INTERVAL_MS",
        "OUTBOX_CLEANUP_RETENTION_DAYS",
        "OUTBOX_CLEANUP_HOUR",
        "OUTBOX_CLEANUP_MINUTE",
        "OUTBOX_CLEANUP_TIMEZONE",
        "OUTBOX_METRICS_PORT",
    ],
    "rotation": ["NEXT_PAYMENT_SUBJECT", "SKIP_PAYMENT_SUBJECT"],
}


def _is_flat_dict(obj: Any) -> bool:
    if not isinstance(obj, dict):
        return False
    # Flat: has env-style keys and no nested section
    flat_markers = {key for keys in _FLAT_KEYS.values() for key in keys}
    return bool(flat_markers & set(obj.keys())) or obj == {}


def _flat_to_nested(flat: dict[str, Any]) -> dict[str, dict[str, Any]]:
    return {
        section: {k: flat[k] for k in keys if k in flat}
        for section, keys in _FLAT_KEYS.items()
    }


# --- Section configs (each reads from env via BaseSettings) ---


class LogConfig(BaseSettings):
    model_config = _ENV

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="text", alias="LOG_FORMAT")

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.strip().upper()


class DbConfig(BaseSettings):
    model_config = _ENV

    database_url: str = Field(default="", alias="DATABASE_URL")
    pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=10, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")


class KafkaConfig(BaseSettings):
    model_config = _ENV

    kafka_enabled: bool = Field(default=True, alias="KAFKA_ENABLED")
    kafka_bootstrap_servers: str = Field(
        default="kafka:9092", alias="KAFKA_BOOTSTRAP_SERVERS"
    )
    kafka_client_id: str = Field(default="coffee-rotation", alias="KAFKA_CLIENT_ID")
    kafka_send_timeout_seconds: float = Field(
        default=10.0, alias="KAFKA_SEND_TIMEOUT_SECONDS"
    )
    kafka_request_timeout_ms: int = Field(
        default=10000, alias="KAFKA_REQUEST_TIMEOUT_MS"
    )


class OutboxConfig(BaseSettings):
    model_config = _ENV

    max_retries: int = Field(default=5, ge=1, alias="OUTBOX_MAX_RETRIES")
    batch_size: int = Field(default=100, ge=1, alias="OUTBOX_BATCH_SIZE")
    poll_interval_ms: int = Field(default=5000, ge=1, alias="OUTBOX_POLL_INTERVAL_MS")
    cleanup_retention_days: int = Field(
        default=7, ge=0, alias="OUTBOX_CLEANUP_RETENTION_DAYS"
    )
    cleanup_hour: int = Field(default=0, ge=0, le=23, alias="OUTBOX_CLEANUP_HOUR")
    cleanup_minute: int = Field(
        default=0, ge=0, le=59, alias="OUTBOX_CLEANUP_MINUTE"
    )
    cleanup_timezone: str = Field(default="UTC", alias="OUTBOX_CLEANUP_TIMEZONE")
    metrics_port: int = Field(default=0, ge=0, alias="OUTBOX_METRICS_PORT")

    @field_validator("cleanup_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @property
    def poll_interval_seconds(self) -> float:
        return self.poll_interval_ms / 1000


class RotationConfig(BaseSettings):
    model_config = _ENV

    next_payment_subject: str = Field(
        default="next-payment", alias="NEXT_PAYMENT_SUBJECT"
    )
    skip_payment_subject: str = Field(
        default="skip-payment", alias="SKIP_PAYMENT_SUBJECT"
    )


# --- Composite ---


class AppConfig(BaseModel):
    """Application configuration."""

    model_config = {"extra": "forbid"}

    log: LogConfig
    db: DbConfig
    kafka: KafkaConfig
    outbox: OutboxConfig
    rotation: RotationConfig

    @model_validator(mode="before")
    @classmethod
    def _handle_flat_dict(cls, data: Any) -> Any:
        if not _is_flat_dict(data):
            return data
        nested = _flat_to_nested(data if isinstance(data, dict) else {})
        return {
            "log": LogConfig(**nested["log"]),
            "db": DbConfig(**nested["db"]),
            "kafka": KafkaConfig(**nested["kafka"]),
            "outbox": OutboxConfig(**nested["outbox"]),
            "rotation": RotationConfig(**nested["rotation"]),
        }


def load_config() -> AppConfig:
    """Load config from env (.env)."""
    return AppConfig.model_validate({})
