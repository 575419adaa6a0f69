from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from svgwrap.core.constants import (
    DEFAULT_HISTORY_DB_PATH,
    DELIVERY_DELAY_SECONDS,
    HISTORY_RECORD_SIZE_ESTIMATE,
    HISTORY_RETENTION_DAYS,
    MAX_FILE_SIZE,
    SUPPORTED_MIME_TYPES,
)


class Settings(BaseSettings):
    # Application
    app_name: str = Field(default="svgwrap", description="Application name")
    log_level: str = Field(default="INFO", description="Logging level")
    json_logs: bool = Field(default=False, description="Render logs as JSON")

    # Logging
    logging_enabled: bool = Field(
        default=False, description="Also write logs to a rotating file"
    )
    log_dir: str = Field(default="./logs", description="Directory for log files")
    max_log_size_mb: int = Field(
        default=10, description="Maximum size of each log file in MB"
    )
    log_backup_count: int = Field(
        default=3, description="Number of backup log files to keep"
    )

    # Inputs
    max_file_size: int = Field(
        default=MAX_FILE_SIZE, description="Max input image size in bytes (10MiB)"
    )
    supported_mime_types: Union[str, List[str]] = Field(
        default_factory=lambda: list(SUPPORTED_MIME_TYPES),
        description="Accepted input MIME types (comma-separated in env)",
    )

    # Orchestration
    max_concurrency: Optional[int] = Field(
        default=None,
        description="Concurrent encodes per batch (default: CPU count)",
    )
    encode_timeout: Optional[float] = Field(
        default=None, description="Deadline for a single encode in seconds"
    )

    # History
    history_db_path: str = Field(
        default=DEFAULT_HISTORY_DB_PATH, description="SQLite history database"
    )
    history_record_size_estimate: int = Field(
        default=HISTORY_RECORD_SIZE_ESTIMATE,
        description="Assumed average record size for storage estimates",
    )
    history_retention_days: int = Field(
        default=HISTORY_RETENTION_DAYS, description="Days to retain history"
    )

    # Delivery
    output_dir: str = Field(default="./output", description="Delivery directory")
    delivery_delay_seconds: float = Field(
        default=DELIVERY_DELAY_SECONDS,
        description="Pause between successive deliveries",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="SVGWRAP_",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"log_level must be one of {allowed}")
        return v.upper()

    @field_validator("max_concurrency")
    @classmethod
    def validate_max_concurrency(cls, v):
        if v is not None and v < 1:
            raise ValueError("max_concurrency must be at least 1")
        return v

    @field_validator("encode_timeout")
    @classmethod
    def validate_encode_timeout(cls, v):
        if v is not None and v <= 0:
            raise ValueError("encode_timeout must be positive")
        return v

    @field_validator("max_file_size", "history_record_size_estimate")
    @classmethod
    def validate_positive_size(cls, v):
        if v <= 0:
            raise ValueError("size values must be positive")
        return v

    @field_validator("supported_mime_types", mode="before")
    @classmethod
    def parse_comma_separated_list(cls, v):
        """Parse comma-separated string into list."""
        if isinstance(v, str):
            return [item.strip().lower() for item in v.split(",") if item.strip()]
        return [str(item).lower() for item in v]


settings = Settings()
