"""Pipecount configuration settings using pydantic-settings."""

import logging
from functools import cached_property
from pathlib import Path
from typing import Any

import yaml
from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Configuration settings for the pipecount client.

    Settings are loaded from environment variables with the PIPECOUNT_ prefix.
    For example, PIPECOUNT_HISTORY_CAPACITY=20 sets history_capacity to 20.
    Values in the optional YAML file (config_file) apply only where no
    environment variable is set.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPECOUNT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Server settings
    server_url: str = "http://localhost:8000"
    health_path: str = "/health/ready"
    request_timeout: float = 30.0
    max_retries: int = 3
    model_version: str = "gemini-2.5-flash"

    # Connectivity
    connectivity_interval: float = 5.0  # seconds between reachability probes

    # History
    history_capacity: int = 50

    # Capture
    jpeg_quality: int = 85

    # File paths
    data_dir: Path = Path("~/.local/share/pipecount")
    config_file: Path = Path("~/.config/pipecount/config.yaml")

    # Logging
    log_level: str = "INFO"
    log_file: Path | None = None

    # Mock services, used when no analysis server is available
    use_mock_services: bool = False
    mock_delay_min: float = 1.0
    mock_delay_max: float = 2.0
    mock_failure_rate: float = 0.05
    mock_inventory_failure_rate: float = 0.1

    @model_validator(mode="before")
    @classmethod
    def apply_config_file(cls, data: Any) -> Any:
        """Fill unset fields from the YAML config file if one exists."""
        if not isinstance(data, dict):
            return data
        config_file = Path(data.get("config_file") or cls.model_fields["config_file"].default)
        overrides = load_yaml_overrides(config_file.expanduser())
        for key, value in overrides.items():
            data.setdefault(key, value)
        return data

    @field_validator("history_capacity", "max_retries")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        """Ensure counts are at least one."""
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("mock_failure_rate", "mock_inventory_failure_rate")
    @classmethod
    def validate_rate(cls, v: float) -> float:
        """Ensure failure rates are probabilities."""
        if v < 0 or v > 1:
            raise ValueError("failure rate must be between 0 and 1")
        return v

    @field_validator("jpeg_quality")
    @classmethod
    def validate_jpeg_quality(cls, v: int) -> int:
        """Ensure JPEG quality is within valid range."""
        if v < 1 or v > 100:
            raise ValueError("jpeg_quality must be between 1 and 100")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_mock_delay(self) -> "Settings":
        if self.mock_delay_min < 0 or self.mock_delay_min > self.mock_delay_max:
            raise ValueError("mock_delay_min must be between 0 and mock_delay_max")
        return self

    @cached_property
    def data_path(self) -> Path:
        """Return expanded data directory path."""
        return self.data_dir.expanduser()

    @property
    def queue_db_path(self) -> Path:
        return self.data_path / "queue.db"

    @property
    def history_path(self) -> Path:
        return self.data_path / "history.json"

    @property
    def captures_path(self) -> Path:
        return self.data_path / "captures"

    @property
    def consent_path(self) -> Path:
        return self.data_path / "consent"

    @property
    def health_url(self) -> str:
        return f"{self.server_url.rstrip('/')}{self.health_path}"


def load_yaml_overrides(path: Path) -> dict[str, Any]:
    """Load setting overrides from a YAML mapping.

    Returns an empty dict when the file is missing or unreadable.
    """
    if not path.exists():
        return {}

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (yaml.YAMLError, OSError) as e:
        logger.warning("Failed to load config overrides from %s: %s", path, e)
        return {}

    if not isinstance(data, dict):
        return {}
    return {str(k): v for k, v in data.items()}
