"""
Configuration management using Pydantic models loaded from YAML.
"""

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator


class BookingConfig(BaseModel):
    """Booking defaults."""
    default_slot_interval_minutes: int = 30
    poll_interval_seconds: float = 30.0

    @field_validator("default_slot_interval_minutes")
    @classmethod
    def validate_interval(cls, value: int) -> int:
        """Ensure the slot step is positive."""
        if value <= 0:
            raise ValueError("default_slot_interval_minutes must be greater than zero")
        return value

    @field_validator("poll_interval_seconds")
    @classmethod
    def validate_poll_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("poll_interval_seconds must be greater than zero")
        return value


class RetryConfig(BaseModel):
    """Bounded retry settings for read-only catalog refreshes."""
    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 5.0

    @field_validator("max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("max_attempts must be at least 1")
        return value

    @model_validator(mode="after")
    def validate_delays(self) -> "RetryConfig":
        """Ensure delays are non-negative and the cap is not below the base."""
        if self.base_delay_seconds < 0:
            raise ValueError("base_delay_seconds must not be negative")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ValueError("max_delay_seconds must not be lower than base_delay_seconds")
        return self


class AppConfig(BaseModel):
    """Application configuration."""
    backend_url: str
    tenant: str
    site_url: str = "http://localhost:3000"
    timezone: str = "Europe/Stockholm"
    currency: str = "SEK"
    request_timeout_seconds: float = 10.0
    log_level: str = "INFO"
    booking: BookingConfig = Field(default_factory=BookingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)

    @field_validator("tenant")
    @classmethod
    def validate_tenant(cls, value: str) -> str:
        """The tenant is sent on every request and must not be blank."""
        value = value.strip()
        if not value:
            raise ValueError("tenant must not be empty")
        return value

    @field_validator("backend_url", "site_url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip().rstrip("/")
        if not value.startswith(("http://", "https://")):
            raise ValueError(f"URL must start with http:// or https://, got {value!r}")
        return value

    @field_validator("request_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("request_timeout_seconds must be greater than zero")
        return value

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {value}")
        return level

    @property
    def success_url(self) -> str:
        return f"{self.site_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}"

    @property
    def cancel_url(self) -> str:
        return f"{self.site_url}/checkout/cancel"

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        ``SALONKIT_BACKEND_URL`` and ``SALONKIT_TENANT`` override the file
        values when set.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        for env_name, key in (("SALONKIT_BACKEND_URL", "backend_url"), ("SALONKIT_TENANT", "tenant")):
            override = os.environ.get(env_name)
            if override:
                data[key] = override

        return cls(**data)


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of salonkit/)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
