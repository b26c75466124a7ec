"""Configuration models and loading utilities."""

import os
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

CONFIG_ENV_VAR = "SMART_PARKING_CONFIG"


class SlotConfig(BaseModel):
    """A single parking slot."""

    id: int
    name: str = ""

    @model_validator(mode="after")
    def default_name(self) -> "SlotConfig":
        """Fall back to "Slot <id>" when no name is given."""
        if not self.name:
            self.name = f"Slot {self.id}"
        return self


class LifecycleConfig(BaseModel):
    """Grace windows of the slot lifecycle."""

    confirm_window_seconds: float = Field(10.0, gt=0)  # Before an unconfirmed arrival is released
    payment_window_seconds: float = Field(10.0, gt=0)  # Before an unanswered payment choice is released

    @property
    def confirm_window(self) -> timedelta:
        return timedelta(seconds=self.confirm_window_seconds)

    @property
    def payment_window(self) -> timedelta:
        return timedelta(seconds=self.payment_window_seconds)


class PaymentConfig(BaseModel):
    """Billing shown on the payment summary."""

    rate_per_minute: Decimal = Field(Decimal("2"), ge=0)
    currency: str = "INR"


class EventsConfig(BaseModel):
    """Event history kept for polling clients."""

    history_size: int = Field(100, gt=0)


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = "0.0.0.0"
    port: int = 8000


def _default_slots() -> list[SlotConfig]:
    return [SlotConfig(id=i, name=f"Slot {i}") for i in (1, 2, 3)]


class AppConfig(BaseModel):
    """Main application configuration."""

    slots: list[SlotConfig] = Field(default_factory=_default_slots)
    lifecycle: LifecycleConfig = LifecycleConfig()
    payment: PaymentConfig = PaymentConfig()
    events: EventsConfig = EventsConfig()
    api: APIConfig = APIConfig()
    log_level: str = "INFO"

    @field_validator("slots")
    @classmethod
    def unique_slot_ids(cls, v: list[SlotConfig]) -> list[SlotConfig]:
        """Reject duplicate slot ids."""
        ids = [s.id for s in v]
        if len(ids) != len(set(ids)):
            raise ValueError(f"Duplicate slot ids in configuration: {ids}")
        return v

    @field_validator("log_level")
    @classmethod
    def upper_log_level(cls, v: str) -> str:
        return v.upper()


def load_config(path: str | Path) -> AppConfig:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the configuration file

    Returns:
        Validated AppConfig instance

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If config is invalid
    """
    config_path = Path(path)

    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path) as f:
        data = yaml.safe_load(f)

    return AppConfig(**(data or {}))


def get_config_path() -> Path:
    """Get the default configuration file path."""
    # Explicit override wins
    env_config = os.environ.get(CONFIG_ENV_VAR)
    if env_config:
        return Path(env_config)

    # Check for config in current directory first
    local_config = Path("config/config.yaml")
    if local_config.exists():
        return local_config

    # Check for config in parent directory (for Docker)
    parent_config = Path("/app/config/config.yaml")
    if parent_config.exists():
        return parent_config

    return local_config  # Return default even if doesn't exist
