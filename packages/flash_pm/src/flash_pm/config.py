"""
Settings for the preventive-maintenance scheduling engine.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PmSettings(BaseSettings):
    """
    Tunables shared by the aggregator, the service layer and the stores.

    Values are read from the environment (prefix ``FLASH_PM_``) or a local
    ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="FLASH_PM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Basic Environment ---
    DEBUG: bool = True
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # --- Scheduling ---
    DEFAULT_TIMEZONE: str = "UTC"
    DUE_TRIGGERS_BATCH: int = 25

    # --- Overview & History Limits ---
    UPCOMING_WINDOW_DAYS: int = 7
    UPCOMING_EVENTS_LIMIT: int = 50
    RECENT_RUNS_LIMIT: int = 20
    TRIGGER_RUNS_LIMIT: int = 50

    # --- Persistence ---
    DATABASE_URL: str | None = None

    @model_validator(mode="after")
    def validate_limits(self) -> "PmSettings":
        """Rejects windows and limits that would silently empty a payload."""
        for name in (
            "DUE_TRIGGERS_BATCH",
            "UPCOMING_WINDOW_DAYS",
            "UPCOMING_EVENTS_LIMIT",
            "RECENT_RUNS_LIMIT",
            "TRIGGER_RUNS_LIMIT",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be a positive integer.")
        return self

    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT == "development"


# Singleton instance for core use
pm_settings = PmSettings()
