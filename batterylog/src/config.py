"""
Battery log configuration loaded from environment variables.

Uses Pydantic BaseSettings for automatic env var loading and validation.
Values come from environment variables or a ``.env`` file; every setting
has a default so the log can start without any configuration.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging

from pydantic import field_validator
from pydantic_settings import BaseSettings


class BatteryLogSettings(BaseSettings):
    """Energy log configuration.

    Attributes:
        energy_log_path: SQLite database file holding the energy log.
        timeout_interval_s: Longest gap between two samples before the
            device is assumed to have been in standby. Should match the
            producer's sampling timeout.
        max_age_days: Rows older than this are pruned when the log opens.
        log_level: Root logging level name.
    """

    energy_log_path: str = "/data/energy_log.db"
    timeout_interval_s: int = 600
    max_age_days: float = 14.0
    log_level: str = "INFO"

    @field_validator("energy_log_path")
    @classmethod
    def energy_log_path_must_be_set(cls, v: str) -> str:
        """Reject an empty database path."""
        if not v.strip():
            raise ValueError("ENERGY_LOG_PATH must not be empty")
        return v

    @field_validator("timeout_interval_s")
    @classmethod
    def timeout_interval_must_be_positive(cls, v: int) -> int:
        """Validate the standby timeout is at least 1 second."""
        if v < 1:
            raise ValueError("TIMEOUT_INTERVAL_S must be >= 1")
        return v

    @field_validator("max_age_days")
    @classmethod
    def max_age_must_be_positive(cls, v: float) -> float:
        """Validate the retention age is a positive number of days."""
        if v <= 0:
            raise ValueError("MAX_AGE_DAYS must be > 0")
        return v

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Normalise to upper case and reject names logging does not know."""
        name = v.strip().upper()
        if not isinstance(logging.getLevelName(name), int):
            raise ValueError(f"LOG_LEVEL must be a logging level name (got: '{v}')")
        return name

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
