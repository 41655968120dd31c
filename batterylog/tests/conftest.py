"""
Shared test fixtures for battery log tests.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path

import pytest
from batterylog.src.energy_log import EnergyLog

# All BatteryLogSettings environment variable names, used for cleanup.
_ALL_BATTERYLOG_ENV_VARS = (
    "ENERGY_LOG_PATH",
    "TIMEOUT_INTERVAL_S",
    "MAX_AGE_DAYS",
    "LOG_LEVEL",
)

# Standby timeout used by the energy_log fixture.
TIMEOUT_S = 600


@pytest.fixture(autouse=True)
def _clean_batterylog_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all battery log env vars and isolate from .env files.

    Changes working directory to tmp_path so no .env file is accidentally
    loaded by Pydantic BaseSettings.
    """
    for var in _ALL_BATTERYLOG_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def t0() -> datetime:
    """A fixed reference instant for deterministic timestamps."""
    return datetime(2026, 10, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "energy_log.db"


@pytest.fixture()
def energy_log(db_path: Path) -> Iterator[EnergyLog]:
    """An energy log on a fresh database file, closed after the test."""
    log = EnergyLog(path=db_path, timeout_interval_s=TIMEOUT_S)
    yield log
    log.close()
