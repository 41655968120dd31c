"""
Data models for battery log samples and timeline events.

Samples are immutable pydantic models. All timestamps are normalised to
timezone-aware UTC; naive datetimes are taken to be UTC already.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, field_validator


class Event(StrEnum):
    """Event labels attached to a sample. ``NONE`` marks a periodic sample."""

    START = "Start"
    STOP = "Stop"
    CHARGING = "Charging"
    DISCHARGING = "Discharging"
    FULL = "Full"
    NONE = ""


_EVENT_LABELS = frozenset(e.value for e in Event)


def to_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Sample(BaseModel):
    """One persisted battery-state observation.

    Attributes:
        time: Observation instant (UTC). Unique within the log.
        energy: Remaining capacity.
        charging: ``True`` while the charger is connected.
        active: ``True`` while the screen is on.
        event: One of the :class:`Event` labels.
    """

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    time: datetime
    energy: float
    charging: bool
    active: bool
    event: str = Event.NONE.value

    @field_validator("time")
    @classmethod
    def _time_to_utc(cls, v: datetime) -> datetime:
        return to_utc(v)

    @field_validator("event", mode="before")
    @classmethod
    def _known_event(cls, v: object) -> str:
        if v is None:
            return Event.NONE.value
        if not isinstance(v, str) or v not in _EVENT_LABELS:
            raise ValueError(f"Unknown event label: {v!r}")
        return str(v)

    @property
    def state(self) -> tuple[float, bool, bool, str]:
        """The values compared when deciding whether to merge."""
        return (self.energy, self.charging, self.active, self.event)


class TimelineEvent(BaseModel):
    """A state-transition marker as shown in an event timeline."""

    model_config = ConfigDict(frozen=True)

    time: datetime
    energy: float
    charging: bool
    event: str

    @field_validator("time")
    @classmethod
    def _time_to_utc(cls, v: datetime) -> datetime:
        return to_utc(v)
