"""
Pure arithmetic behind the energy log: ingest decisions, boundary
interpolation, event de-duplication and discharge power averaging.

Nothing in this module touches the database. The store fetches rows and
hands them here, so every rule can be tested with plain ``Sample`` lists.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import math
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from batterylog.src.models import Event, Sample, TimelineEvent

_SECONDS_PER_HOUR = 3600
_SECONDS_PER_DAY = 86400


# ------------------------------------------------------------------
# Ingestion
# ------------------------------------------------------------------


class IngestAction(Enum):
    """What ``record_sample`` does with a new reading."""

    INSERT = "insert"
    MERGE = "merge"
    BACKFILL = "backfill"


@dataclass(frozen=True)
class IngestDecision:
    """Outcome of :func:`decide_ingest`.

    Attributes:
        action: The chosen branch.
        sample: The incoming sample.
        backfill: Synthetic standby sample to insert before ``sample``;
            only set for ``IngestAction.BACKFILL``.
    """

    action: IngestAction
    sample: Sample
    backfill: Sample | None = None


def decide_ingest(
    last: Sample | None,
    sample: Sample,
    timeout_interval_s: float,
) -> IngestDecision:
    """Choose between back-fill, merge and plain insert for *sample*.

    The sampling timer cannot wake the device, so an "active" reading that
    arrives more than *timeout_interval_s* after the previous one means the
    device was most likely in standby for the rest of the gap. A standby
    row is synthesised at ``last.time + timeout_interval_s`` carrying the
    previous energy and charging state.

    Otherwise a reading identical to the previous one (energy, charging,
    active, event) is merged into the previous row.

    Args:
        last: The last sample written by this process, or ``None``.
        sample: The incoming sample.
        timeout_interval_s: Maximum gap between samples before a standby
            period is assumed.

    Returns:
        The tagged decision.
    """
    if last is None:
        return IngestDecision(IngestAction.INSERT, sample)

    elapsed_s = (sample.time - last.time).total_seconds()
    if sample.active and sample.event != Event.START and elapsed_s > timeout_interval_s:
        backfill = Sample(
            time=last.time + timedelta(seconds=timeout_interval_s),
            energy=last.energy,
            charging=last.charging,
            active=False,
            event=Event.NONE,
        )
        return IngestDecision(IngestAction.BACKFILL, sample, backfill)

    if sample.state == last.state:
        return IngestDecision(IngestAction.MERGE, sample)

    return IngestDecision(IngestAction.INSERT, sample)


# ------------------------------------------------------------------
# Window boundaries
# ------------------------------------------------------------------


def interpolate_energy(inner: Sample, outer: Sample, at: datetime) -> float:
    """Linearly blend the energy of *inner* and *outer* at instant *at*."""
    s = (at - inner.time) / (outer.time - inner.time)
    return inner.energy * (1 - s) + outer.energy * s


def boundary_sample(inner: Sample, outer: Sample, at: datetime) -> Sample:
    """Synthesise a sample at *at* between a row inside and one outside a window.

    Energy is interpolated; charging, active and event are copied from the
    real row outside the window (*outer*). Flags are never interpolated.
    """
    return Sample(
        time=at,
        energy=interpolate_energy(inner, outer, at),
        charging=outer.charging,
        active=outer.active,
        event=outer.event,
    )


def extend_window(
    samples: Sequence[Sample],
    start: datetime,
    end: datetime,
    before: Sample | None,
    after: Sample | None,
) -> list[Sample]:
    """Add interpolated samples at the exact edges of a query window.

    Args:
        samples: Rows strictly inside ``(start, end)``, ascending.
        start: Window start.
        end: Window end.
        before: Nearest stored row at or before *start*, if any.
        after: Nearest stored row at or after *end*, if any.

    Returns:
        A new ascending list. The end edge is skipped when the last row in
        the window is a "Stop" event (nothing was logged after it); the
        start edge is skipped when the first row is a "Start" event (nothing
        was logged before it). A window that holds exactly one row is
        returned unchanged. An empty window between two real rows yields the
        two edge samples unless logging was stopped across it.
    """
    if not samples:
        if before is None or after is None or before.event == Event.STOP:
            return []
        return [
            boundary_sample(after, before, start),
            boundary_sample(before, after, end),
        ]

    result = list(samples)
    if len(result) < 2:
        return result

    last = result[-1]
    if after is not None and last.event != Event.STOP:
        result.append(boundary_sample(last, after, end))

    first = result[0]
    if before is not None and first.event != Event.START:
        result.insert(0, boundary_sample(first, before, start))

    return result


# ------------------------------------------------------------------
# Aggregates
# ------------------------------------------------------------------


def collapse_repeated_events(events: Iterable[TimelineEvent]) -> list[TimelineEvent]:
    """Keep only the first of each run of consecutive identical event labels."""
    collapsed: list[TimelineEvent] = []
    previous: str | None = None
    for entry in events:
        if entry.event != previous:
            collapsed.append(entry)
            previous = entry.event
    return collapsed


def average_discharge_power(samples: Sequence[Sample]) -> int:
    """Average discharge power over consecutive discharging samples.

    Pairs where energy rose (sensor noise, short charging blips) are
    skipped, as is the pair right after a "Stop" event because it spans two
    separate sessions.

    Args:
        samples: Discharging samples, ascending by time.

    Returns:
        Energy drop per hour, rounded half-up; ``0`` when no decreasing
        pair exists.
    """
    if len(samples) < 2:
        return 0

    drop = 0.0
    duration_s = 0.0
    for prev, cur in zip(samples, samples[1:]):
        if cur.energy <= prev.energy and prev.event != Event.STOP:
            drop += prev.energy - cur.energy
            duration_s += (cur.time - prev.time).total_seconds()

    if drop <= 0 or duration_s <= 0:
        return 0
    return math.floor(drop * _SECONDS_PER_HOUR / duration_s + 0.5)


def span_days(first: datetime | None, now: datetime) -> float:
    """Days between *first* and *now*; ``0.0`` when nothing is stored."""
    if first is None:
        return 0.0
    return (now - first).total_seconds() / _SECONDS_PER_DAY
