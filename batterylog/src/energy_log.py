"""
Persistent battery energy log backed by SQLite.

Each row is one battery-state observation: time, remaining energy, charging
flag, screen-active flag and an optional event label ("Start", "Stop",
"Charging", "Discharging", "Full"; empty for periodic samples). The log
survives process restarts because it lives in a SQLite database file.

Operations:
- record_sample(...): insert, merge into the previous row, or back-fill a
  missed standby period and then insert.
- prune(max_age_days): DELETE rows older than the cutoff.
- clear(): DELETE every row.
- windowed_samples(day_count, day_offset): rows in a day window plus
  interpolated samples at both window edges.
- event_timeline(day_count): state-transition markers, repeats collapsed.
- average_power(day_count): average discharge power.
- stored_span() / sample_count(): size of the stored history.

Every operation runs in its own transaction and is rolled back as a whole
on failure. The last written sample is held in memory only and is never
reloaded, so the first sample after a restart always becomes a new row.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import TracebackType

from batterylog.src.analytics import (
    IngestAction,
    average_discharge_power,
    collapse_repeated_events,
    decide_ingest,
    extend_window,
    span_days,
)
from batterylog.src.config import BatteryLogSettings
from batterylog.src.errors import (
    InsertFailed,
    StorageError,
    StorageUnavailable,
    WriteConflict,
)
from batterylog.src.logging_config import setup_logging
from batterylog.src.models import Event, Sample, TimelineEvent, to_utc

logger = logging.getLogger(__name__)

# Row caps for the heavier aggregate queries.
TIMELINE_LIMIT = 400
AVERAGE_POWER_LIMIT = 1000

# SQLite extended result codes reported as WriteConflict.
_KEY_VIOLATIONS = frozenset({"SQLITE_CONSTRAINT_PRIMARYKEY", "SQLITE_CONSTRAINT_UNIQUE"})

_CREATE_TABLE_SQL = """\
CREATE TABLE IF NOT EXISTS energy_log (
    time TEXT PRIMARY KEY,
    energy REAL NOT NULL,
    charging INTEGER NOT NULL,
    active INTEGER NOT NULL,
    event TEXT NOT NULL DEFAULT ''
);
"""

_INSERT_SQL = """\
INSERT INTO energy_log (time, energy, charging, active, event)
VALUES (:time, :energy, :charging, :active, :event);
"""

_MERGE_SQL = "UPDATE energy_log SET time = :time WHERE time = :last_time;"

_PRUNE_SQL = "DELETE FROM energy_log WHERE time < :cutoff;"

_CLEAR_SQL = "DELETE FROM energy_log;"

_WINDOW_SQL = """\
SELECT time, energy, charging, active, event
FROM energy_log
WHERE time > :start AND time < :end
ORDER BY time ASC;
"""

_BEFORE_SQL = """\
SELECT time, energy, charging, active, event
FROM energy_log
WHERE time <= :time
ORDER BY time DESC
LIMIT 1;
"""

_AFTER_SQL = """\
SELECT time, energy, charging, active, event
FROM energy_log
WHERE time >= :time
ORDER BY time ASC
LIMIT 1;
"""

_TIMELINE_SQL = """\
SELECT time, energy, charging, event
FROM energy_log
WHERE time >= :start AND time <= :end AND event != '' AND event != :stop
ORDER BY time ASC
LIMIT :limit;
"""

_DISCHARGE_SQL = """\
SELECT time, energy, charging, active, event
FROM energy_log
WHERE time >= :start AND time <= :end AND charging = 0
ORDER BY time ASC
LIMIT :limit;
"""

_FIRST_TIME_SQL = "SELECT time FROM energy_log ORDER BY time ASC LIMIT 1;"

_COUNT_SQL = "SELECT COUNT(*) FROM energy_log;"


def format_time(value: datetime) -> str:
    """Encode *value* as the fixed-width UTC text stored in ``time``.

    A fixed width keeps lexical order equal to chronological order.
    """
    return to_utc(value).isoformat(timespec="microseconds")


def _resolve_now(now: datetime | None) -> datetime:
    return datetime.now(tz=UTC) if now is None else to_utc(now)


def _row_to_sample(row: sqlite3.Row) -> Sample:
    return Sample(
        time=datetime.fromisoformat(row["time"]),
        energy=row["energy"],
        charging=bool(row["charging"]),
        active=bool(row["active"]),
        event=row["event"],
    )


class EnergyLog:
    """Durable, time-ordered log of battery samples.

    Intended for a single writer in a single process. WAL journal mode lets
    readers see committed data while a write is pending.

    Args:
        path: Filesystem path for the SQLite database file. Parent
            directories are created as needed.
        timeout_interval_s: Longest expected gap between two samples
            before a standby period is assumed.

    Raises:
        StorageUnavailable: If the database cannot be opened or the
            schema cannot be created.
    """

    def __init__(self, path: str | Path, timeout_interval_s: float = 600) -> None:
        if timeout_interval_s <= 0:
            raise ValueError("timeout_interval_s must be > 0")

        self._path = Path(path)
        self._timeout_interval_s = timeout_interval_s
        self._last: Sample | None = None

        conn: sqlite3.Connection | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: transactions are opened explicitly per operation.
            conn = sqlite3.connect(str(self._path), isolation_level=None)
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute(_CREATE_TABLE_SQL)
        except (OSError, sqlite3.Error) as exc:
            if conn is not None:
                conn.close()
            raise StorageUnavailable(
                f"Cannot open energy log at {self._path}: {exc}"
            ) from exc
        self._conn = conn

        logger.info("Opened energy log at %s", self._path)

    @classmethod
    def from_settings(cls, settings: BatteryLogSettings) -> "EnergyLog":
        """Create an energy log from loaded settings."""
        return cls(
            path=settings.energy_log_path,
            timeout_interval_s=settings.timeout_interval_s,
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    @property
    def last_sample(self) -> Sample | None:
        """The last sample written by this instance, or ``None``."""
        return self._last

    def record_sample(
        self,
        energy: float,
        charging: bool,
        active: bool,
        event: str = Event.NONE,
        now: datetime | None = None,
    ) -> datetime | None:
        """Record one battery reading.

        See :func:`batterylog.src.analytics.decide_ingest` for how the
        reading is classified. A back-fill row and the new row are written
        in the same transaction.

        Args:
            energy: Remaining capacity.
            charging: Whether the charger is connected.
            active: Whether the screen is on.
            event: Event label; empty for a periodic reading.
            now: Observation time. Defaults to the current UTC time.

        Returns:
            The time of the new row, or ``None`` when the reading was merged
            into the previous row and no row was created.

        Raises:
            WriteConflict: A row with this time already exists, or the row
                to merge into is gone.
            InsertFailed: Any other storage failure while writing.
        """
        sample = Sample(
            time=_resolve_now(now),
            energy=energy,
            charging=charging,
            active=active,
            event=event,
        )
        previous = self._last
        decision = decide_ingest(previous, sample, self._timeout_interval_s)
        logger.debug("Ingest decision %s at %s", decision.action.value, sample.time)

        try:
            with self._transaction() as conn:
                if decision.action is IngestAction.MERGE and previous is not None:
                    cursor = conn.execute(
                        _MERGE_SQL,
                        {
                            "time": format_time(sample.time),
                            "last_time": format_time(previous.time),
                        },
                    )
                    if cursor.rowcount == 0:
                        raise WriteConflict(
                            f"No energy_log row at {previous.time.isoformat()} to merge into"
                        )
                else:
                    if decision.backfill is not None:
                        self._insert(conn, decision.backfill)
                    self._insert(conn, sample)
        except InsertFailed as exc:
            logger.warning("Failed to record %s sample: %s", decision.action.value, exc)
            raise
        except StorageError as exc:
            logger.warning("Failed to record %s sample: %s", decision.action.value, exc)
            raise InsertFailed(str(exc)) from exc

        self._last = sample
        if decision.action is IngestAction.MERGE:
            return None
        return sample.time

    def prune(self, max_age_days: float, now: datetime | None = None) -> int:
        """Delete rows strictly older than *max_age_days* before *now*.

        Args:
            max_age_days: Maximum age of retained rows in days.
            now: Reference time. Defaults to the current UTC time.

        Returns:
            Number of deleted rows.
        """
        cutoff = _resolve_now(now) - timedelta(days=max_age_days)
        with self._transaction() as conn:
            deleted = conn.execute(_PRUNE_SQL, {"cutoff": format_time(cutoff)}).rowcount
        logger.info("Pruned %d energy_log rows older than %s", deleted, cutoff.isoformat())
        return deleted

    def clear(self) -> int:
        """Delete every row. Returns the number of deleted rows."""
        with self._transaction() as conn:
            deleted = conn.execute(_CLEAR_SQL).rowcount
        logger.info("Cleared energy log (%d rows)", deleted)
        return deleted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def windowed_samples(
        self,
        day_count: float,
        day_offset: float = 0,
        now: datetime | None = None,
    ) -> list[Sample]:
        """Return samples for the window ``[now - day_count - day_offset, now - day_offset]``.

        Rows strictly inside the window are returned ascending, with
        interpolated samples added at the window edges (see
        :func:`batterylog.src.analytics.extend_window`).
        """
        current = _resolve_now(now)
        start = current - timedelta(days=day_count + day_offset)
        end = current - timedelta(days=day_offset)

        with self._transaction() as conn:
            rows = conn.execute(
                _WINDOW_SQL,
                {"start": format_time(start), "end": format_time(end)},
            ).fetchall()
            before = conn.execute(_BEFORE_SQL, {"time": format_time(start)}).fetchone()
            after = conn.execute(_AFTER_SQL, {"time": format_time(end)}).fetchone()

        return extend_window(
            [_row_to_sample(row) for row in rows],
            start,
            end,
            _row_to_sample(before) if before is not None else None,
            _row_to_sample(after) if after is not None else None,
        )

    def event_timeline(
        self,
        day_count: float,
        now: datetime | None = None,
    ) -> list[TimelineEvent]:
        """Return state-transition events of the last *day_count* days.

        "Stop" markers and periodic samples are excluded, at most
        ``TIMELINE_LIMIT`` rows are read, and consecutive repeats of the same
        label are collapsed into the first one.
        """
        current = _resolve_now(now)
        start = current - timedelta(days=day_count)
        with self._transaction() as conn:
            rows = conn.execute(
                _TIMELINE_SQL,
                {
                    "start": format_time(start),
                    "end": format_time(current),
                    "stop": Event.STOP.value,
                    "limit": TIMELINE_LIMIT,
                },
            ).fetchall()

        return collapse_repeated_events(
            TimelineEvent(
                time=datetime.fromisoformat(row["time"]),
                energy=row["energy"],
                charging=bool(row["charging"]),
                event=row["event"],
            )
            for row in rows
        )

    def average_power(self, day_count: float, now: datetime | None = None) -> int:
        """Average discharge power over the last *day_count* days.

        Only non-charging rows are used, at most ``AVERAGE_POWER_LIMIT``.

        Returns:
            Energy per hour, or ``0`` when there is no usable discharge data.
        """
        current = _resolve_now(now)
        start = current - timedelta(days=day_count)
        with self._transaction() as conn:
            rows = conn.execute(
                _DISCHARGE_SQL,
                {
                    "start": format_time(start),
                    "end": format_time(current),
                    "limit": AVERAGE_POWER_LIMIT,
                },
            ).fetchall()
        return average_discharge_power([_row_to_sample(row) for row in rows])

    def stored_span(self, now: datetime | None = None) -> float:
        """Days between the earliest stored row and *now*; ``0.0`` if empty."""
        current = _resolve_now(now)
        with self._transaction() as conn:
            row = conn.execute(_FIRST_TIME_SQL).fetchone()
        first = datetime.fromisoformat(row["time"]) if row is not None else None
        return span_days(first, current)

    def sample_count(self) -> int:
        """Return the total number of stored rows."""
        with self._transaction() as conn:
            return conn.execute(_COUNT_SQL).fetchone()[0]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Close the underlying SQLite connection.

        After calling close, no further operations should be performed
        on this instance.
        """
        self._conn.close()

    def __enter__(self) -> "EnergyLog":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Run the enclosed statements in one transaction.

        Commits on success and rolls back on any exception. SQLite errors
        are translated: unique-key violations to :class:`WriteConflict`,
        everything else to :class:`StorageError`.
        """
        conn = self._conn
        try:
            conn.execute("BEGIN")
            try:
                yield conn
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.IntegrityError as exc:
            if exc.sqlite_errorname in _KEY_VIOLATIONS:
                raise WriteConflict(f"Unique key violation in energy_log: {exc}") from exc
            raise StorageError(f"Constraint violation in energy_log: {exc}") from exc
        except sqlite3.Error as exc:
            raise StorageError(f"Energy log operation failed: {exc}") from exc

    @staticmethod
    def _insert(conn: sqlite3.Connection, sample: Sample) -> None:
        conn.execute(
            _INSERT_SQL,
            {
                "time": format_time(sample.time),
                "energy": sample.energy,
                "charging": int(sample.charging),
                "active": int(sample.active),
                "event": sample.event,
            },
        )


def open_energy_log(
    settings: BatteryLogSettings | None = None,
    now: datetime | None = None,
) -> EnergyLog:
    """Configure logging, open the energy log and prune rows past the retention age.

    Root logging is set up from ``settings.log_level`` before the store is
    opened, so startup messages use the JSON format.

    Args:
        settings: Loaded settings. Read from the environment when omitted.
        now: Reference time for pruning. Defaults to the current UTC time.

    Returns:
        The ready-to-use energy log.

    Raises:
        StorageUnavailable: If the database cannot be opened.
    """
    if settings is None:
        settings = BatteryLogSettings()

    setup_logging(settings.log_level)

    energy_log = EnergyLog.from_settings(settings)
    energy_log.prune(settings.max_age_days, now=now)
    logger.info(
        "Energy log ready -- %d samples, standby timeout %ds, retention %.1f days",
        energy_log.sample_count(),
        settings.timeout_interval_s,
        settings.max_age_days,
    )
    return energy_log
