"""
Exception hierarchy for the battery energy log.

Empty query results are not errors; only storage faults are raised.

CHANGELOG:
- 2026-10-19: Initial creation

TODO:
- None
"""


class BatteryLogError(RuntimeError):
    """Base class for all energy log errors."""


class StorageUnavailable(BatteryLogError):
    """The SQLite database could not be opened or initialised."""


class StorageError(BatteryLogError):
    """A storage operation failed after the database was opened."""


class InsertFailed(StorageError):
    """A sample could not be written; the cached last sample is unchanged."""


class WriteConflict(InsertFailed):
    """Unique-key violation, or an update that affected no rows."""
