"""Exception taxonomy for the offline store and its background queues."""

from __future__ import annotations


class OfflinePosError(Exception):
    """Base class for all offline-pos failures."""


class StorageError(OfflinePosError):
    """Local database failure; the ledger may be inconsistent."""


class SyncError(OfflinePosError):
    """A sync attempt did not get acknowledged."""


class SyncTransientError(SyncError):
    """Network trouble or a 5xx; worth retrying with backoff."""


class SyncTerminalError(SyncError):
    """The remote rejected the payload; retrying will not help."""


class PrintError(OfflinePosError):
    """A print job could not be delivered to its printer."""


class PrintTransientError(PrintError):
    """Printer offline, out of paper, busy or timed out."""


class PrintTerminalError(PrintError):
    """The job will not print without operator action."""


class CrashSnapshotCorrupt(OfflinePosError):
    """The crash snapshot on disk could not be decoded."""
