from __future__ import annotations


class BackupError(RuntimeError):
    """Base class for every failure surfaced by the backup workflow."""


class BackupInProgressError(BackupError):
    """Raised when a trigger arrives while another backup is still running."""

    def __init__(self, message: str = "another backup is already in progress") -> None:
        super().__init__(message)


class BackupNotFoundError(BackupError):
    def __init__(self, status: str) -> None:
        super().__init__(f"no backup found with status {status}")
        self.status = status


class BackupFailureError(BackupError):
    """Raised after the dataset export failed and the record was finalized as FAILED."""

    def __init__(self, message: str, *, record_id: int | None = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class BackupLogStorageError(BackupError):
    """Raised when the error trace of a failed backup could not be stored.

    The triggering record stays IN_PROGRESS and needs operator attention.
    """

    def __init__(self, message: str, *, record_id: int | None = None) -> None:
        super().__init__(message)
        self.record_id = record_id


class BackupPersistenceError(BackupError):
    """Raised when the record store fails while a trigger is being processed."""


class InvalidBackupTransitionError(BackupError):
    def __init__(self, *, current: str, target: str) -> None:
        super().__init__(f"cannot transition backup from {current} to {target}")
        self.current = current
        self.target = target


class InvalidCursorError(BackupError, ValueError):
    """Raised when a pagination cursor was not produced by the cursor codec."""
