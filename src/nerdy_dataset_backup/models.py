from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from enum import StrEnum

from .errors import InvalidBackupTransitionError


class BackupStatus(StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


TERMINAL_STATUSES = frozenset({BackupStatus.COMPLETED, BackupStatus.FAILED, BackupStatus.SKIPPED})


@dataclass(frozen=True)
class ArtifactFile:
    name: str
    path: str
    content_type: str
    size_bytes: int
    checksum_sha256: str | None = None


@dataclass(frozen=True)
class BackupRecord:
    triggered_by: str
    started_at: datetime
    status: BackupStatus = BackupStatus.IN_PROGRESS
    id: int | None = None
    ended_at: datetime | None = None
    result_file: ArtifactFile | None = None

    @classmethod
    def start(cls, triggered_by: str, started_at: datetime) -> BackupRecord:
        return cls(triggered_by=triggered_by, started_at=started_at)

    def skip(self, ended_at: datetime) -> BackupRecord:
        return self._finish(BackupStatus.SKIPPED, ended_at=ended_at, result_file=None)

    def complete(self, result_file: ArtifactFile, ended_at: datetime) -> BackupRecord:
        return self._finish(BackupStatus.COMPLETED, ended_at=ended_at, result_file=result_file)

    def fail(self, error_file: ArtifactFile, ended_at: datetime) -> BackupRecord:
        return self._finish(BackupStatus.FAILED, ended_at=ended_at, result_file=error_file)

    def _finish(
        self,
        status: BackupStatus,
        *,
        ended_at: datetime,
        result_file: ArtifactFile | None,
    ) -> BackupRecord:
        if self.status != BackupStatus.IN_PROGRESS or status not in TERMINAL_STATUSES:
            raise InvalidBackupTransitionError(current=self.status.value, target=status.value)
        return replace(self, status=status, ended_at=ended_at, result_file=result_file)


@dataclass(frozen=True)
class BackupSearchFilter:
    triggered_by: str | None = None
    status: BackupStatus | None = None
    started_at_from: datetime | None = None
    started_at_to: datetime | None = None
    cursor: str | None = None
    id_after: int | None = None
    size: int = 10


@dataclass(frozen=True)
class BackupPage:
    content: tuple[BackupRecord, ...]
    next_cursor: str | None
    next_id_after: int | None
    size: int
    total_elements: int
    has_next: bool
