from __future__ import annotations

from datetime import datetime
import logging
import sqlite3
from typing import Callable

from .artifacts import ArtifactWriter
from .changes import ChangeDetector
from .errors import (
    BackupFailureError,
    BackupLogStorageError,
    BackupNotFoundError,
    BackupPersistenceError,
)
from .metadata import BackupRecordStore
from .models import BackupRecord, BackupStatus
from .timestamps import EPOCH, utc_now

LOG = logging.getLogger(__name__)


class BackupOrchestrator:
    """Runs one backup attempt at a time and records its outcome.

    Exclusivity is carried by the IN_PROGRESS marker row that the store
    creates atomically; the export itself runs outside any transaction.
    """

    def __init__(
        self,
        *,
        store: BackupRecordStore,
        change_detector: ChangeDetector,
        artifact_writer: ArtifactWriter,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.store = store
        self.change_detector = change_detector
        self.artifact_writer = artifact_writer
        self.clock = clock

    def trigger(self, requester_id: str) -> BackupRecord:
        record = self._start_record(requester_id)

        try:
            baseline = self._baseline()
            changed = self.change_detector.has_changed_since(baseline)
            snapshot = self.artifact_writer.write_snapshot() if changed else None
        except Exception as error:  # pylint: disable=broad-except
            failed = self._record_failure(record, error)
            raise BackupFailureError(
                f"backup {record.id} failed: {_error_message(error)}",
                record_id=failed.id,
            ) from error

        if snapshot is None:
            LOG.info("Dataset unchanged since %s; skipping backup %s", baseline.isoformat(), record.id)
            return self._persist(record.skip(ended_at=self.clock()))

        completed = self._persist(record.complete(snapshot, ended_at=self.clock()))
        LOG.info("Backup %s completed: %s", completed.id, snapshot.path)
        return completed

    def find_latest(self, status: BackupStatus | None = None) -> BackupRecord:
        backup_status = BackupStatus(status) if status is not None else BackupStatus.COMPLETED
        record = self.store.find_latest_by_status(backup_status)
        if record is None:
            raise BackupNotFoundError(backup_status.value)
        return record

    def _start_record(self, requester_id: str) -> BackupRecord:
        try:
            record = self.store.create(BackupRecord.start(requester_id, started_at=self.clock()))
        except sqlite3.Error as error:
            raise BackupPersistenceError(f"could not create backup record: {_error_message(error)}") from error
        LOG.info("Backup %s started by %s", record.id, requester_id)
        return record

    def _baseline(self) -> datetime:
        latest = self.store.find_latest_by_status(BackupStatus.COMPLETED)
        if latest is None or latest.ended_at is None:
            return EPOCH
        return latest.ended_at

    def _record_failure(self, record: BackupRecord, error: Exception) -> BackupRecord:
        LOG.warning("Backup %s export failed: %s", record.id, _error_message(error))
        try:
            error_file = self.artifact_writer.write_error_trace(error)
        except Exception as log_error:  # pylint: disable=broad-except
            LOG.error(
                "Backup %s error trace could not be stored; record left IN_PROGRESS: %s",
                record.id,
                _error_message(log_error),
            )
            raise BackupLogStorageError(
                f"could not store error trace for backup {record.id}: {_error_message(log_error)}",
                record_id=record.id,
            ) from log_error

        return self._persist(record.fail(error_file, ended_at=self.clock()))

    def _persist(self, record: BackupRecord) -> BackupRecord:
        try:
            return self.store.save(record)
        except sqlite3.Error as error:
            raise BackupPersistenceError(
                f"could not save backup {record.id} as {record.status.value}: {_error_message(error)}"
            ) from error


def _error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
