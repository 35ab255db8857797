from __future__ import annotations

from datetime import UTC, datetime
from unittest.mock import Mock

import pytest

from nerdy_dataset_backup.errors import BackupFailureError, BackupInProgressError, BackupLogStorageError
from nerdy_dataset_backup.models import BackupRecord, BackupStatus
from nerdy_dataset_backup.scheduler import BackupScheduler

_START = datetime(2026, 2, 23, 10, 0, tzinfo=UTC)


def _scheduler(orchestrator: Mock, cron: str = "*/15 * * * *") -> BackupScheduler:
    return BackupScheduler(orchestrator=orchestrator, cron=cron, timezone="UTC", requester="system")


def test_run_once_triggers_backup_as_scheduler_requester() -> None:
    orchestrator = Mock()
    orchestrator.trigger.return_value = BackupRecord(
        id=7,
        triggered_by="system",
        started_at=_START,
        status=BackupStatus.SKIPPED,
        ended_at=_START,
    )

    record = _scheduler(orchestrator).run_once()

    orchestrator.trigger.assert_called_once_with("system")
    assert record is not None and record.id == 7


@pytest.mark.parametrize(
    "error",
    [
        BackupInProgressError(),
        BackupFailureError("export failed", record_id=3),
        BackupLogStorageError("trace failed", record_id=4),
    ],
)
def test_run_once_with_backup_error_returns_none_and_keeps_running(error: Exception) -> None:
    orchestrator = Mock()
    orchestrator.trigger.side_effect = error

    assert _scheduler(orchestrator).run_once() is None


def test_next_run_follows_cron_expression() -> None:
    scheduler = _scheduler(Mock(), cron="*/15 * * * *")

    assert scheduler.next_run(datetime(2026, 2, 23, 10, 1, tzinfo=UTC)) == datetime(2026, 2, 23, 10, 15, tzinfo=UTC)


def test_scheduler_with_invalid_cron_raises_value_error() -> None:
    with pytest.raises(ValueError, match="Invalid cron expression"):
        _scheduler(Mock(), cron="every hour")


def test_scheduler_with_unknown_timezone_raises_value_error() -> None:
    with pytest.raises(ValueError, match="Unknown timezone"):
        BackupScheduler(orchestrator=Mock(), cron="0 * * * *", timezone="Mars/Olympus")


def test_run_forever_after_stop_returns_without_triggering() -> None:
    orchestrator = Mock()
    scheduler = _scheduler(orchestrator)

    scheduler.stop()
    scheduler.run_forever()

    orchestrator.trigger.assert_not_called()
