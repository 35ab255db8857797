from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest

from nerdy_dataset_backup.errors import BackupInProgressError, InvalidBackupTransitionError
from nerdy_dataset_backup.metadata import SqliteBackupRecordStore
from nerdy_dataset_backup.models import ArtifactFile, BackupRecord, BackupSearchFilter, BackupStatus

_START = datetime(2026, 2, 23, 10, 0, tzinfo=UTC)


def _store(tmp_path: Path) -> SqliteBackupRecordStore:
    store = SqliteBackupRecordStore(tmp_path / "backups.db")
    store.initialize()
    return store


def _artifact(name: str) -> ArtifactFile:
    return ArtifactFile(name=name, path=f"/tmp/{name}", content_type="text/csv", size_bytes=10, checksum_sha256="abc")


def _finished(
    store: SqliteBackupRecordStore,
    *,
    triggered_by: str = "10.0.0.1",
    started_at: datetime,
    ended_at: datetime | None = None,
    status: BackupStatus = BackupStatus.SKIPPED,
) -> BackupRecord:
    record = store.create(BackupRecord.start(triggered_by, started_at=started_at))
    ended_at = ended_at or started_at + timedelta(minutes=1)
    if status == BackupStatus.COMPLETED:
        return store.save(record.complete(_artifact(f"{record.id}.csv"), ended_at=ended_at))
    if status == BackupStatus.FAILED:
        return store.save(record.fail(_artifact(f"{record.id}.yaml"), ended_at=ended_at))
    return store.save(record.skip(ended_at=ended_at))


def test_create_assigns_increasing_ids_and_persists_in_progress_record(tmp_path: Path) -> None:
    store = _store(tmp_path)

    created = store.create(BackupRecord.start("10.0.0.1", started_at=_START))

    assert created.id is not None
    assert created.status == BackupStatus.IN_PROGRESS
    assert store.find_in_progress() == created

    store.save(created.skip(ended_at=_START + timedelta(seconds=5)))
    following = store.create(BackupRecord.start("10.0.0.1", started_at=_START + timedelta(minutes=1)))

    assert following.id is not None and following.id > created.id


def test_create_with_existing_in_progress_record_raises_in_progress_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    store.create(BackupRecord.start("10.0.0.1", started_at=_START))

    with pytest.raises(BackupInProgressError):
        store.create(BackupRecord.start("10.0.0.2", started_at=_START))

    assert store.count(BackupSearchFilter()) == 1


def test_create_with_terminal_record_raises_value_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = BackupRecord(triggered_by="10.0.0.1", started_at=_START, status=BackupStatus.SKIPPED)

    with pytest.raises(ValueError):
        store.create(record)


def test_save_persists_result_file_and_end_time(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = store.create(BackupRecord.start("10.0.0.1", started_at=_START))

    store.save(record.complete(_artifact("snapshot.csv"), ended_at=_START + timedelta(minutes=3)))
    loaded = store.get(record.id)

    assert loaded is not None
    assert loaded.status == BackupStatus.COMPLETED
    assert loaded.ended_at == _START + timedelta(minutes=3)
    assert loaded.result_file == _artifact("snapshot.csv")


def test_save_with_already_finished_record_raises_transition_error(tmp_path: Path) -> None:
    store = _store(tmp_path)
    record = store.create(BackupRecord.start("10.0.0.1", started_at=_START))
    store.save(record.skip(ended_at=_START + timedelta(seconds=1)))

    with pytest.raises(InvalidBackupTransitionError) as raised:
        store.save(record.complete(_artifact("late.csv"), ended_at=_START + timedelta(seconds=2)))

    assert raised.value.current == "SKIPPED"
    assert store.get(record.id).status == BackupStatus.SKIPPED


def test_find_latest_by_status_orders_by_end_time(tmp_path: Path) -> None:
    store = _store(tmp_path)
    late_start = _finished(
        store,
        started_at=_START + timedelta(hours=2),
        ended_at=_START + timedelta(hours=2, minutes=1),
        status=BackupStatus.COMPLETED,
    )
    long_running = _finished(
        store,
        started_at=_START,
        ended_at=_START + timedelta(hours=5),
        status=BackupStatus.COMPLETED,
    )
    _finished(store, started_at=_START + timedelta(hours=6), status=BackupStatus.FAILED)

    assert store.find_latest_by_status(BackupStatus.COMPLETED) == long_running
    assert store.find_latest_by_status(BackupStatus.COMPLETED) != late_start


def test_find_latest_by_status_with_empty_history_returns_none(tmp_path: Path) -> None:
    store = _store(tmp_path)

    assert store.find_latest_by_status(BackupStatus.COMPLETED) is None
    assert store.find_in_progress() is None


def test_search_returns_newest_first_with_id_tie_break(tmp_path: Path) -> None:
    store = _store(tmp_path)
    first = _finished(store, started_at=_START)
    second = _finished(store, started_at=_START)
    newest = _finished(store, started_at=_START + timedelta(minutes=5))

    rows = store.search(BackupSearchFilter(), None, 10)

    assert [row.id for row in rows] == [newest.id, second.id, first.id]


def test_search_with_non_positive_limit_returns_empty_list(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _finished(store, started_at=_START)

    assert store.search(BackupSearchFilter(), None, 0) == []


def test_search_and_count_apply_filters(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _finished(store, triggered_by="10.0.0.1", started_at=_START, status=BackupStatus.COMPLETED)
    _finished(store, triggered_by="10.0.0.2", started_at=_START + timedelta(hours=1), status=BackupStatus.FAILED)
    match = _finished(
        store,
        triggered_by="192.168.0.10",
        started_at=_START + timedelta(hours=2),
        status=BackupStatus.COMPLETED,
    )

    search_filter = BackupSearchFilter(
        triggered_by="192.168",
        status=BackupStatus.COMPLETED,
        started_at_from=_START + timedelta(minutes=30),
        started_at_to=_START + timedelta(hours=2),
    )

    assert store.search(search_filter, None, 10) == [match]
    assert store.count(search_filter) == 1
    assert store.count(BackupSearchFilter(triggered_by="10.0.0")) == 2


def test_search_with_like_wildcards_in_requester_matches_literally(tmp_path: Path) -> None:
    store = _store(tmp_path)
    _finished(store, triggered_by="ops_team", started_at=_START)
    _finished(store, triggered_by="opsXteam", started_at=_START + timedelta(minutes=1))

    assert store.count(BackupSearchFilter(triggered_by="ops_")) == 1
    assert store.count(BackupSearchFilter(triggered_by="%")) == 0


def test_timestamps_with_foreign_offsets_are_stored_as_utc(tmp_path: Path) -> None:
    store = _store(tmp_path)
    seoul = timezone(timedelta(hours=9))
    record = _finished(store, started_at=datetime(2026, 2, 23, 19, 0, tzinfo=seoul))

    loaded = store.get(record.id)

    assert loaded is not None
    assert loaded.started_at == _START
    assert loaded.started_at.tzinfo == UTC
