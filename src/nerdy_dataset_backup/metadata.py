from __future__ import annotations

from contextlib import closing
from datetime import datetime
from pathlib import Path
import sqlite3
from typing import Any, Protocol

from .errors import BackupInProgressError, InvalidBackupTransitionError
from .models import ArtifactFile, BackupRecord, BackupSearchFilter, BackupStatus
from .timestamps import format_timestamp, parse_timestamp

_SELECT_COLUMNS = """
    id,
    triggered_by,
    status,
    started_at,
    ended_at,
    file_name,
    file_path,
    file_content_type,
    file_size_bytes,
    file_checksum_sha256
"""


class BackupRecordStore(Protocol):
    def create(self, record: BackupRecord) -> BackupRecord:
        ...

    def save(self, record: BackupRecord) -> BackupRecord:
        ...

    def find_in_progress(self) -> BackupRecord | None:
        ...

    def find_latest_by_status(self, status: BackupStatus) -> BackupRecord | None:
        ...

    def search(
        self,
        search_filter: BackupSearchFilter,
        cursor_at: datetime | None,
        limit: int,
    ) -> list[BackupRecord]:
        ...

    def count(self, search_filter: BackupSearchFilter) -> int:
        ...


class SqliteBackupRecordStore:
    def __init__(self, db_path: Path, *, busy_timeout_seconds: float = 5.0) -> None:
        self.db_path = db_path
        self.busy_timeout_seconds = busy_timeout_seconds
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def initialize(self) -> None:
        with closing(self._connect()) as connection, connection:
            connection.execute(
                """
                CREATE TABLE IF NOT EXISTS backup_history (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    triggered_by TEXT NOT NULL,
                    status TEXT NOT NULL,
                    started_at TEXT NOT NULL,
                    ended_at TEXT,
                    file_name TEXT,
                    file_path TEXT,
                    file_content_type TEXT,
                    file_size_bytes INTEGER,
                    file_checksum_sha256 TEXT
                )
                """
            )
            # At most one IN_PROGRESS row may exist; concurrent triggers collide here.
            connection.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS uq_backup_history_in_progress
                ON backup_history(status)
                WHERE status = 'IN_PROGRESS'
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_backup_history_latest
                ON backup_history(status, ended_at)
                """
            )
            connection.execute(
                """
                CREATE INDEX IF NOT EXISTS idx_backup_history_started
                ON backup_history(started_at, id)
                """
            )

    def create(self, record: BackupRecord) -> BackupRecord:
        if record.id is not None:
            raise ValueError(f"backup record already has id {record.id}")
        if record.status != BackupStatus.IN_PROGRESS:
            raise ValueError(f"new backup records must be IN_PROGRESS, got {record.status.value}")

        with closing(self._connect(isolation_level=None)) as connection:
            try:
                connection.execute("BEGIN IMMEDIATE")
                existing = connection.execute(
                    "SELECT id FROM backup_history WHERE status = 'IN_PROGRESS' LIMIT 1"
                ).fetchone()
                if existing is not None:
                    raise BackupInProgressError(f"backup {existing[0]} is already in progress")
                cursor = connection.execute(
                    """
                    INSERT INTO backup_history (triggered_by, status, started_at)
                    VALUES (?, ?, ?)
                    """,
                    (record.triggered_by, record.status.value, format_timestamp(record.started_at)),
                )
                connection.execute("COMMIT")
            except sqlite3.IntegrityError as error:
                _rollback(connection)
                raise BackupInProgressError() from error
            except Exception:
                _rollback(connection)
                raise

        return BackupRecord(
            id=int(cursor.lastrowid),
            triggered_by=record.triggered_by,
            status=record.status,
            started_at=record.started_at,
        )

    def save(self, record: BackupRecord) -> BackupRecord:
        if record.id is None:
            return self.create(record)

        result_file = record.result_file
        with closing(self._connect()) as connection, connection:
            cursor = connection.execute(
                """
                UPDATE backup_history
                SET status = ?,
                    ended_at = ?,
                    file_name = ?,
                    file_path = ?,
                    file_content_type = ?,
                    file_size_bytes = ?,
                    file_checksum_sha256 = ?
                WHERE id = ? AND status = 'IN_PROGRESS'
                """,
                (
                    record.status.value,
                    format_timestamp(record.ended_at) if record.ended_at else None,
                    result_file.name if result_file else None,
                    result_file.path if result_file else None,
                    result_file.content_type if result_file else None,
                    result_file.size_bytes if result_file else None,
                    result_file.checksum_sha256 if result_file else None,
                    record.id,
                ),
            )
            if cursor.rowcount == 0:
                row = connection.execute(
                    "SELECT status FROM backup_history WHERE id = ?",
                    (record.id,),
                ).fetchone()
                current = row[0] if row else "missing"
                raise InvalidBackupTransitionError(current=current, target=record.status.value)

        return record

    def get(self, record_id: int) -> BackupRecord | None:
        return self._fetch_one(
            f"SELECT {_SELECT_COLUMNS} FROM backup_history WHERE id = ?",
            (record_id,),
        )

    def find_in_progress(self) -> BackupRecord | None:
        return self._fetch_one(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM backup_history
            WHERE status = 'IN_PROGRESS'
            ORDER BY started_at DESC, id DESC
            LIMIT 1
            """,
            (),
        )

    def find_latest_by_status(self, status: BackupStatus) -> BackupRecord | None:
        return self._fetch_one(
            f"""
            SELECT {_SELECT_COLUMNS}
            FROM backup_history
            WHERE status = ? AND ended_at IS NOT NULL
            ORDER BY ended_at DESC, id DESC
            LIMIT 1
            """,
            (BackupStatus(status).value,),
        )

    def search(
        self,
        search_filter: BackupSearchFilter,
        cursor_at: datetime | None,
        limit: int,
    ) -> list[BackupRecord]:
        if limit <= 0:
            return []

        clauses, params = _filter_clauses(search_filter)
        if cursor_at is not None and search_filter.id_after is not None:
            position = format_timestamp(cursor_at)
            clauses.append("(started_at < ? OR (started_at = ? AND id < ?))")
            params.extend([position, position, search_filter.id_after])
        elif cursor_at is not None:
            clauses.append("started_at < ?")
            params.append(format_timestamp(cursor_at))
        elif search_filter.id_after is not None:
            clauses.append("id < ?")
            params.append(search_filter.id_after)

        query = f"""
            SELECT {_SELECT_COLUMNS}
            FROM backup_history
            {_where(clauses)}
            ORDER BY started_at DESC, id DESC
            LIMIT ?
        """
        params.append(limit)

        with closing(self._connect()) as connection:
            rows = connection.execute(query, params).fetchall()

        return [_row_to_record(row) for row in rows]

    def count(self, search_filter: BackupSearchFilter) -> int:
        clauses, params = _filter_clauses(search_filter)
        with closing(self._connect()) as connection:
            row = connection.execute(
                f"SELECT COUNT(*) FROM backup_history {_where(clauses)}",
                params,
            ).fetchone()

        return int(row[0]) if row else 0

    def _fetch_one(self, query: str, params: tuple[Any, ...]) -> BackupRecord | None:
        with closing(self._connect()) as connection:
            row = connection.execute(query, params).fetchone()
        return _row_to_record(row) if row else None

    def _connect(self, **kwargs: Any) -> sqlite3.Connection:
        return sqlite3.connect(self.db_path, timeout=self.busy_timeout_seconds, **kwargs)


def _filter_clauses(search_filter: BackupSearchFilter) -> tuple[list[str], list[Any]]:
    clauses: list[str] = []
    params: list[Any] = []
    if search_filter.triggered_by:
        clauses.append("triggered_by LIKE ? ESCAPE '\\'")
        params.append(f"%{_escape_like(search_filter.triggered_by)}%")
    if search_filter.status is not None:
        clauses.append("status = ?")
        params.append(BackupStatus(search_filter.status).value)
    if search_filter.started_at_from is not None:
        clauses.append("started_at >= ?")
        params.append(format_timestamp(search_filter.started_at_from))
    if search_filter.started_at_to is not None:
        clauses.append("started_at <= ?")
        params.append(format_timestamp(search_filter.started_at_to))
    return clauses, params


def _where(clauses: list[str]) -> str:
    return f"WHERE {' AND '.join(clauses)}" if clauses else ""


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _rollback(connection: sqlite3.Connection) -> None:
    if connection.in_transaction:
        connection.execute("ROLLBACK")


def _row_to_record(row: tuple[Any, ...]) -> BackupRecord:
    (
        record_id,
        triggered_by,
        status,
        started_at,
        ended_at,
        file_name,
        file_path,
        file_content_type,
        file_size_bytes,
        file_checksum_sha256,
    ) = row

    result_file = None
    if file_path is not None:
        result_file = ArtifactFile(
            name=file_name,
            path=file_path,
            content_type=file_content_type,
            size_bytes=int(file_size_bytes or 0),
            checksum_sha256=file_checksum_sha256,
        )

    return BackupRecord(
        id=int(record_id),
        triggered_by=triggered_by,
        status=BackupStatus(status),
        started_at=parse_timestamp(started_at),
        ended_at=parse_timestamp(ended_at) if ended_at else None,
        result_file=result_file,
    )
