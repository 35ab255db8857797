from __future__ import annotations

from contextlib import closing
from datetime import datetime
from pathlib import Path
import re
import sqlite3
from typing import Any, Iterator

from .timestamps import format_timestamp

_IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
DEFAULT_FETCH_SIZE = 500


class SqliteDatasetSource:
    """Read-only view of the table being backed up.

    ``updated_at_column`` must hold ISO-8601 timestamps; rows without a
    timezone offset are compared as UTC.
    """

    def __init__(
        self,
        db_path: Path,
        *,
        table: str,
        updated_at_column: str = "updated_at",
        fetch_size: int = DEFAULT_FETCH_SIZE,
    ) -> None:
        self.db_path = db_path
        self.table = _validate_identifier(table, description="table")
        self.updated_at_column = _validate_identifier(updated_at_column, description="column")
        self.fetch_size = max(1, fetch_size)

    def exists_changed_after(self, timestamp: datetime) -> bool:
        with closing(sqlite3.connect(self.db_path)) as connection:
            row = connection.execute(
                f"""
                SELECT EXISTS (
                    SELECT 1
                    FROM "{self.table}"
                    WHERE julianday("{self.updated_at_column}") > julianday(?)
                )
                """,
                (format_timestamp(timestamp),),
            ).fetchone()

        return bool(row and row[0])

    def iter_rows(self) -> tuple[list[str], Iterator[tuple[Any, ...]]]:
        """Return the column names and a lazy iterator over every row."""
        connection = sqlite3.connect(self.db_path)
        try:
            cursor = connection.execute(f'SELECT * FROM "{self.table}" ORDER BY rowid')
        except Exception:
            connection.close()
            raise
        columns = [description[0] for description in cursor.description]
        return columns, self._drain(connection, cursor)

    def _drain(self, connection: sqlite3.Connection, cursor: sqlite3.Cursor) -> Iterator[tuple[Any, ...]]:
        try:
            while True:
                batch = cursor.fetchmany(self.fetch_size)
                if not batch:
                    return
                yield from batch
        finally:
            connection.close()


def _validate_identifier(value: str, *, description: str) -> str:
    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"invalid dataset {description} name: {value!r}")
    return value
