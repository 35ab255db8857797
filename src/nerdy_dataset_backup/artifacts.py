from __future__ import annotations

from datetime import datetime
from pathlib import Path
import csv
import hashlib
import re
import traceback
from typing import Any, Callable, Iterator, Protocol

import yaml

from .models import ArtifactFile
from .timestamps import format_timestamp, utc_now

SNAPSHOT_CONTENT_TYPE = "text/csv"
ERROR_TRACE_CONTENT_TYPE = "application/yaml"


class ArtifactWriter(Protocol):
    def write_snapshot(self) -> ArtifactFile:
        ...

    def write_error_trace(self, error: BaseException) -> ArtifactFile:
        ...


class SnapshotSource(Protocol):
    table: str

    def iter_rows(self) -> tuple[list[str], Iterator[tuple[Any, ...]]]:
        ...


class FilesystemArtifactWriter:
    def __init__(
        self,
        *,
        backup_dir: Path,
        dataset: SnapshotSource,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.backup_dir = backup_dir
        self.dataset = dataset
        self.clock = clock
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def write_snapshot(self) -> ArtifactFile:
        target_path = self.backup_dir / _snapshot_name(self.dataset.table, self.clock())
        partial_path = target_path.with_name(f"{target_path.name}.partial")

        try:
            columns, rows = self.dataset.iter_rows()
            with partial_path.open("w", encoding="utf-8", newline="") as file_handle:
                writer = csv.writer(file_handle)
                writer.writerow(columns)
                writer.writerows(rows)
            partial_path.replace(target_path)
        except BaseException:
            partial_path.unlink(missing_ok=True)
            raise

        return _artifact(target_path, content_type=SNAPSHOT_CONTENT_TYPE)

    def write_error_trace(self, error: BaseException) -> ArtifactFile:
        occurred_at = self.clock()
        target_path = self.backup_dir / _error_trace_name(occurred_at)
        document = {
            "error_type": error.__class__.__name__,
            "message": _error_message(error),
            "occurred_at": format_timestamp(occurred_at),
            "traceback": "".join(traceback.format_exception(error)),
        }

        with target_path.open("w", encoding="utf-8") as file_handle:
            yaml.safe_dump(document, file_handle, sort_keys=False, allow_unicode=True)

        return _artifact(target_path, content_type=ERROR_TRACE_CONTENT_TYPE)


def _artifact(path: Path, *, content_type: str) -> ArtifactFile:
    return ArtifactFile(
        name=path.name,
        path=str(path),
        content_type=content_type,
        size_bytes=path.stat().st_size,
        checksum_sha256=_sha256(path),
    )


def _snapshot_name(table: str, created_at: datetime) -> str:
    timestamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
    return f"{timestamp}__{_sanitize_filesystem_component(table)}__snapshot.csv"


def _error_trace_name(created_at: datetime) -> str:
    timestamp = created_at.strftime("%Y%m%dT%H%M%S%fZ")
    return f"{timestamp}__backup-error.yaml"


def _sanitize_filesystem_component(value: str) -> str:
    sanitized = re.sub(r"[^a-zA-Z0-9._-]", "_", value)
    return sanitized or "unknown"


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as file_handle:
        for chunk in iter(lambda: file_handle.read(64 * 1024), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _error_message(error: BaseException) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
