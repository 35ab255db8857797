from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import datetime
import logging
import os
import signal
import sys
from typing import Any, Optional, Sequence

import yaml

from .artifacts import FilesystemArtifactWriter
from .backup import BackupOrchestrator
from .changes import ChangeDetector
from .config import AppConfig, ensure_directories
from .cursor import CursorCodec
from .dataset import SqliteDatasetSource
from .errors import BackupError, BackupNotFoundError, InvalidCursorError
from .metadata import SqliteBackupRecordStore
from .models import BackupPage, BackupRecord, BackupSearchFilter, BackupStatus
from .query import BackupQueryService
from .scheduler import BackupScheduler
from .timestamps import format_timestamp, parse_timestamp

LOG = logging.getLogger(__name__)

_STATUS_CHOICES = [status.value for status in BackupStatus]


@dataclass(frozen=True)
class BackupServices:
    orchestrator: BackupOrchestrator
    query_service: BackupQueryService


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def build_services(config: AppConfig) -> BackupServices:
    ensure_directories(config)
    store = SqliteBackupRecordStore(config.metadata_db_path)
    store.initialize()
    dataset = SqliteDatasetSource(
        config.dataset_db_path,
        table=config.dataset_table,
        updated_at_column=config.dataset_updated_at_column,
    )
    orchestrator = BackupOrchestrator(
        store=store,
        change_detector=ChangeDetector(dataset),
        artifact_writer=FilesystemArtifactWriter(backup_dir=config.backup_dir, dataset=dataset),
    )
    query_service = BackupQueryService(store=store, cursor_codec=CursorCodec(config.cursor_secret))
    return BackupServices(orchestrator=orchestrator, query_service=query_service)


def parse_args(argv: Optional[Sequence[str]] = None, *, config: AppConfig | None = None) -> argparse.Namespace:
    config = config or AppConfig()
    parser = argparse.ArgumentParser(description="Dataset backup orchestrator CLI.")
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="Log level (default INFO).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    trigger = subparsers.add_parser("trigger", help="Run one backup now.")
    trigger.add_argument("--requester", default=os.getenv("USER", "cli"), help="Requester identifier.")

    latest = subparsers.add_parser("latest", help="Show the most recently ended backup.")
    latest.add_argument("--status", choices=_STATUS_CHOICES, default=BackupStatus.COMPLETED.value)

    history = subparsers.add_parser("history", help="List backup history, newest first.")
    history.add_argument("--status", choices=_STATUS_CHOICES)
    history.add_argument("--requester", help="Substring of the requester identifier.")
    history.add_argument("--from", dest="started_at_from", type=parse_timestamp, help="ISO-8601 lower bound.")
    history.add_argument("--to", dest="started_at_to", type=parse_timestamp, help="ISO-8601 upper bound.")
    history.add_argument("--cursor", help="Cursor returned by a previous page.")
    history.add_argument("--id-after", type=int, help="Id returned with the previous cursor.")
    history.add_argument("--size", type=int, default=config.default_page_size)

    subparsers.add_parser("schedule", help="Trigger backups on the configured cron schedule.")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    config = AppConfig()
    args = parse_args(argv, config=config)
    configure_logging(args.log_level)
    services = build_services(config)

    if args.command == "trigger":
        return run_trigger(services.orchestrator, args.requester)
    if args.command == "latest":
        return show_latest(services.orchestrator, BackupStatus(args.status))
    if args.command == "history":
        return show_history(
            services.query_service,
            BackupSearchFilter(
                triggered_by=args.requester,
                status=BackupStatus(args.status) if args.status else None,
                started_at_from=args.started_at_from,
                started_at_to=args.started_at_to,
                cursor=args.cursor,
                id_after=args.id_after,
                size=args.size,
            ),
        )
    return run_schedule(services.orchestrator, config)


def run_trigger(orchestrator: BackupOrchestrator, requester: str) -> int:
    try:
        record = orchestrator.trigger(requester)
    except BackupError as error:
        LOG.error("Backup failed: %s", error)
        return 1
    _print_document(record_view(record))
    return 0


def show_latest(orchestrator: BackupOrchestrator, status: BackupStatus) -> int:
    try:
        record = orchestrator.find_latest(status)
    except BackupNotFoundError as error:
        LOG.error("%s", error)
        return 1
    _print_document(record_view(record))
    return 0


def show_history(query_service: BackupQueryService, search_filter: BackupSearchFilter) -> int:
    try:
        page = query_service.search(search_filter)
    except (InvalidCursorError, ValueError) as error:
        LOG.error("Invalid history query: %s", error)
        return 2
    _print_document(page_view(page))
    return 0


def run_schedule(orchestrator: BackupOrchestrator, config: AppConfig) -> int:
    scheduler = BackupScheduler(
        orchestrator=orchestrator,
        cron=config.schedule_cron,
        timezone=config.schedule_timezone,
        requester=config.scheduler_requester,
    )

    def _handle_signal(signum: int, _frame: Optional[object]) -> None:
        LOG.info("Received signal %s; stopping scheduler", signum)
        scheduler.stop()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)
    scheduler.run_forever()
    return 0


def record_view(record: BackupRecord) -> dict[str, Any]:
    result_file = record.result_file
    return {
        "id": record.id,
        "triggered_by": record.triggered_by,
        "status": record.status.value,
        "started_at": format_timestamp(record.started_at),
        "ended_at": _optional_timestamp(record.ended_at),
        "file_name": result_file.name if result_file else None,
        "file_path": result_file.path if result_file else None,
        "file_size_bytes": result_file.size_bytes if result_file else None,
    }


def page_view(page: BackupPage) -> dict[str, Any]:
    return {
        "content": [record_view(record) for record in page.content],
        "next_cursor": page.next_cursor,
        "next_id_after": page.next_id_after,
        "size": page.size,
        "total_elements": page.total_elements,
        "has_next": page.has_next,
    }


def _optional_timestamp(value: datetime | None) -> str | None:
    return format_timestamp(value) if value else None


def _print_document(document: dict[str, Any]) -> None:
    sys.stdout.write(yaml.safe_dump(document, sort_keys=False))


if __name__ == "__main__":
    sys.exit(main())
