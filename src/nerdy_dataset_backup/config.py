from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os


@dataclass(frozen=True)
class AppConfig:
    backup_dir: Path = Path(os.getenv("NDB_BACKUP_DIR", "./backups"))
    metadata_db_path: Path = Path(os.getenv("NDB_METADATA_DB_PATH", "./data/backups.db"))
    dataset_db_path: Path = Path(os.getenv("NDB_DATASET_DB_PATH", "./data/dataset.db"))
    dataset_table: str = os.getenv("NDB_DATASET_TABLE", "records")
    dataset_updated_at_column: str = os.getenv("NDB_DATASET_UPDATED_AT_COLUMN", "updated_at")
    cursor_secret: str = os.getenv("NDB_CURSOR_SECRET", "nerdy-dataset-backup")
    schedule_cron: str = os.getenv("NDB_SCHEDULE_CRON", "0 * * * *")
    schedule_timezone: str = os.getenv("NDB_SCHEDULE_TIMEZONE", "UTC")
    scheduler_requester: str = os.getenv("NDB_SCHEDULER_REQUESTER", "system")
    default_page_size: int = int(os.getenv("NDB_DEFAULT_PAGE_SIZE", "10"))


def ensure_directories(config: AppConfig) -> None:
    config.backup_dir.mkdir(parents=True, exist_ok=True)
    config.metadata_db_path.parent.mkdir(parents=True, exist_ok=True)
    config.dataset_db_path.parent.mkdir(parents=True, exist_ok=True)
