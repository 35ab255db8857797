from __future__ import annotations

from datetime import datetime
import logging
import threading
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from croniter import CroniterBadCronError, croniter

from .backup import BackupOrchestrator
from .errors import BackupError, BackupInProgressError, BackupLogStorageError
from .models import BackupRecord

LOG = logging.getLogger(__name__)

MAX_WAIT_SECONDS = 60


class BackupScheduler:
    """Triggers backups on a cron schedule until stopped."""

    def __init__(
        self,
        *,
        orchestrator: BackupOrchestrator,
        cron: str,
        timezone: str = "UTC",
        requester: str = "system",
    ) -> None:
        try:
            croniter(cron, datetime.now())
        except (CroniterBadCronError, ValueError) as error:
            raise ValueError(f"Invalid cron expression '{cron}': {error}") from error
        try:
            self.timezone = ZoneInfo(timezone)
        except ZoneInfoNotFoundError as error:
            raise ValueError(f"Unknown timezone '{timezone}'") from error

        self.orchestrator = orchestrator
        self.cron = cron
        self.requester = requester
        self._stop_event = threading.Event()

    def next_run(self, reference: datetime | None = None) -> datetime:
        reference = reference or datetime.now(self.timezone)
        return croniter(self.cron, reference).get_next(datetime)

    def run_once(self) -> BackupRecord | None:
        try:
            record = self.orchestrator.trigger(self.requester)
        except BackupInProgressError:
            LOG.info("Scheduled backup skipped: another backup is in progress")
            return None
        except BackupLogStorageError as error:
            LOG.error("Scheduled backup left an unfinished record: %s", error)
            return None
        except BackupError as error:
            LOG.warning("Scheduled backup failed: %s", error)
            return None

        LOG.info("Scheduled backup %s finished with status %s", record.id, record.status.value)
        return record

    def run_forever(self) -> None:
        next_run = self.next_run()
        LOG.info("Next backup scheduled for %s", next_run.isoformat())

        while not self._stop_event.is_set():
            now = datetime.now(self.timezone)
            if now >= next_run:
                self.run_once()
                next_run = self.next_run()
                LOG.info("Next backup scheduled for %s", next_run.isoformat())
                continue

            sleep_for = max((next_run - now).total_seconds(), 0)
            self._stop_event.wait(min(sleep_for, MAX_WAIT_SECONDS))

        LOG.info("Scheduler stopped")

    def stop(self) -> None:
        self._stop_event.set()
