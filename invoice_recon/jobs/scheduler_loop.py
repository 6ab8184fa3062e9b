"""Polling thread that turns the schedule into queued reconciliation jobs.

Each tick: sweep stale reports, run the daily retention cleanup once the
cleanup hour has passed, then enqueue a ``scheduled`` job when a run is due
and record ``last_scheduled_run_at`` so the same period is not enqueued twice.
"""
from __future__ import annotations

import threading
from datetime import datetime
from typing import Callable, Optional

from invoice_recon.config import SCHEDULER_SETTINGS
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.reconciliation_job import ReconciliationJob
from invoice_recon.models.db.enums import RunTrigger
from invoice_recon.repositories.report_repository import ReportRepository
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.scheduler import is_due, reconciliation_period
from invoice_recon.utils.logger import get_logger
from invoice_recon.utils.time import utc_now

logger = get_logger(__name__)


class SchedulerLoop:
    def __init__(
        self,
        queue: RunQueue,
        reports: ReportRepository,
        settings_repository: SettingsRepository,
        *,
        clock: Callable[[], datetime] = utc_now,
        poll_seconds: Optional[float] = None,
    ):
        self.queue = queue
        self.reports = reports
        self.settings_repository = settings_repository
        self._clock = clock
        self.poll_seconds = float(poll_seconds if poll_seconds is not None else SCHEDULER_SETTINGS["poll_seconds"])
        self.cleanup_hour = int(SCHEDULER_SETTINGS["cleanup_hour"])
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="reconciliation-scheduler", daemon=True)
        self._thread.start()
        logger.info("Reconciliation scheduler started", poll_seconds=self.poll_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        logger.info("Reconciliation scheduler stop requested")

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception as e:  # pragma: no cover - keep polling
                logger.error("Scheduler tick failed", error=str(e), exc_info=True)
            self._stop_event.wait(self.poll_seconds)

    def _maybe_cleanup(self, now: datetime) -> int:
        if now.hour < self.cleanup_hour:
            return 0
        today = now.date()
        if self.settings_repository.get_last_cleanup_on() == today:
            return 0
        deleted = self.reports.delete_old_reports()
        self.settings_repository.set_last_cleanup_on(today)
        return deleted

    def tick(self, now: Optional[datetime] = None) -> Optional[ReconciliationJob]:
        """One scheduler pass; returns the job it enqueued, if any."""
        now = now or self._clock()
        self.reports.mark_stale_reports_failed(now=now)
        self._maybe_cleanup(now)

        settings = self.settings_repository.get()
        last_run_at = self.settings_repository.get_last_scheduled_run_at()
        if not is_due(settings, last_run_at, now):
            return None

        start, end = reconciliation_period(settings, now.date())
        job = ReconciliationJob(period_start=start, period_end=end, trigger=RunTrigger.SCHEDULED)
        self.queue.enqueue(job, priority="scheduled")
        self.settings_repository.set_last_scheduled_run_at(now)
        logger.info(
            "Scheduled reconciliation enqueued",
            period_start=start.isoformat(),
            period_end=end.isoformat(),
            frequency=settings.frequency.value,
        )
        return job


__all__ = ["SchedulerLoop"]
