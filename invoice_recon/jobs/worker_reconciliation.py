"""Background worker for processing reconciliation jobs."""
from __future__ import annotations

import threading
import time
from typing import Optional

from invoice_recon.config import QUEUE_SETTINGS
from invoice_recon.exceptions import ReconciliationValidationError, RunInProgressError
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.reconciliation_job import ReconciliationJob
from invoice_recon.models.db.enums import ReportStatus, RunTrigger
from invoice_recon.models.records import Report
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.notifier import ReportNotifier
from invoice_recon.services.reconciliation_engine import ReconciliationEngine
from invoice_recon.utils.logger import get_logger

logger = get_logger(__name__)


class ReconciliationWorker:
    def __init__(
        self,
        queue: RunQueue,
        engine: ReconciliationEngine,
        settings_repository: SettingsRepository,
        notifier: Optional[ReportNotifier] = None,
        *,
        poll_timeout: float = 5.0,
    ):
        self.queue = queue
        self.engine = engine
        self.settings_repository = settings_repository
        self.notifier = notifier or ReportNotifier()
        self.poll_timeout = poll_timeout
        self.retry_attempts = int(QUEUE_SETTINGS["scheduled_retry_attempts"])  # type: ignore[arg-type]
        self.retry_delay = float(QUEUE_SETTINGS["scheduled_retry_delay_seconds"])  # type: ignore[arg-type]
        self._thread: threading.Thread | None = None
        self._stop_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():  # pragma: no cover
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="reconciliation-worker", daemon=True)
        self._thread.start()
        logger.info("Reconciliation worker started")

    def stop(self, timeout: float | None = None) -> None:
        self._stop_event.set()
        logger.info("Reconciliation worker stop requested")
        if timeout is not None and self._thread is not None:
            self._thread.join(timeout=timeout)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, ReconciliationJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.process(job)
            except Exception as e:  # pragma: no cover - keep the worker alive
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def process(self, job: ReconciliationJob) -> Optional[Report]:
        """Run one job; returns the finished report, or None when the run was refused."""
        logger.info(
            "Processing reconciliation job",
            period_start=job.period_start.isoformat(),
            period_end=job.period_end.isoformat(),
            trigger=job.trigger.value,
            attempt=job.attempt,
            correlation_id=job.correlation_id,
        )
        settings = self.settings_repository.get()
        try:
            report = self.engine.run(job.period_start, job.period_end, settings=settings, trigger=job.trigger)
        except RunInProgressError as e:
            logger.warning("Reconciliation job skipped", reason=str(e), correlation_id=job.correlation_id)
            return None
        except ReconciliationValidationError as e:
            logger.error("Reconciliation job rejected", reason=str(e), correlation_id=job.correlation_id)
            return None

        logger.info("Reconciliation job finished", report_id=report.id, status=report.status.value, attempt=job.attempt)

        if job.trigger == RunTrigger.SCHEDULED:
            if report.status == ReportStatus.FAILED and job.attempt <= self.retry_attempts:
                self.queue.enqueue(job.next_attempt(), priority="retry", delay_seconds=self.retry_delay)
                logger.warning(
                    "Scheduled reconciliation failed, retry queued",
                    report_id=report.id,
                    next_attempt=job.attempt + 1,
                    delay_seconds=self.retry_delay,
                )
            self.notifier.notify(report, settings)
        return report


__all__ = ["ReconciliationWorker"]
