from datetime import date, datetime, timedelta, timezone
from unittest.mock import MagicMock

from invoice_recon.exceptions import SourceError
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.reconciliation_job import ReconciliationJob
from invoice_recon.jobs.scheduler_loop import SchedulerLoop
from invoice_recon.jobs.worker_reconciliation import ReconciliationWorker
from invoice_recon.models.db.enums import ReportStatus, RunTrigger
from invoice_recon.models.records import Report
from conftest import FakeSource, make_invoice, make_order

START, END = date(2024, 1, 1), date(2024, 1, 7)


def _worker(engine, settings_repo, queue=None):
    notifier = MagicMock()
    return ReconciliationWorker(queue if queue is not None else RunQueue(), engine, settings_repo, notifier), notifier


def test_manual_job_runs_without_notification(build_engine, settings_repo):
    worker, notifier = _worker(build_engine([make_order("1")], [make_invoice("1")]), settings_repo)
    report = worker.process(ReconciliationJob(START, END))
    assert report.status == ReportStatus.COMPLETED
    notifier.notify.assert_not_called()


def test_scheduled_job_notifies(build_engine, settings_repo):
    worker, notifier = _worker(build_engine([make_order("1")], []), settings_repo)
    report = worker.process(ReconciliationJob(START, END, trigger=RunTrigger.SCHEDULED))
    assert report.trigger == RunTrigger.SCHEDULED
    notifier.notify.assert_called_once()
    assert notifier.notify.call_args[0][0] is report


def test_failed_scheduled_job_is_requeued_with_delay(build_engine, settings_repo):
    broken = FakeSource("zoho_books", errors=[SourceError("zoho_books", "down", error_code="HTTP_401")])
    queue = RunQueue()
    worker, _ = _worker(build_engine(invoice_source=broken), settings_repo, queue)
    report = worker.process(ReconciliationJob(START, END, trigger=RunTrigger.SCHEDULED))
    assert report.status == ReportStatus.FAILED
    snap = queue.snapshot()
    assert snap["delayed"] == 1 and snap["ready"] == 0


def test_retries_stop_after_configured_attempts(build_engine, settings_repo):
    broken = FakeSource("zoho_books", errors=[SourceError("zoho_books", "down", error_code="HTTP_401")])
    queue = RunQueue()
    worker, _ = _worker(build_engine(invoice_source=broken), settings_repo, queue)
    worker.process(ReconciliationJob(START, END, trigger=RunTrigger.SCHEDULED, attempt=worker.retry_attempts + 1))
    assert queue.depth() == 0


def test_job_for_running_period_is_skipped(build_engine, settings_repo, report_repo):
    report_repo.save(Report(period_start=START, period_end=END, status=ReportStatus.RUNNING, generated_at=datetime.now(timezone.utc)))
    worker, _ = _worker(build_engine(), settings_repo)
    assert worker.process(ReconciliationJob(START, END)) is None


def test_invalid_period_is_rejected(build_engine, settings_repo):
    worker, _ = _worker(build_engine(), settings_repo)
    assert worker.process(ReconciliationJob(END, START)) is None


def test_worker_thread_drains_queue(build_engine, settings_repo, report_repo):
    queue = RunQueue()
    worker, _ = _worker(build_engine(), settings_repo, queue)
    worker.poll_timeout = 0.05
    queue.enqueue(ReconciliationJob(START, END))
    worker.start()
    try:
        deadline = datetime.now() + timedelta(seconds=5)
        while report_repo.get_latest() is None or not report_repo.get_latest().is_terminal:
            assert datetime.now() < deadline, "worker did not finish the job"
            worker._stop_event.wait(0.05)
    finally:
        worker.stop(timeout=2)
    assert report_repo.get_latest().status == ReportStatus.COMPLETED


# ---------- scheduler loop ----------

MONDAY_0300 = datetime(2024, 3, 4, 3, 0, tzinfo=timezone.utc)


def _loop(report_repo, settings_repo, queue):
    return SchedulerLoop(queue, report_repo, settings_repo, clock=lambda: MONDAY_0300, poll_seconds=0.01)


def test_tick_enqueues_once_per_period(report_repo, settings_repo):
    settings_repo.update({"enabled": True, "frequency": "weekly", "day_of_week": 1})
    queue = RunQueue()
    loop = _loop(report_repo, settings_repo, queue)

    job = loop.tick()
    assert job is not None
    assert (job.period_start, job.period_end) == (date(2024, 2, 26), date(2024, 3, 3))
    assert job.trigger == RunTrigger.SCHEDULED
    assert settings_repo.get_last_scheduled_run_at() == MONDAY_0300

    assert loop.tick(MONDAY_0300 + timedelta(minutes=5)) is None
    assert queue.depth() == 1


def test_tick_does_nothing_when_disabled(report_repo, settings_repo):
    queue = RunQueue()
    assert _loop(report_repo, settings_repo, queue).tick() is None
    assert queue.depth() == 0


def test_tick_sweeps_stale_runs_and_cleans_up_daily(report_repo, settings_repo):
    stale = report_repo.save(Report(period_start=START, period_end=END, status=ReportStatus.RUNNING, generated_at=MONDAY_0300 - timedelta(hours=5)))
    old = report_repo.save(Report(period_start=START, period_end=END, status=ReportStatus.COMPLETED, generated_at=MONDAY_0300 - timedelta(days=90)))
    loop = _loop(report_repo, settings_repo, RunQueue())
    loop.reports = type(report_repo)(report_repo._session_factory, clock=lambda: MONDAY_0300)

    loop.tick()
    assert report_repo.get(stale.id).status == ReportStatus.FAILED
    assert report_repo.get(old.id) is None
    assert settings_repo.get_last_cleanup_on() == MONDAY_0300.date()
