"""
Reconciliation endpoints: manual runs, report browsing/export/deletion and service health.
"""
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.concurrency import run_in_threadpool

from invoice_recon.api.deps import (
    get_engine,
    get_queue,
    get_report_repository,
    get_settings_repository,
    require_admin,
)
from invoice_recon.exceptions import ReconciliationValidationError, RunInProgressError
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.reconciliation_job import ReconciliationJob
from invoice_recon.models.db.enums import RunTrigger
from invoice_recon.models.schemas.base import ResponseBase
from invoice_recon.models.schemas.reports import ReportPageRead, ReportRead, RunRequest
from invoice_recon.repositories.report_repository import ReportRepository
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.reconciliation_engine import ReconciliationEngine
from invoice_recon.services.report_export import export_filename, render_csv
from invoice_recon.utils.circuit_breaker import SOURCE_CIRCUIT_BREAKER
from invoice_recon.utils.logger import get_logger, log_business_event

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.post(
    "/run",
    response_model=ReportRead,
    summary="Run a reconciliation synchronously",
)
async def run_reconciliation(
    payload: RunRequest,
    engine: ReconciliationEngine = Depends(get_engine),
    settings_repo: SettingsRepository = Depends(get_settings_repository),
) -> ReportRead:
    """
    Reconcile ``[start_date, end_date]`` and return the finished report.
    A run that fails upstream still returns 200 with a ``failed`` report.
    """
    settings = settings_repo.get()
    try:
        report = await run_in_threadpool(
            engine.run,
            payload.start_date,
            payload.end_date,
            settings=settings,
            trigger=RunTrigger.MANUAL,
        )
    except ReconciliationValidationError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except RunInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    return ReportRead.from_report(report)


@router.post(
    "/queue",
    response_model=ResponseBase,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Queue a reconciliation for the background worker",
)
async def queue_reconciliation(payload: RunRequest, queue: RunQueue = Depends(get_queue)) -> ResponseBase:
    if payload.start_date > payload.end_date:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Start date {payload.start_date.isoformat()} is after end date {payload.end_date.isoformat()}",
        )
    job = ReconciliationJob(period_start=payload.start_date, period_end=payload.end_date, trigger=RunTrigger.MANUAL)
    try:
        item = queue.enqueue(job, priority="manual")
    except OverflowError:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Reconciliation queue is full")
    logger.info("Manual reconciliation queued", key=job.key(), depth=queue.depth())
    return ResponseBase(
        success=True,
        message="Reconciliation queued",
        data={"job_key": job.key(), "correlation_id": item.job.correlation_id, "queue_depth": queue.depth()},
    )


@router.get("/reports", response_model=ReportPageRead, summary="List reports (newest first)")
async def list_reports(
    page: int = Query(1, description="1-based page; out-of-range values are clamped"),
    per_page: int = Query(10, ge=1, le=100),
    reports: ReportRepository = Depends(get_report_repository),
) -> ReportPageRead:
    reports.mark_stale_reports_failed()
    result = reports.get_paginated(max(page, 1), per_page)
    if result.pages and result.page > result.pages:
        result = reports.get_paginated(result.pages, per_page)
    return ReportPageRead.from_page(result)


@router.get("/reports/latest", response_model=ReportRead, summary="Most recent report")
async def latest_report(reports: ReportRepository = Depends(get_report_repository)) -> ReportRead:
    report = reports.get_latest()
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No reconciliation reports yet")
    return ReportRead.from_report(report)


@router.get("/reports/{report_id}", response_model=ReportRead, summary="Report with its discrepancies")
async def get_report(report_id: int, reports: ReportRepository = Depends(get_report_repository)) -> ReportRead:
    report = reports.get(report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    return ReportRead.from_report(report)


@router.get("/reports/{report_id}/export", summary="Download a report as CSV")
async def export_report(report_id: int, reports: ReportRepository = Depends(get_report_repository)) -> Response:
    report = reports.get(report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    return Response(
        content=render_csv(report).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(report)}"'},
    )


@router.delete("/reports/{report_id}", response_model=ResponseBase, summary="Delete one report")
async def delete_report(report_id: int, reports: ReportRepository = Depends(get_report_repository)) -> ResponseBase:
    if not reports.delete(report_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Report {report_id} not found")
    log_business_event("report_deleted", {"report_id": report_id})
    return ResponseBase(success=True, message=f"Report {report_id} deleted")


@router.delete("/reports", response_model=ResponseBase, summary="Delete all reports")
async def delete_all_reports(reports: ReportRepository = Depends(get_report_repository)) -> ResponseBase:
    reports.delete_all()
    log_business_event("reports_deleted", {"scope": "all"})
    return ResponseBase(success=True, message="All reports deleted")


@router.get("/health", response_model=ResponseBase, summary="Reconciliation subsystem health")
async def reconciliation_health(
    reports: ReportRepository = Depends(get_report_repository),
    engine: ReconciliationEngine = Depends(get_engine),
) -> ResponseBase:
    latest = reports.get_latest()
    return ResponseBase(
        success=True,
        message="ok",
        data={
            "latest_report": latest.to_dict(include_discrepancies=False) if latest else None,
            "run_lock_backend": engine.run_lock.backend,
            "circuit_breakers": SOURCE_CIRCUIT_BREAKER.snapshot(),
        },
    )
