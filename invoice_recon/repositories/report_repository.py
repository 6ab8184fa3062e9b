"""Durable store for reconciliation reports.

Every method opens its own short transaction from the session factory so the
repository can be shared between the API threadpool, the worker thread and
the scheduler thread.

A report row is written twice in its life: once as ``running`` when the engine
creates it and once when the engine (or the stale sweep) moves it to a
terminal status. Terminal rows are never updated again.
"""
from __future__ import annotations

import math
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from invoice_recon.config import STALE_RUN_SETTINGS, RETENTION_SETTINGS
from invoice_recon.exceptions import ReportImmutableError
from invoice_recon.models.db.enums import ReportStatus
from invoice_recon.models.db.reconciliation_reports import ReconciliationReportRecord
from invoice_recon.models.records import Discrepancy, Report, ReportPage, Summary
from invoice_recon.utils.logger import get_logger
from invoice_recon.utils.time import as_utc, utc_now

logger = get_logger(__name__)

STALE_RUN_ERROR = "Reconciliation run did not complete (timed out or crashed)"


def _to_report(row: ReconciliationReportRecord) -> Report:
    return Report(
        id=row.id,
        period_start=row.period_start,
        period_end=row.period_end,
        status=row.status,
        trigger=row.trigger,
        generated_at=as_utc(row.generated_at) if row.generated_at else None,
        finished_at=as_utc(row.finished_at) if row.finished_at else None,
        error=row.error,
        summary=Summary.from_dict(row.summary) if row.summary else None,
        discrepancies=[Discrepancy.from_dict(d) for d in (row.discrepancies or [])],
    )


def _apply(row: ReconciliationReportRecord, report: Report) -> None:
    row.status = report.status
    row.trigger = report.trigger
    row.finished_at = report.finished_at
    row.error = report.error
    row.summary = report.summary.to_dict() if report.summary else None
    row.discrepancies = [d.to_dict() for d in report.discrepancies]
    row.discrepancy_count = report.discrepancy_count


class ReportRepository:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session], clock: Callable[[], datetime] = utc_now):
        self._session_factory = session_factory
        self._clock = clock

    # ------------------------------------------------------------------ writes

    def save(self, report: Report) -> Report:
        """Insert a new report or finalize a ``running`` one; returns the stored value."""
        with self._session_factory() as session, session.begin():
            if report.id is None:
                if report.generated_at is None:
                    report.generated_at = self._clock()
                row = ReconciliationReportRecord(
                    period_start=report.period_start,
                    period_end=report.period_end,
                    generated_at=report.generated_at,
                )
                _apply(row, report)
                session.add(row)
                session.flush()
                report.id = row.id
                return report

            row = session.get(ReconciliationReportRecord, report.id, with_for_update=True)
            if row is None:
                raise LookupError(f"Report {report.id} does not exist")
            if row.status.is_terminal:
                raise ReportImmutableError(f"Report {report.id} is already {row.status.value}")
            _apply(row, report)
            return report

    def delete(self, report_id: int) -> bool:
        with self._session_factory() as session, session.begin():
            result = session.execute(delete(ReconciliationReportRecord).where(ReconciliationReportRecord.id == report_id))
            return result.rowcount > 0

    def delete_all(self) -> bool:
        with self._session_factory() as session, session.begin():
            result = session.execute(delete(ReconciliationReportRecord))
        logger.info("All reconciliation reports deleted", deleted=result.rowcount)
        return True

    def delete_old_reports(self, days: int | None = None) -> int:
        """Retention cleanup: drop terminal reports generated more than ``days`` ago."""
        days = RETENTION_SETTINGS["retention_days"] if days is None else days
        cutoff = self._clock() - timedelta(days=days)
        with self._session_factory() as session, session.begin():
            result = session.execute(
                delete(ReconciliationReportRecord).where(
                    ReconciliationReportRecord.generated_at < cutoff,
                    ReconciliationReportRecord.status.in_([ReportStatus.COMPLETED, ReportStatus.FAILED]),
                )
            )
        if result.rowcount:
            logger.info("Old reconciliation reports deleted", deleted=result.rowcount, retention_days=days)
        return result.rowcount

    def mark_stale_reports_failed(self, threshold: timedelta | None = None, now: datetime | None = None) -> int:
        """Fail ``running`` rows older than ``threshold``; returns the number swept.

        Safe to call repeatedly: a swept row is terminal and never matches again.
        """
        if threshold is None:
            threshold = timedelta(minutes=STALE_RUN_SETTINGS["threshold_minutes"])
        now = now or self._clock()
        cutoff = now - threshold
        with self._session_factory() as session, session.begin():
            result = session.execute(
                update(ReconciliationReportRecord)
                .where(
                    ReconciliationReportRecord.status == ReportStatus.RUNNING,
                    ReconciliationReportRecord.generated_at < cutoff,
                )
                .values(status=ReportStatus.FAILED, error=STALE_RUN_ERROR, finished_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.warning("Stale reconciliation runs marked failed", count=result.rowcount, threshold_minutes=threshold.total_seconds() / 60)
        return result.rowcount

    # ------------------------------------------------------------------- reads

    def get(self, report_id: int) -> Report | None:
        with self._session_factory() as session:
            row = session.get(ReconciliationReportRecord, report_id)
            return _to_report(row) if row else None

    def get_latest(self) -> Report | None:
        with self._session_factory() as session:
            row = session.scalars(
                select(ReconciliationReportRecord)
                .order_by(ReconciliationReportRecord.generated_at.desc(), ReconciliationReportRecord.id.desc())
                .limit(1)
            ).first()
            return _to_report(row) if row else None

    def get_paginated(self, page: int = 1, per_page: int = 10) -> ReportPage:
        if page < 1 or per_page < 1:
            raise ValueError("page and per_page must be >= 1")
        with self._session_factory() as session:
            total = session.scalar(select(func.count()).select_from(ReconciliationReportRecord)) or 0
            rows = session.scalars(
                select(ReconciliationReportRecord)
                .order_by(ReconciliationReportRecord.generated_at.desc(), ReconciliationReportRecord.id.desc())
                .offset((page - 1) * per_page)
                .limit(per_page)
            ).all()
            reports = [_to_report(r) for r in rows]
        return ReportPage(reports=reports, total=total, pages=math.ceil(total / per_page), page=page, per_page=per_page)

    def get_by_status(self, status: ReportStatus, limit: int = 10) -> list[Report]:
        with self._session_factory() as session:
            rows = session.scalars(
                select(ReconciliationReportRecord)
                .where(ReconciliationReportRecord.status == status)
                .order_by(ReconciliationReportRecord.generated_at.desc(), ReconciliationReportRecord.id.desc())
                .limit(limit)
            ).all()
            return [_to_report(r) for r in rows]

    def has_running_for_period(self, start: date, end: date, threshold: timedelta | None = None) -> bool:
        """True when a non-stale ``running`` row covers exactly this period."""
        if threshold is None:
            threshold = timedelta(minutes=STALE_RUN_SETTINGS["threshold_minutes"])
        cutoff = self._clock() - threshold
        with self._session_factory() as session:
            found = session.scalar(
                select(ReconciliationReportRecord.id).where(
                    ReconciliationReportRecord.period_start == start,
                    ReconciliationReportRecord.period_end == end,
                    ReconciliationReportRecord.status == ReportStatus.RUNNING,
                    ReconciliationReportRecord.generated_at >= cutoff,
                ).limit(1)
            )
            return found is not None

    def exists_for_period(self, start: date, end: date) -> bool:
        """True when a completed report covers exactly this period."""
        with self._session_factory() as session:
            found = session.scalar(
                select(ReconciliationReportRecord.id).where(
                    ReconciliationReportRecord.period_start == start,
                    ReconciliationReportRecord.period_end == end,
                    ReconciliationReportRecord.status == ReportStatus.COMPLETED,
                ).limit(1)
            )
            return found is not None

    def get_with_discrepancies(self, start: date | None = None, end: date | None = None) -> list[Report]:
        """Completed reports with at least one discrepancy, optionally limited to periods inside [start, end]."""
        stmt = select(ReconciliationReportRecord).where(
            ReconciliationReportRecord.status == ReportStatus.COMPLETED,
            ReconciliationReportRecord.discrepancy_count > 0,
        )
        if start is not None:
            stmt = stmt.where(ReconciliationReportRecord.period_start >= start)
        if end is not None:
            stmt = stmt.where(ReconciliationReportRecord.period_end <= end)
        stmt = stmt.order_by(ReconciliationReportRecord.generated_at.desc(), ReconciliationReportRecord.id.desc())
        with self._session_factory() as session:
            return [_to_report(r) for r in session.scalars(stmt).all()]


__all__ = ["ReportRepository", "STALE_RUN_ERROR"]
