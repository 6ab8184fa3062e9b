"""SQLAlchemy model for persisted reconciliation reports."""
from __future__ import annotations
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Enum, Integer, JSON, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from invoice_recon.database import Base
from .enums import ReportStatus, RunTrigger


class ReconciliationReportRecord(Base):
    __tablename__ = "reconciliation_reports"
    __table_args__ = (
        Index("ix_reconciliation_reports_period", "period_start", "period_end"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[ReportStatus] = mapped_column(Enum(ReportStatus), nullable=False, default=ReportStatus.PENDING, index=True)
    trigger: Mapped[RunTrigger] = mapped_column(Enum(RunTrigger), nullable=False, default=RunTrigger.MANUAL)

    # Set once on creation; the stale sweep compares against it
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    discrepancies: Mapped[list | None] = mapped_column(JSON, nullable=True)
    # Denormalized so listings can filter without decoding the JSON payload
    discrepancy_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
