"""SQLAlchemy model for the single reconciliation settings row."""
from __future__ import annotations
from datetime import date, datetime

from sqlalchemy import Date, DateTime, Integer, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from invoice_recon.database import Base


class ReconciliationSettingsRecord(Base):
    __tablename__ = "reconciliation_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    values: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # Scheduler bookkeeping
    last_scheduled_run_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_cleanup_on: Mapped[date | None] = mapped_column(Date, nullable=True)

    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
