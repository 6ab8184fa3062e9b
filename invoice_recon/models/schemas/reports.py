"""
Pydantic schemas for reconciliation runs and reports.
"""
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from invoice_recon.models.db.enums import DiscrepancyType, ReportStatus, RunTrigger
from invoice_recon.models.records import Report, ReportPage


class RunRequest(BaseModel):
    """Manual run trigger; both dates inclusive."""
    start_date: date = Field(description="First day of the period (00:00:00 UTC)")
    end_date: date = Field(description="Last day of the period (23:59:59 UTC)")


class DiscrepancyRead(BaseModel):
    type: DiscrepancyType
    message: str = ""
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    order_date: Optional[date] = None
    order_status: Optional[str] = None
    order_total: Optional[Decimal] = None
    order_paid: Optional[Decimal] = None
    order_refunded: Optional[Decimal] = None
    invoice_id: Optional[str] = None
    invoice_number: Optional[str] = None
    invoice_reference: Optional[str] = None
    invoice_date: Optional[date] = None
    invoice_status: Optional[str] = None
    invoice_total: Optional[Decimal] = None
    invoice_paid: Optional[Decimal] = None
    zoho_credits: Optional[Decimal] = None
    difference: Optional[Decimal] = Field(None, description="Order side minus invoice side")


class SummaryRead(BaseModel):
    total_wc_orders: int
    total_zoho_invoices: int
    matched_count: int
    missing_in_zoho: int
    missing_in_wc: int
    amount_mismatches: int
    payment_mismatches: int
    refund_mismatches: int
    status_mismatches: int
    amount_difference: Decimal


class ReportRead(BaseModel):
    id: int
    period_start: date
    period_end: date
    status: ReportStatus
    trigger: RunTrigger
    generated_at: datetime
    finished_at: Optional[datetime] = None
    error: Optional[str] = None
    summary: Optional[SummaryRead] = None
    discrepancy_count: int = 0
    discrepancies: List[DiscrepancyRead] = Field(default_factory=list)

    @classmethod
    def from_report(cls, report: Report, include_discrepancies: bool = True) -> "ReportRead":
        return cls.model_validate(report.to_dict(include_discrepancies=include_discrepancies))


class ReportPageRead(BaseModel):
    reports: List[ReportRead]
    total: int
    pages: int
    page: int
    per_page: int

    @classmethod
    def from_page(cls, page: ReportPage) -> "ReportPageRead":
        return cls(
            reports=[ReportRead.from_report(r, include_discrepancies=False) for r in page.reports],
            total=page.total,
            pages=page.pages,
            page=page.page,
            per_page=page.per_page,
        )


__all__ = [
    "RunRequest",
    "DiscrepancyRead",
    "SummaryRead",
    "ReportRead",
    "ReportPageRead",
]
