"""Canonical in-memory records shared by sources, engine, repository and API.

Sources normalize upstream payloads into ``Order`` / ``Invoice``; the engine
produces ``Discrepancy`` rows, a ``Summary`` and a ``Report``. ``to_dict`` /
``from_dict`` give the JSON shape persisted in report rows and returned by
the API (amounts as strings, dates as ISO-8601).
"""
from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from invoice_recon.models.db.enums import DiscrepancyType, ReportStatus, RunTrigger
from invoice_recon.utils.money import ZERO, to_amount


# Parts of an order or invoice total, compared when the totals disagree
AMOUNT_COMPONENTS = ("subtotal", "shipping", "discount", "tax", "fees_adjustment")


def _iso(value: date | datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _amount_or_none(value: Any) -> Decimal | None:
    return None if value is None else to_amount(value)


@dataclass(frozen=True)
class Order:
    id: Optional[str]
    number: Optional[str]
    date: Optional[date] = None
    status: Optional[str] = None
    total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    refund_total: Decimal = ZERO
    currency: Optional[str] = None
    # Optional totals keyed by AMOUNT_COMPONENTS; only what the source reported
    components: Dict[str, Decimal] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Invoice:
    id: Optional[str]
    number: Optional[str]
    reference: Optional[str] = None
    date: Optional[date] = None
    status: Optional[str] = None
    total: Decimal = ZERO
    amount_paid: Decimal = ZERO
    credit_total: Decimal = ZERO
    currency: Optional[str] = None
    components: Dict[str, Decimal] = field(default_factory=dict, compare=False)


_DISCREPANCY_AMOUNT_FIELDS = (
    "order_total", "order_paid", "order_refunded",
    "invoice_total", "invoice_paid", "zoho_credits", "difference",
)
_DISCREPANCY_DATE_FIELDS = ("order_date", "invoice_date")


@dataclass(frozen=True)
class Discrepancy:
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
    difference: Optional[Decimal] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "type":
                data[f.name] = value.value
            elif isinstance(value, Decimal):
                data[f.name] = str(value)
            elif isinstance(value, date):
                data[f.name] = value.isoformat()
            else:
                data[f.name] = value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Discrepancy":
        known = {f.name for f in fields(cls)}
        kwargs = {k: v for k, v in data.items() if k in known}
        kwargs["type"] = DiscrepancyType(data["type"])
        for name in _DISCREPANCY_AMOUNT_FIELDS:
            kwargs[name] = _amount_or_none(kwargs.get(name))
        for name in _DISCREPANCY_DATE_FIELDS:
            kwargs[name] = _parse_date(kwargs.get(name))
        return cls(**kwargs)


@dataclass(frozen=True)
class Summary:
    total_wc_orders: int = 0
    total_zoho_invoices: int = 0
    matched_count: int = 0
    missing_in_zoho: int = 0
    missing_in_wc: int = 0
    amount_mismatches: int = 0
    payment_mismatches: int = 0
    refund_mismatches: int = 0
    status_mismatches: int = 0
    amount_difference: Decimal = ZERO

    def to_dict(self) -> dict[str, Any]:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        data["amount_difference"] = str(self.amount_difference)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Summary":
        kwargs = {f.name: data.get(f.name, 0) for f in fields(cls)}
        kwargs["amount_difference"] = to_amount(kwargs["amount_difference"])
        return cls(**kwargs)


@dataclass
class Report:
    period_start: date
    period_end: date
    status: ReportStatus = ReportStatus.PENDING
    id: Optional[int] = None
    generated_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    trigger: RunTrigger = RunTrigger.MANUAL
    error: Optional[str] = None
    summary: Optional[Summary] = None
    discrepancies: list[Discrepancy] = field(default_factory=list)

    @property
    def discrepancy_count(self) -> int:
        return len(self.discrepancies)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def to_dict(self, include_discrepancies: bool = True) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "period_start": _iso(self.period_start),
            "period_end": _iso(self.period_end),
            "status": self.status.value,
            "trigger": self.trigger.value,
            "generated_at": _iso(self.generated_at),
            "finished_at": _iso(self.finished_at),
            "error": self.error,
            "summary": self.summary.to_dict() if self.summary else None,
            "discrepancy_count": self.discrepancy_count,
        }
        if include_discrepancies:
            data["discrepancies"] = [d.to_dict() for d in self.discrepancies]
        return data


@dataclass(frozen=True)
class ReportPage:
    reports: list[Report]
    total: int
    pages: int
    page: int = 1
    per_page: int = 10


__all__ = ["AMOUNT_COMPONENTS", "Order", "Invoice", "Discrepancy", "Summary", "Report", "ReportPage"]
