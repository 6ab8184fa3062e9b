"""CSV export of a reconciliation report (UTF-8 with BOM so spreadsheets detect the encoding)."""
from __future__ import annotations

import csv
import html
import io
import re
from decimal import Decimal
from typing import List, Optional, Tuple

from invoice_recon.models.db.enums import DiscrepancyType, ReportStatus
from invoice_recon.models.records import Discrepancy, Report, Summary

BOM = "\ufeff"
DISCREPANCY_HEADER = ["Type", "Order/Invoice", "Date", "WC Amount", "Zoho Amount", "Difference", "Details"]

SUMMARY_LABELS: List[Tuple[str, str]] = [
    ("total_wc_orders", "WooCommerce Orders"),
    ("total_zoho_invoices", "Zoho Invoices"),
    ("matched_count", "Matched"),
    ("missing_in_zoho", "Missing in Zoho"),
    ("missing_in_wc", "Missing in WooCommerce"),
    ("amount_mismatches", "Amount Mismatches"),
    ("payment_mismatches", "Payment Mismatches"),
    ("refund_mismatches", "Refund Mismatches"),
    ("status_mismatches", "Status Mismatches"),
    ("amount_difference", "Total Difference"),
]

_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    return html.unescape(_TAG_RE.sub("", text)).strip()


def export_filename(report: Report) -> str:
    return f"reconciliation-report-{report.period_start.isoformat()}-to-{report.period_end.isoformat()}.csv"


def _cell(value: Optional[Decimal | str]) -> str:
    return "" if value is None else str(value)


def _amounts(d: Discrepancy) -> Tuple[Optional[Decimal], Optional[Decimal]]:
    if d.type == DiscrepancyType.PAYMENT_MISMATCH:
        return d.order_paid, d.invoice_paid
    if d.type == DiscrepancyType.REFUND_MISMATCH:
        return d.order_refunded, d.zoho_credits
    return d.order_total, d.invoice_total


def discrepancy_row(d: Discrepancy) -> List[str]:
    wc_amount, zoho_amount = _amounts(d)
    reference = d.order_number or d.invoice_number or d.invoice_reference or d.order_id or d.invoice_id
    day = d.order_date or d.invoice_date
    return [
        d.type.label,
        _cell(reference),
        day.isoformat() if day else "",
        _cell(wc_amount),
        _cell(zoho_amount),
        _cell(d.difference),
        strip_html(d.message),
    ]


def render_csv(report: Report) -> str:
    buffer = io.StringIO()
    buffer.write(BOM)
    writer = csv.writer(buffer, lineterminator="\n")

    writer.writerow(["Reconciliation Report"])
    writer.writerow(["Period", f"{report.period_start.isoformat()} to {report.period_end.isoformat()}"])
    generated = report.generated_at.strftime("%Y-%m-%d %H:%M:%S") if report.generated_at else ""
    writer.writerow(["Generated", generated])
    writer.writerow(["Status", report.status.value.capitalize()])
    if report.status == ReportStatus.FAILED and report.error:
        writer.writerow(["Error", report.error])
    writer.writerow([])

    summary = report.summary or Summary()
    writer.writerow(["Summary"])
    for field_name, label in SUMMARY_LABELS:
        writer.writerow([label, str(getattr(summary, field_name))])
    writer.writerow([])

    writer.writerow([f"Discrepancies ({report.discrepancy_count})"])
    writer.writerow(DISCREPANCY_HEADER)
    for d in report.discrepancies:
        writer.writerow(discrepancy_row(d))

    return buffer.getvalue()


__all__ = ["render_csv", "export_filename", "discrepancy_row", "strip_html", "SUMMARY_LABELS", "DISCREPANCY_HEADER"]
