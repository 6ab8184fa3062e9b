"""Discrepancy classification logic.

Compares one matched order/invoice pair and emits zero or more
``Discrepancy`` rows, always in the order amount, payment, refund, status.
Pure function of its inputs: no I/O, no settings lookups, no clock.

A difference exactly equal to the tolerance is *not* a mismatch.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Dict, FrozenSet, List

from invoice_recon.models.db.enums import DiscrepancyType
from invoice_recon.models.records import AMOUNT_COMPONENTS, Discrepancy, Invoice, Order
from invoice_recon.utils.money import format_amount

# Order status -> invoice statuses that agree with it
STATUS_MAP: Dict[str, FrozenSet[str]] = {
    "completed": frozenset({"paid", "partially_paid"}),
    "processing": frozenset({"draft", "sent", "viewed", "overdue", "unpaid", "partially_paid", "paid"}),
    "refunded": frozenset({"void"}),
    "cancelled": frozenset({"void", "draft"}),
}


def _pair_fields(order: Order, invoice: Invoice) -> dict:
    return {
        "order_id": order.id,
        "order_number": order.number,
        "order_date": order.date,
        "order_status": order.status,
        "order_total": order.total,
        "order_paid": order.amount_paid,
        "order_refunded": order.refund_total,
        "invoice_id": invoice.id,
        "invoice_number": invoice.number,
        "invoice_reference": invoice.reference,
        "invoice_date": invoice.date,
        "invoice_status": invoice.status,
        "invoice_total": invoice.total,
        "invoice_paid": invoice.amount_paid,
        "zoho_credits": invoice.credit_total,
    }


def component_breakdown(order: Order, invoice: Invoice, tolerance: Decimal, currency: str | None = None) -> List[str]:
    """``Shipping: WC x vs Zoho y`` lines for components both sides report that differ beyond tolerance."""
    details = []
    for name in AMOUNT_COMPONENTS:
        if name not in order.components or name not in invoice.components:
            continue
        wc, zoho = order.components[name], invoice.components[name]
        if abs(wc - zoho) > tolerance:
            label = name.replace("_", " ").capitalize()
            details.append(f"{label}: WC {format_amount(wc, currency)} vs Zoho {format_amount(zoho, currency)}")
    return details


def status_agrees(order_status: str | None, invoice_status: str | None, credit_total: Decimal, tolerance: Decimal) -> bool:
    """True when the invoice status is acceptable for the order status (or the order status is unmapped)."""
    key = (order_status or "").lower()
    if key not in STATUS_MAP:
        return True
    if key == "refunded" and credit_total > tolerance:
        return True
    return (invoice_status or "").lower() in STATUS_MAP[key]


def classify(order: Order, invoice: Invoice, tolerance: Decimal) -> List[Discrepancy]:
    if not isinstance(tolerance, Decimal):
        tolerance = Decimal(str(tolerance))
    base = _pair_fields(order, invoice)
    currency = order.currency or invoice.currency
    found: List[Discrepancy] = []

    total_diff = order.total - invoice.total
    if abs(total_diff) > tolerance:
        message = (
            f"Total mismatch: WC {format_amount(order.total, currency)} vs "
            f"Zoho {format_amount(invoice.total, currency)} (diff: {format_amount(total_diff, currency)})"
        )
        details = component_breakdown(order, invoice, tolerance, currency)
        if details:
            message += " | " + "; ".join(details)
        found.append(Discrepancy(
            type=DiscrepancyType.AMOUNT_MISMATCH,
            difference=total_diff,
            message=message,
            **base,
        ))

    paid_diff = order.amount_paid - invoice.amount_paid
    if abs(paid_diff) > tolerance:
        found.append(Discrepancy(
            type=DiscrepancyType.PAYMENT_MISMATCH,
            difference=paid_diff,
            message=(
                f"Payment mismatch: WC received {format_amount(order.amount_paid, currency)} vs "
                f"Zoho received {format_amount(invoice.amount_paid, currency)}"
            ),
            **base,
        ))

    refund_diff = order.refund_total - invoice.credit_total
    if abs(refund_diff) > tolerance:
        found.append(Discrepancy(
            type=DiscrepancyType.REFUND_MISMATCH,
            difference=refund_diff,
            message=(
                f"Refund mismatch: WC refunded {format_amount(order.refund_total, currency)} but "
                f"Zoho shows {format_amount(invoice.credit_total, currency)} credits"
            ),
            **base,
        ))

    if not status_agrees(order.status, invoice.status, invoice.credit_total, tolerance):
        found.append(Discrepancy(
            type=DiscrepancyType.STATUS_MISMATCH,
            message=f"Invoice is {invoice.status or '—'} but order is {order.status or '—'}",
            **base,
        ))

    return found


__all__ = ["classify", "component_breakdown", "status_agrees", "STATUS_MAP"]
