"""Reconciliation engine orchestrator.

``ReconciliationEngine.run(start, end)``:
1. Validates the period (before any report row exists).
2. Sweeps stale ``running`` reports.
3. Takes the per-period run lock (``RunInProgressError`` when already held).
4. Snapshots settings once for the whole run.
5. Persists a ``running`` report.
6. Drains the order and invoice sources concurrently (two asyncio tasks).
7. Indexes invoices by normalized reference and matches orders against them.
8. Classifies matched pairs, flags unmatched orders/invoices, builds the summary.
9. Finalizes the report as ``completed``; any fetch or matching error
   finalizes it as ``failed`` with the raw message instead.
10. Releases the run lock.

The engine never retries: a failed report is a value the caller may act on
(the worker re-enqueues failed scheduled runs).
"""
from __future__ import annotations

import asyncio
import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from invoice_recon.exceptions import (
    ReconciliationValidationError,
    ReportImmutableError,
    RunInProgressError,
    SourceError,
)
from invoice_recon.jobs.run_lock import RunLock
from invoice_recon.models.db.enums import DiscrepancyType, ReportStatus, RunTrigger
from invoice_recon.models.records import Discrepancy, Invoice, Order, Report, Summary
from invoice_recon.models.schemas.settings import ReconciliationSettings
from invoice_recon.repositories.report_repository import ReportRepository
from invoice_recon.services.discrepancy_classifier import classify
from invoice_recon.services.source_fetcher import SourceFetcher
from invoice_recon.utils.logger import get_logger, log_business_event, log_performance
from invoice_recon.utils.money import ZERO
from invoice_recon.utils.references import normalize_reference
from invoice_recon.utils.time import utc_now

logger = get_logger(__name__)


def _natural(value: Optional[str]) -> Tuple[int, int, str]:
    """Sort key ordering numeric ids numerically and the rest lexically; None sorts last."""
    if value is None:
        return (2, 0, "")
    text = str(value)
    if text.isdigit():
        return (0, int(text), "")
    return (1, 0, text)


def _order_sort_key(order: Order):
    return (order.date or date.min, _natural(order.number), _natural(order.id))


def _invoice_sort_key(invoice: Invoice):
    return (invoice.date or date.min, _natural(invoice.number), _natural(invoice.id))


def _authority_key(invoice: Invoice):
    # Latest date wins; ties fall to the greater id, then the greater number
    return (invoice.date or date.min, _natural(invoice.id), _natural(invoice.number))


def index_invoices(invoices: Iterable[Invoice], prefix: str = "#") -> Tuple[Dict[str, Invoice], List[Invoice]]:
    """Index invoices by normalized reference.

    Returns ``(index, unindexed)`` where ``unindexed`` holds invoices with an
    empty reference plus the losers of duplicate-reference contests.
    """
    index: Dict[str, Invoice] = {}
    unindexed: List[Invoice] = []
    for invoice in invoices:
        key = normalize_reference(invoice.reference, prefix)
        if not key:
            unindexed.append(invoice)
            continue
        current = index.get(key)
        if current is None:
            index[key] = invoice
        elif _authority_key(invoice) > _authority_key(current):
            unindexed.append(current)
            index[key] = invoice
        else:
            unindexed.append(invoice)
    return index, unindexed


def _missing_in_zoho(order: Order) -> Discrepancy:
    return Discrepancy(
        type=DiscrepancyType.MISSING_IN_ZOHO,
        order_id=order.id,
        order_number=order.number,
        order_date=order.date,
        order_status=order.status,
        order_total=order.total,
        order_paid=order.amount_paid,
        message="Order not found in Zoho Books",
    )


def _missing_in_wc(invoice: Invoice) -> Discrepancy:
    return Discrepancy(
        type=DiscrepancyType.MISSING_IN_WC,
        invoice_id=invoice.id,
        invoice_number=invoice.number,
        invoice_reference=invoice.reference,
        invoice_date=invoice.date,
        invoice_status=invoice.status,
        invoice_total=invoice.total,
        invoice_paid=invoice.amount_paid,
        zoho_credits=invoice.credit_total,
        message="Invoice has no matching WooCommerce order",
    )


def reconcile(orders: List[Order], invoices: List[Invoice], settings: ReconciliationSettings) -> Tuple[List[Discrepancy], int]:
    """Match orders to invoices; returns ``(discrepancies, matched_count)``."""
    index, unmatched = index_invoices(invoices, settings.reference_prefix)
    tolerance = Decimal(settings.amount_tolerance)
    discrepancies: List[Discrepancy] = []
    matched_count = 0

    for order in sorted(orders, key=_order_sort_key):
        key = normalize_reference(order.number, settings.reference_prefix)
        # pop: an invoice is consumed by at most one order
        invoice = index.pop(key, None) if key else None
        if invoice is None:
            discrepancies.append(_missing_in_zoho(order))
            continue
        found = classify(order, invoice, tolerance)
        if found:
            discrepancies.extend(found)
        else:
            matched_count += 1

    leftovers = sorted(list(index.values()) + unmatched, key=_invoice_sort_key)
    discrepancies.extend(_missing_in_wc(invoice) for invoice in leftovers)
    return discrepancies, matched_count


def summarize(discrepancies: List[Discrepancy], total_orders: int, total_invoices: int, matched_count: int) -> Summary:
    counts = {t: 0 for t in DiscrepancyType}
    amount_difference = ZERO
    for d in discrepancies:
        counts[d.type] += 1
        if d.type.has_difference and d.difference is not None:
            amount_difference += abs(d.difference)
    return Summary(
        total_wc_orders=total_orders,
        total_zoho_invoices=total_invoices,
        matched_count=matched_count,
        missing_in_zoho=counts[DiscrepancyType.MISSING_IN_ZOHO],
        missing_in_wc=counts[DiscrepancyType.MISSING_IN_WC],
        amount_mismatches=counts[DiscrepancyType.AMOUNT_MISMATCH],
        payment_mismatches=counts[DiscrepancyType.PAYMENT_MISMATCH],
        refund_mismatches=counts[DiscrepancyType.REFUND_MISMATCH],
        status_mismatches=counts[DiscrepancyType.STATUS_MISMATCH],
        amount_difference=amount_difference,
    )


class ReconciliationEngine:
    def __init__(
        self,
        reports: ReportRepository,
        order_source: Any,
        invoice_source: Any,
        *,
        settings_provider: Optional[Callable[[], ReconciliationSettings]] = None,
        run_lock: Optional[RunLock] = None,
        fetcher: Optional[SourceFetcher] = None,
        stale_threshold: Optional[timedelta] = None,
        clock: Callable = utc_now,
    ):
        self.reports = reports
        self.order_source = order_source
        self.invoice_source = invoice_source
        self.settings_provider = settings_provider or ReconciliationSettings.from_defaults
        self.run_lock = run_lock or RunLock(use_redis=False)
        self.fetcher = fetcher or SourceFetcher()
        self.stale_threshold = stale_threshold
        self._clock = clock

    @classmethod
    def from_config(cls, session_factory, run_lock: Optional[RunLock] = None) -> "ReconciliationEngine":
        """Engine wired to the configured WooCommerce / Zoho Books sources and the DB-backed settings."""
        from invoice_recon.integrations.woocommerce import WooCommerceOrderSource
        from invoice_recon.integrations.zoho_books import ZohoBooksInvoiceSource
        from invoice_recon.repositories.settings_repository import SettingsRepository

        return cls(
            ReportRepository(session_factory),
            WooCommerceOrderSource(),
            ZohoBooksInvoiceSource(),
            settings_provider=SettingsRepository(session_factory).get,
            run_lock=run_lock,
        )

    async def _drain_both(self, start: date, end: date) -> Tuple[List[Order], List[Invoice]]:
        orders, invoices = await asyncio.gather(
            self.fetcher.drain(self.order_source, start, end),
            self.fetcher.drain(self.invoice_source, start, end),
        )
        return orders.items, invoices.items

    def _store_final(self, report: Report) -> Optional[Report]:
        """Persist a terminal report; None when the row was already closed by the stale sweep."""
        try:
            return self.reports.save(report)
        except ReportImmutableError as exc:
            logger.warning("Report was closed before the run finished", report_id=report.id, error=str(exc))
            return None

    def _finalize_failed(self, report: Report, message: str) -> Report:
        report.status = ReportStatus.FAILED
        report.error = message
        report.summary = None
        report.discrepancies = []
        report.finished_at = self._clock()
        if self._store_final(report) is None:
            return self.reports.get(report.id) or report
        log_business_event("reconciliation_failed", {
            "report_id": report.id,
            "period_start": report.period_start.isoformat(),
            "period_end": report.period_end.isoformat(),
            "error": message,
        })
        return report

    def run(
        self,
        start: date,
        end: date,
        *,
        settings: Optional[ReconciliationSettings] = None,
        trigger: RunTrigger | str = RunTrigger.MANUAL,
    ) -> Report:
        if start is None or end is None:
            raise ReconciliationValidationError("Both start and end dates are required")
        if start > end:
            raise ReconciliationValidationError(
                f"Start date {start.isoformat()} is after end date {end.isoformat()}"
            )
        trigger = RunTrigger(trigger)

        self.reports.mark_stale_reports_failed(self.stale_threshold)

        if not self.run_lock.acquire(start, end):
            logger.warning("Reconciliation already running", period_start=start.isoformat(), period_end=end.isoformat())
            raise RunInProgressError(start, end)
        try:
            # Another process may hold the period without sharing our lock backend
            if self.reports.has_running_for_period(start, end, self.stale_threshold):
                raise RunInProgressError(start, end)

            snapshot = settings or self.settings_provider()
            report = self.reports.save(Report(
                period_start=start,
                period_end=end,
                status=ReportStatus.RUNNING,
                generated_at=self._clock(),
                trigger=trigger,
            ))
            logger.info(
                "Reconciliation started",
                report_id=report.id,
                period_start=start.isoformat(),
                period_end=end.isoformat(),
                trigger=trigger.value,
            )
            started = time.perf_counter()

            try:
                orders, invoices = asyncio.run(self._drain_both(start, end))
                discrepancies, matched_count = reconcile(orders, invoices, snapshot)
                summary = summarize(discrepancies, len(orders), len(invoices), matched_count)
            except SourceError as exc:
                logger.error("Reconciliation fetch failed", report_id=report.id, source=exc.source, error=str(exc))
                return self._finalize_failed(report, str(exc))
            except Exception as exc:
                logger.exception("Reconciliation failed unexpectedly", report_id=report.id)
                return self._finalize_failed(report, str(exc) or exc.__class__.__name__)

            report.status = ReportStatus.COMPLETED
            report.summary = summary
            report.discrepancies = discrepancies
            report.finished_at = self._clock()
            if self._store_final(report) is None:
                return self.reports.get(report.id) or report

            log_performance(
                "reconciliation_run",
                (time.perf_counter() - started) * 1000,
                {"report_id": report.id, "orders": len(orders), "invoices": len(invoices)},
            )
            log_business_event("reconciliation_completed", {
                "report_id": report.id,
                "period_start": start.isoformat(),
                "period_end": end.isoformat(),
                "discrepancies": len(discrepancies),
                "matched": matched_count,
            })
            return report
        finally:
            self.run_lock.release(start, end)


__all__ = ["ReconciliationEngine", "reconcile", "summarize", "index_invoices"]
