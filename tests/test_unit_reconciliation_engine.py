from datetime import date, timedelta
from decimal import Decimal

import pytest

from invoice_recon.exceptions import ReconciliationValidationError, RunInProgressError, SourceError
from invoice_recon.jobs.run_lock import RunLock
from invoice_recon.models.db.enums import DiscrepancyType, ReportStatus, RunTrigger
from invoice_recon.models.records import Report
from invoice_recon.models.schemas.settings import ReconciliationSettings
from invoice_recon.repositories.report_repository import STALE_RUN_ERROR
from invoice_recon.services.reconciliation_engine import index_invoices, reconcile
from invoice_recon.utils.time import utc_now
from conftest import FakeSource, make_invoice, make_order

START = date(2024, 1, 1)
END = date(2024, 1, 31)


def _types(report):
    return [d.type for d in report.discrepancies]


def test_order_without_invoice_is_missing_in_zoho(build_engine):
    order = make_order("1001", "50.00", day=date(2024, 1, 5))
    report = build_engine([order], []).run(START, END)
    assert report.status == ReportStatus.COMPLETED
    assert _types(report) == [DiscrepancyType.MISSING_IN_ZOHO]
    d = report.discrepancies[0]
    assert d.order_id == "1001"
    assert d.invoice_id is None
    assert d.message == "Order not found in Zoho Books"


def test_difference_within_tolerance_matches(build_engine):
    order = make_order("#1002", "100.00")
    invoice = make_invoice("1002", "100.03", paid="100.00", number="INV-1002")
    report = build_engine([order], [invoice], settings=ReconciliationSettings(amount_tolerance=Decimal("0.05"))).run(START, END)
    assert report.discrepancies == []
    assert report.summary.matched_count == 1


def test_difference_above_tolerance_is_amount_mismatch(build_engine):
    order = make_order("#1002", "100.00")
    invoice = make_invoice("1002", "100.03", paid="100.00", number="INV-1002")
    report = build_engine([order], [invoice], settings=ReconciliationSettings(amount_tolerance=Decimal("0.01"))).run(START, END)
    assert _types(report) == [DiscrepancyType.AMOUNT_MISMATCH]
    assert report.discrepancies[0].difference == Decimal("-0.03")
    assert report.summary.matched_count == 0
    assert report.summary.amount_difference == Decimal("0.03")


def test_invoice_without_order_is_missing_in_wc(build_engine):
    invoice = make_invoice("2000", "75.00", number="INV-2000")
    report = build_engine([], [invoice]).run(START, END)
    assert _types(report) == [DiscrepancyType.MISSING_IN_WC]
    d = report.discrepancies[0]
    assert d.invoice_id == "inv-2000"
    assert d.order_id is None


def test_latest_invoice_wins_duplicate_reference(build_engine):
    order = make_order("1003")
    older = make_invoice("1003", invoice_id="a", number="INV-A", day=date(2024, 2, 1))
    newer = make_invoice("1003", invoice_id="b", number="INV-B", day=date(2024, 2, 10))
    report = build_engine([order], [older, newer]).run(START, END)
    assert _types(report) == [DiscrepancyType.MISSING_IN_WC]
    assert report.discrepancies[0].invoice_id == "a"
    assert report.summary.matched_count == 1


def test_duplicate_reference_same_date_breaks_tie_by_id():
    first = make_invoice("1003", invoice_id="10", day=date(2024, 2, 1))
    second = make_invoice("1003", invoice_id="9", day=date(2024, 2, 1))
    index, unindexed = index_invoices([first, second])
    assert index["1003"].id == "10"
    assert [i.id for i in unindexed] == ["9"]


def test_invoice_without_reference_is_never_matched():
    order = make_order("1004")
    blank = make_invoice(None, invoice_id="x")
    discrepancies, matched = reconcile([order], [blank], ReconciliationSettings())
    assert matched == 0
    assert [d.type for d in discrepancies] == [DiscrepancyType.MISSING_IN_ZOHO, DiscrepancyType.MISSING_IN_WC]


def test_each_invoice_matches_at_most_one_order():
    orders = [make_order("1005", day=date(2024, 1, 2)), make_order("#1005", day=date(2024, 1, 3))]
    discrepancies, matched = reconcile(orders, [make_invoice("1005")], ReconciliationSettings())
    assert matched == 1
    assert [d.type for d in discrepancies] == [DiscrepancyType.MISSING_IN_ZOHO]
    assert discrepancies[0].order_date == date(2024, 1, 3)


def test_reference_matching_ignores_prefix_case_and_whitespace():
    order = make_order("#AB-7")
    invoice = make_invoice("  ab-7 ")
    discrepancies, matched = reconcile([order], [invoice], ReconciliationSettings())
    assert discrepancies == [] and matched == 1


def test_summary_counts_are_consistent(build_engine):
    orders = [
        make_order("1"),
        make_order("2", "20.00"),
        make_order("3"),
        make_order("4", status="completed"),
    ]
    invoices = [
        make_invoice("1"),
        make_invoice("2", "25.00", paid="20.00"),
        make_invoice("4", status="draft"),
        make_invoice("99"),
    ]
    report = build_engine(orders, invoices).run(START, END)
    s = report.summary
    assert s.total_wc_orders == 4
    assert s.total_zoho_invoices == 4
    assert s.matched_count == 1
    assert s.missing_in_zoho == 1
    assert s.missing_in_wc == 1
    assert s.amount_mismatches == 1
    assert s.status_mismatches == 1
    assert s.amount_difference == Decimal("5.00")
    per_type = s.missing_in_zoho + s.missing_in_wc + s.amount_mismatches + s.payment_mismatches + s.refund_mismatches + s.status_mismatches
    assert per_type == report.discrepancy_count


def test_report_is_persisted_as_completed(build_engine, report_repo):
    report = build_engine([make_order("1")], [make_invoice("1")]).run(START, END, trigger=RunTrigger.SCHEDULED)
    stored = report_repo.get(report.id)
    assert stored.status == ReportStatus.COMPLETED
    assert stored.trigger == RunTrigger.SCHEDULED
    assert stored.finished_at is not None
    assert stored.summary == report.summary


def test_start_after_end_is_rejected_without_a_report(build_engine, report_repo):
    with pytest.raises(ReconciliationValidationError):
        build_engine().run(END, START)
    assert report_repo.get_latest() is None


def test_source_failure_produces_failed_report(build_engine, report_repo):
    broken = FakeSource("zoho_books", errors=[SourceError("zoho_books", "zoho_books API returned status 401: nope", error_code="HTTP_401")])
    report = build_engine([make_order("1")], invoice_source=broken).run(START, END)
    assert report.status == ReportStatus.FAILED
    assert "401" in report.error
    assert report.summary is None
    assert report.discrepancies == []
    assert report_repo.get(report.id).status == ReportStatus.FAILED


def test_transient_source_error_is_retried(build_engine):
    flaky = FakeSource("woocommerce", [make_order("1")], errors=[SourceError("woocommerce", "timeout", error_code="TIMEOUT"), None])
    report = build_engine(invoices=[make_invoice("1")], order_source=flaky).run(START, END)
    assert report.status == ReportStatus.COMPLETED
    assert flaky.calls == [1, 1]


def test_unexpected_error_is_recorded_as_failure(build_engine):
    broken = FakeSource("woocommerce", errors=[RuntimeError("boom")])
    report = build_engine(order_source=broken).run(START, END)
    assert report.status == ReportStatus.FAILED
    assert report.error == "boom"


def test_run_in_progress_is_refused(build_engine):
    lock = RunLock(use_redis=False)
    assert lock.acquire(START, END)
    with pytest.raises(RunInProgressError):
        build_engine(run_lock=lock).run(START, END)
    lock.release(START, END)


def test_running_report_for_period_blocks_new_run(build_engine, report_repo):
    report_repo.save(Report(period_start=START, period_end=END, status=ReportStatus.RUNNING, generated_at=utc_now()))
    with pytest.raises(RunInProgressError):
        build_engine().run(START, END)


def test_stale_running_report_is_swept_before_run(build_engine, report_repo):
    stale = report_repo.save(Report(
        period_start=START,
        period_end=END,
        status=ReportStatus.RUNNING,
        generated_at=utc_now() - timedelta(hours=3),
    ))
    report = build_engine().run(START, END)
    assert report.status == ReportStatus.COMPLETED
    assert report_repo.get(stale.id).status == ReportStatus.FAILED


def test_lock_is_released_after_run(build_engine):
    lock = RunLock(use_redis=False)
    build_engine(run_lock=lock).run(START, END)
    assert lock.is_locked(START, END) is False


def test_settings_are_snapshotted_from_provider(build_engine):
    order = make_order("1002", "100.00")
    invoice = make_invoice("1002", "100.03", paid="100.00")
    engine = build_engine([order], [invoice], settings=ReconciliationSettings(amount_tolerance=Decimal("0.01")))
    assert engine.run(START, END).discrepancy_count == 1
    # explicit settings take precedence over the provider
    loose = ReconciliationSettings(amount_tolerance=Decimal("1.00"))
    engine = build_engine([order], [invoice], settings=ReconciliationSettings(amount_tolerance=Decimal("0.01")))
    assert engine.run(START, END, settings=loose).discrepancy_count == 0


class SweepingSource(FakeSource):
    """Order source whose first page triggers the stale sweep, as a concurrent caller would."""

    def __init__(self, report_repo, items=(), *, error=None):
        super().__init__("woocommerce", items)
        self.report_repo = report_repo
        self.error = error

    async def fetch_page(self, start, end, page):
        self.report_repo.mark_stale_reports_failed(timedelta(seconds=-1))
        if self.error is not None:
            raise self.error
        return await super().fetch_page(start, end, page)


def test_run_swept_while_draining_returns_failed_report(build_engine, report_repo):
    source = SweepingSource(report_repo, [make_order("1001")])
    report = build_engine(invoices=[make_invoice("1001", "100.00")], order_source=source).run(START, END)
    assert report.status == ReportStatus.FAILED
    assert report.error == STALE_RUN_ERROR
    assert report_repo.get(report.id).status == ReportStatus.FAILED


def test_failed_run_swept_while_draining_keeps_swept_row(build_engine, report_repo):
    error = SourceError("woocommerce", "woocommerce API returned status 401", error_code="HTTP_401")
    report = build_engine(order_source=SweepingSource(report_repo, error=error)).run(START, END)
    assert report.status == ReportStatus.FAILED
    assert report.error == STALE_RUN_ERROR
