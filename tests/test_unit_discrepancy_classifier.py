from dataclasses import replace
from decimal import Decimal

from invoice_recon.models.db.enums import DiscrepancyType
from invoice_recon.services.discrepancy_classifier import classify, component_breakdown, status_agrees
from conftest import make_invoice, make_order

TOL = Decimal("0.05")


def test_classify_identical_pair_has_no_discrepancies():
    assert classify(make_order("1001"), make_invoice("1001"), TOL) == []


def test_difference_equal_to_tolerance_is_not_a_mismatch():
    order = make_order("1001", "100.05")
    invoice = make_invoice("1001", "100.00", paid="100.05")
    assert classify(order, invoice, TOL) == []


def test_difference_above_tolerance_is_amount_mismatch():
    order = make_order("1001", "100.06")
    invoice = make_invoice("1001", "100.00", paid="100.06")
    found = classify(order, invoice, TOL)
    assert [d.type for d in found] == [DiscrepancyType.AMOUNT_MISMATCH]
    d = found[0]
    assert d.difference == Decimal("0.06")
    assert d.message == "Total mismatch: WC 100.06 EUR vs Zoho 100.00 EUR (diff: 0.06 EUR)"
    assert d.order_number == "1001" and d.invoice_number == "INV-1001"


def test_emission_order_is_amount_payment_refund_status():
    order = make_order("1001", "100.00", refunded="10.00", status="completed")
    invoice = make_invoice("1001", "90.00", paid="0.00", status="draft")
    found = classify(order, invoice, TOL)
    assert [d.type for d in found] == [
        DiscrepancyType.AMOUNT_MISMATCH,
        DiscrepancyType.PAYMENT_MISMATCH,
        DiscrepancyType.REFUND_MISMATCH,
        DiscrepancyType.STATUS_MISMATCH,
    ]
    payment = found[1]
    assert payment.order_paid == Decimal("100.00") and payment.invoice_paid == Decimal("0.00")
    assert payment.message == "Payment mismatch: WC received 100.00 EUR vs Zoho received 0.00 EUR"
    refund = found[2]
    assert refund.difference == Decimal("10.00")
    assert refund.message == "Refund mismatch: WC refunded 10.00 EUR but Zoho shows 0.00 EUR credits"
    assert found[3].message == "Invoice is draft but order is completed"


def test_pair_rows_carry_both_sides_amounts():
    order = make_order("1001", "100.00", refunded="10.00", status="completed")
    invoice = make_invoice("1001", "90.00", paid="80.00", credits="2.00", status="draft")
    for d in classify(order, invoice, TOL):
        assert d.order_paid == Decimal("100.00")
        assert d.order_refunded == Decimal("10.00")
        assert d.invoice_paid == Decimal("80.00")
        assert d.zoho_credits == Decimal("2.00")


def test_refunded_order_with_credits_accepts_any_invoice_status():
    order = make_order("1001", refunded="100.00", status="refunded")
    invoice = make_invoice("1001", credits="100.00", status="paid")
    assert classify(order, invoice, TOL) == []


def test_refunded_order_without_credits_needs_void_invoice():
    assert status_agrees("refunded", "void", Decimal("0.00"), TOL) is True
    assert status_agrees("refunded", "paid", Decimal("0.00"), TOL) is False


def test_unmapped_order_status_never_mismatches():
    assert status_agrees("on-hold", "draft", Decimal("0"), TOL) is True
    assert status_agrees(None, "paid", Decimal("0"), TOL) is True


def test_processing_order_accepts_open_invoice_states():
    for invoice_status in ("draft", "sent", "overdue", "partially_paid", "paid"):
        assert status_agrees("processing", invoice_status, Decimal("0"), TOL)
    assert not status_agrees("processing", "void", Decimal("0"), TOL)


def test_status_comparison_is_case_insensitive():
    assert status_agrees("Completed", "PAID", Decimal("0"), TOL)


def test_float_tolerance_is_accepted():
    order = make_order("1001", "100.05")
    invoice = make_invoice("1001", "100.00", paid="100.05")
    assert classify(order, invoice, 0.05) == []


def test_amount_mismatch_lists_differing_components():
    order = replace(make_order("1001", "110.00"), components={
        "subtotal": Decimal("100.00"), "shipping": Decimal("10.00"), "tax": Decimal("0.00"),
    })
    invoice = replace(make_invoice("1001", "105.00", paid="110.00"), components={
        "subtotal": Decimal("100.00"), "shipping": Decimal("5.00"), "discount": Decimal("3.00"),
    })
    [d] = classify(order, invoice, TOL)
    assert d.type == DiscrepancyType.AMOUNT_MISMATCH
    # only components reported on both sides are compared
    assert d.message == (
        "Total mismatch: WC 110.00 EUR vs Zoho 105.00 EUR (diff: 5.00 EUR) | "
        "Shipping: WC 10.00 EUR vs Zoho 5.00 EUR"
    )


def test_component_breakdown_ignores_differences_within_tolerance():
    order = replace(make_order("1001"), components={"fees_adjustment": Decimal("2.00"), "tax": Decimal("19.00")})
    invoice = replace(make_invoice("1001"), components={"fees_adjustment": Decimal("0.00"), "tax": Decimal("19.05")})
    assert component_breakdown(order, invoice, TOL) == ["Fees adjustment: WC 2.00 vs Zoho 0.00"]
