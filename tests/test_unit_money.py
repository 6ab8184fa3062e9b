from decimal import Decimal

from invoice_recon.utils.money import format_amount, to_amount


def test_to_amount_parses_and_quantizes():
    assert to_amount("12.345") == Decimal("12.35")
    assert to_amount(0.1) == Decimal("0.10")
    assert to_amount(" 7 ") == Decimal("7.00")


def test_to_amount_degrades_to_zero():
    for raw in (None, "", "abc", True, "NaN", "Infinity"):
        assert to_amount(raw) == Decimal("0.00")


def test_format_amount():
    assert format_amount(Decimal("1234.5"), "EUR") == "1,234.50 EUR"
    assert format_amount(Decimal("-0.03")) == "-0.03"
    assert format_amount(None) == "—"
