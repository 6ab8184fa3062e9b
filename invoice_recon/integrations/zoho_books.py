"""
Zoho Books v3 invoice source.

``GET /books/v3/invoices`` answers either with an envelope
(``{"code": 0, "invoices": [...], "page_context": {"has_more_page": ...}}``)
or, through some proxies, with a bare list of invoices. Both shapes are
normalized here into ``SourcePage[Invoice]``.
"""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from invoice_recon.config import SOURCE_SETTINGS
from invoice_recon.exceptions import SourceError
from invoice_recon.integrations.base import SourcePage, get_json
from invoice_recon.models.records import Invoice
from invoice_recon.utils.logger import get_logger
from invoice_recon.utils.money import ZERO, to_amount
from invoice_recon.utils.references import reference_from_notes

logger = get_logger(__name__)

SOURCE_NAME = "zoho_books"
INVOICES_PATH = "/books/v3/invoices"


def _parse_day(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _amount_paid(data: Dict[str, Any], total: Decimal) -> Decimal:
    if data.get("payment_made") is not None:
        return to_amount(data.get("payment_made"))
    if data.get("balance") is not None:
        return total - to_amount(data.get("balance"))
    return ZERO


ZOHO_COMPONENT_FIELDS = {
    "subtotal": "sub_total",
    "shipping": "shipping_charge",
    "discount": "discount_total",
    "tax": "tax_total",
    "fees_adjustment": "adjustment",
}


def invoice_from_payload(data: Dict[str, Any]) -> Invoice:
    """Normalize one Zoho invoice object; malformed fields degrade to None / 0.00."""
    total = to_amount(data.get("total"))
    reference = (data.get("reference_number") or "").strip() or reference_from_notes(data.get("notes"))
    raw_id = data.get("invoice_id")
    number = data.get("invoice_number")
    status = data.get("status")
    return Invoice(
        id=str(raw_id) if raw_id is not None else None,
        number=str(number) if number is not None else None,
        reference=reference or None,
        date=_parse_day(data.get("date")),
        status=str(status).lower() if status else None,
        total=total,
        amount_paid=_amount_paid(data, total),
        credit_total=to_amount(data.get("credits_applied")),
        currency=data.get("currency_code"),
        components={name: to_amount(data[key]) for name, key in ZOHO_COMPONENT_FIELDS.items() if data.get(key) is not None},
    )


def parse_invoice_page(payload: Any, page: int, per_page: int) -> SourcePage[Invoice]:
    """Turn either response shape into a page; ``code != 0`` is an upstream error."""
    if isinstance(payload, list):
        raw: List[Any] = payload
        has_more = len(raw) >= per_page
    elif isinstance(payload, dict):
        code = payload.get("code", 0)
        if code not in (0, "0"):
            message = payload.get("message") or "unknown error"
            raise SourceError(SOURCE_NAME, f"Zoho Books API error {code}: {message}", error_code=str(code))
        raw = payload.get("invoices") or []
        if not isinstance(raw, list):
            raise SourceError(SOURCE_NAME, "Zoho Books invoices field is not a list", error_code="BAD_PAYLOAD")
        page_context = payload.get("page_context") or {}
        has_more = bool(page_context.get("has_more_page")) if isinstance(page_context, dict) else False
    else:
        raise SourceError(SOURCE_NAME, "Zoho Books invoices response has an unexpected shape", error_code="BAD_PAYLOAD")

    invoices = [invoice_from_payload(item) for item in raw if isinstance(item, dict)]
    # An empty page ends pagination regardless of what page_context claims
    return SourcePage(items=invoices, page=page, has_more=has_more and bool(invoices))


class ZohoBooksInvoiceSource:
    """Invoice source backed by the Zoho Books REST API (OAuth token supplied by configuration)."""

    name = SOURCE_NAME

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        cfg = {**SOURCE_SETTINGS["zoho_books"], **(config or {})}
        self.base_url = str(cfg["base_url"]).rstrip("/")
        self.organization_id = str(cfg["organization_id"])
        self.access_token = str(cfg["access_token"])
        self.per_page = int(cfg["per_page"])
        self.timeout_seconds = float(cfg["timeout_seconds"])

    async def _get(self, params: Dict[str, Any]):
        return await get_json(
            SOURCE_NAME,
            f"{self.base_url}{INVOICES_PATH}",
            params=params,
            headers={"Authorization": f"Zoho-oauthtoken {self.access_token}"},
            timeout_seconds=self.timeout_seconds,
        )

    async def fetch_page(self, start: date, end: date, page: int) -> SourcePage[Invoice]:
        result = await self._get({
            "organization_id": self.organization_id,
            "date_start": start.isoformat(),
            "date_end": end.isoformat(),
            "page": page,
            "per_page": self.per_page,
        })
        parsed = parse_invoice_page(result.payload, page, self.per_page)
        logger.debug("Zoho Books page fetched", page=page, count=len(parsed.items), has_more=parsed.has_more)
        return parsed


__all__ = ["ZohoBooksInvoiceSource", "invoice_from_payload", "parse_invoice_page", "SOURCE_NAME"]
