"""
WooCommerce REST v3 order source.

Orders are fetched page by page from ``/wp-json/wc/v3/orders`` and normalized
into canonical ``Order`` values. Pagination stops at ``X-WP-TotalPages`` or on
a short/empty page.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, Optional

import aiohttp

from invoice_recon.config import SOURCE_SETTINGS
from invoice_recon.exceptions import SourceError
from invoice_recon.integrations.base import SourcePage, get_json
from invoice_recon.models.records import Order
from invoice_recon.utils.logger import get_logger
from invoice_recon.utils.money import ZERO, to_amount

logger = get_logger(__name__)

SOURCE_NAME = "woocommerce"
ORDERS_PATH = "/wp-json/wc/v3/orders"


def _parse_day(value: Any) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).date()
    except ValueError:
        return None


def _refund_total(refunds: Iterable[Dict[str, Any]] | None) -> Decimal:
    # WooCommerce reports refund totals as negative strings ("-5.00")
    total = ZERO
    for refund in refunds or []:
        if isinstance(refund, dict):
            total += abs(to_amount(refund.get("total")))
    return total


def _line_sum(lines: Any, key: str) -> Decimal:
    return sum((to_amount(line.get(key)) for line in lines if isinstance(line, dict)), ZERO)


def _components(data: Dict[str, Any]) -> Dict[str, Decimal]:
    components: Dict[str, Decimal] = {}
    if isinstance(data.get("line_items"), list):
        components["subtotal"] = _line_sum(data["line_items"], "subtotal")
    for name, key in (("shipping", "shipping_total"), ("discount", "discount_total"), ("tax", "total_tax")):
        if data.get(key) is not None:
            components[name] = to_amount(data[key])
    if isinstance(data.get("fee_lines"), list):
        components["fees_adjustment"] = _line_sum(data["fee_lines"], "total")
    return components


def order_from_payload(data: Dict[str, Any]) -> Order:
    """Normalize one WooCommerce order object; malformed fields degrade to None / 0.00."""
    total = to_amount(data.get("total"))
    raw_id = data.get("id")
    number = data.get("number") or raw_id
    status = data.get("status")
    return Order(
        id=str(raw_id) if raw_id is not None else None,
        number=str(number) if number is not None else None,
        date=_parse_day(data.get("date_created_gmt") or data.get("date_created")),
        status=str(status).lower() if status else None,
        total=total,
        amount_paid=total if data.get("date_paid") else ZERO,
        refund_total=_refund_total(data.get("refunds")),
        currency=data.get("currency"),
        components=_components(data),
    )


class WooCommerceOrderSource:
    """Order source backed by the WooCommerce REST API (basic auth with consumer key/secret)."""

    name = SOURCE_NAME

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        cfg = {**SOURCE_SETTINGS["woocommerce"], **(config or {})}
        self.base_url = str(cfg["base_url"]).rstrip("/")
        self.per_page = int(cfg["per_page"])
        self.timeout_seconds = float(cfg["timeout_seconds"])
        self.statuses = list(cfg.get("order_statuses") or [])
        self._auth = aiohttp.BasicAuth(str(cfg["consumer_key"]), str(cfg["consumer_secret"]))

    def _params(self, start: date, end: date, page: int) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            # after/before are exclusive and read as local site time unless dates_are_gmt is set
            "after": f"{(start - timedelta(days=1)).isoformat()}T23:59:59",
            "before": f"{(end + timedelta(days=1)).isoformat()}T00:00:00",
            "dates_are_gmt": "true",
            "page": page,
            "per_page": self.per_page,
            "orderby": "date",
            "order": "asc",
        }
        if self.statuses:
            params["status"] = ",".join(self.statuses)
        return params

    async def _get(self, params: Dict[str, Any]):
        return await get_json(
            SOURCE_NAME,
            f"{self.base_url}{ORDERS_PATH}",
            params=params,
            auth=self._auth,
            timeout_seconds=self.timeout_seconds,
        )

    async def fetch_page(self, start: date, end: date, page: int) -> SourcePage[Order]:
        result = await self._get(self._params(start, end, page))
        if not isinstance(result.payload, list):
            raise SourceError(SOURCE_NAME, "WooCommerce orders response is not a list", error_code="BAD_PAYLOAD")

        orders = [order_from_payload(item) for item in result.payload if isinstance(item, dict)]
        total_pages = None
        raw_total = result.headers.get("x-wp-totalpages")
        if raw_total is not None:
            try:
                total_pages = int(raw_total)
            except ValueError:
                total_pages = None

        if total_pages is not None:
            has_more = page < total_pages and bool(orders)
        else:
            has_more = len(orders) >= self.per_page

        logger.debug("WooCommerce page fetched", page=page, count=len(orders), total_pages=total_pages)
        return SourcePage(items=orders, page=page, has_more=has_more, total_pages=total_pages)


__all__ = ["WooCommerceOrderSource", "order_from_payload", "SOURCE_NAME"]
