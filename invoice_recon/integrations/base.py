"""Source contracts shared by the order and invoice integrations.

The engine only ever sees ``Order`` / ``Invoice`` values delivered through
``fetch_page``; raw upstream payloads stay inside the integration modules.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Generic, Mapping, Optional, Protocol, TypeVar

import aiohttp

from invoice_recon.exceptions import SourceError
from invoice_recon.models.records import Invoice, Order
from invoice_recon.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SourcePage(Generic[T]):
    items: list[T] = field(default_factory=list)
    page: int = 1
    has_more: bool = False
    total_pages: Optional[int] = None


class OrderSource(Protocol):
    name: str

    async def fetch_page(self, start: date, end: date, page: int) -> SourcePage[Order]:
        ...


class InvoiceSource(Protocol):
    name: str

    async def fetch_page(self, start: date, end: date, page: int) -> SourcePage[Invoice]:
        ...


@dataclass(frozen=True)
class HttpResult:
    status: int
    payload: Any
    headers: Mapping[str, str]  # lower-cased names


async def get_json(
    source: str,
    url: str,
    *,
    params: Optional[Mapping[str, Any]] = None,
    headers: Optional[Mapping[str, str]] = None,
    auth: Optional[aiohttp.BasicAuth] = None,
    timeout_seconds: float = 30,
) -> HttpResult:
    """GET ``url`` and decode JSON; every transport or status failure becomes ``SourceError``."""
    timeout = aiohttp.ClientTimeout(total=timeout_seconds)
    try:
        async with aiohttp.ClientSession(timeout=timeout) as session:
            logger.debug("Requesting upstream page", source=source, url=url, params=dict(params or {}))
            async with session.get(url, params=params, headers=headers, auth=auth) as response:
                if response.status >= 400:
                    body = (await response.text())[:500]
                    logger.error("Upstream request failed", source=source, status_code=response.status, url=url)
                    raise SourceError(source, f"{source} API returned status {response.status}: {body}", error_code=f"HTTP_{response.status}")
                try:
                    payload = await response.json(content_type=None)
                except ValueError as exc:
                    raise SourceError(source, f"{source} API returned invalid JSON: {exc}", error_code="BAD_PAYLOAD") from exc
                return HttpResult(status=response.status, payload=payload, headers={k.lower(): v for k, v in response.headers.items()})
    except asyncio.TimeoutError as exc:
        logger.error("Upstream request timed out", source=source, url=url)
        raise SourceError(source, f"{source} API request timed out", error_code="TIMEOUT") from exc
    except aiohttp.ClientError as exc:
        logger.error("Upstream client error", source=source, url=url, error=str(exc))
        raise SourceError(source, f"{source} API client error: {exc}", error_code="CLIENT_ERROR") from exc


__all__ = ["SourcePage", "OrderSource", "InvoiceSource", "HttpResult", "get_json"]
