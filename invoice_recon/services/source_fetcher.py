"""Source drain wrapper applying circuit breaker, per-page retries and a page limit.

A reconciliation needs the *complete* order and invoice sets for a period, so
a source is drained page by page until it reports no more pages. Any page that
still fails after its retries aborts the whole drain with ``SourceError``; the
engine never matches against partial data.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable, Generic, List, TypeVar

from invoice_recon.config import BACKOFF_POLICY, SOURCE_SETTINGS
from invoice_recon.exceptions import SourceError, SourceUnavailableError
from invoice_recon.integrations.base import SourcePage
from invoice_recon.utils.backoff import compute_backoff_seconds
from invoice_recon.utils.circuit_breaker import CircuitBreaker, SOURCE_CIRCUIT_BREAKER
from invoice_recon.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Credentials problems will not fix themselves between retries
_TERMINAL_ERROR_CODES = {"HTTP_401", "HTTP_403", "BAD_PAYLOAD"}


@dataclass
class DrainOutcome(Generic[T]):
    source: str
    items: List[T] = field(default_factory=list)
    pages: int = 0
    attempts: int = 0


class SourceFetcher:
    """Drains paginated sources for a single reconciliation run."""

    def __init__(
        self,
        breaker: CircuitBreaker | None = None,
        max_attempts: int | None = None,
        max_pages: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.breaker = breaker or SOURCE_CIRCUIT_BREAKER
        self.max_attempts = int(max_attempts or BACKOFF_POLICY["max_attempts"])
        self.max_pages = int(max_pages or SOURCE_SETTINGS["limits"]["max_pages"])
        self._sleep = sleep

    async def _fetch_page_with_retry(self, source, start: date, end: date, page: int, outcome: DrainOutcome) -> SourcePage:
        name = getattr(source, "name", type(source).__name__)
        attempt = 0
        while True:
            allow, reason = self.breaker.allow_call(name)
            if not allow:
                logger.warning("Source fetch skipped due to circuit breaker", source=name, page=page, reason=reason)
                raise SourceUnavailableError(name, f"{name} is temporarily unavailable ({reason})", error_code=reason)

            attempt += 1
            outcome.attempts += 1
            try:
                result = await source.fetch_page(start, end, page)
            except SourceError as exc:
                self.breaker.record_failure(name)
                if exc.error_code in _TERMINAL_ERROR_CODES or attempt >= self.max_attempts:
                    logger.error("Source page fetch failed", source=name, page=page, attempts=attempt, error=str(exc))
                    raise
                backoff = compute_backoff_seconds(attempt)
                logger.warning(
                    "Source page retry scheduled",
                    source=name,
                    page=page,
                    attempt=attempt,
                    backoff_seconds=round(backoff, 2),
                    error_code=exc.error_code,
                )
                await self._sleep(backoff)
                continue
            self.breaker.record_success(name)
            return result

    async def drain(self, source, start: date, end: date) -> DrainOutcome:
        """Fetch every page of ``source`` for ``[start, end]`` sequentially."""
        name = getattr(source, "name", type(source).__name__)
        outcome: DrainOutcome = DrainOutcome(source=name)
        page = 1
        while True:
            if page > self.max_pages:
                raise SourceError(
                    name,
                    f"{name} pagination exceeded the limit of {self.max_pages} pages",
                    error_code="PAGE_LIMIT",
                )
            result = await self._fetch_page_with_retry(source, start, end, page, outcome)
            outcome.pages += 1
            outcome.items.extend(result.items)
            if not result.has_more or not result.items:
                break
            page += 1

        logger.info("Source drained", source=name, items=len(outcome.items), pages=outcome.pages, attempts=outcome.attempts)
        return outcome


__all__ = ["SourceFetcher", "DrainOutcome"]
