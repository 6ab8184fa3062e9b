"""Domain exceptions.

Validation and concurrency errors are raised *before* a report row exists;
source errors are caught by the engine and turned into a ``failed`` report.
"""
from __future__ import annotations


class ReconciliationError(Exception):
    """Base class for reconciliation domain errors."""


class ReconciliationValidationError(ReconciliationError):
    """Bad input (e.g. start date after end date)."""


class RunInProgressError(ReconciliationError):
    """Another run for the same period is still executing."""

    def __init__(self, period_start, period_end):
        self.period_start = period_start
        self.period_end = period_end
        super().__init__(
            f"A reconciliation run for {period_start.isoformat()} to {period_end.isoformat()} is already in progress"
        )


class ReportImmutableError(ReconciliationError):
    """Attempt to modify a report that already reached a terminal status."""


class SourceError(ReconciliationError):
    """Upstream order/invoice source failed (network, HTTP status, payload)."""

    def __init__(self, source: str, message: str, *, error_code: str | None = None):
        self.source = source
        self.error_code = error_code
        super().__init__(message)


class SourceUnavailableError(SourceError):
    """Circuit breaker refused the call."""


__all__ = [
    "ReconciliationError",
    "ReconciliationValidationError",
    "RunInProgressError",
    "ReportImmutableError",
    "SourceError",
    "SourceUnavailableError",
]
