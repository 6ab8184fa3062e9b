"""Central Enum definitions for reconciliation domain states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and business logic.
"""
from __future__ import annotations
import enum


class ReportStatus(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReportStatus.COMPLETED, ReportStatus.FAILED)


class RunTrigger(str, enum.Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class Frequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"

# ------------------ Discrepancy taxonomy (closed set) ------------------ #

class DiscrepancyType(str, enum.Enum):
    MISSING_IN_ZOHO = "missing_in_zoho"
    MISSING_IN_WC = "missing_in_wc"
    AMOUNT_MISMATCH = "amount_mismatch"
    PAYMENT_MISMATCH = "payment_mismatch"
    REFUND_MISMATCH = "refund_mismatch"
    STATUS_MISMATCH = "status_mismatch"

    @property
    def label(self) -> str:
        """Human label used in exports and emails ("Missing In Zoho")."""
        return self.value.replace("_", " ").title()

    @property
    def has_difference(self) -> bool:
        return self in AMOUNT_DIFFERENCE_TYPES


AMOUNT_DIFFERENCE_TYPES = frozenset({
    DiscrepancyType.AMOUNT_MISMATCH,
    DiscrepancyType.PAYMENT_MISMATCH,
    DiscrepancyType.REFUND_MISMATCH,
})

__all__ = [
    "ReportStatus",
    "RunTrigger",
    "Frequency",
    "DiscrepancyType",
    "AMOUNT_DIFFERENCE_TYPES",
]
