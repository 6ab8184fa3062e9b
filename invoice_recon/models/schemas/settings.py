"""
Pydantic schemas for reconciliation settings.

``ReconciliationSettings`` is the immutable value the engine snapshots once per
run; ``SettingsUpdate`` is the partial payload accepted by ``PUT /settings``.
"""
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from invoice_recon.config import RECONCILIATION_DEFAULTS
from invoice_recon.models.db.enums import Frequency

MAX_DAY_OF_MONTH = 28
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _check_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if not _EMAIL_RE.match(value):
        raise ValueError("email_address must be a valid email address")
    return value


class ReconciliationSettings(BaseModel):
    """Operator-tunable reconciliation rules (stored as a single DB row)."""

    model_config = ConfigDict(frozen=True, use_enum_values=False)

    enabled: bool = False
    frequency: Frequency = Frequency.WEEKLY
    day_of_week: int = Field(1, ge=0, le=6, description="0 = Sunday")
    day_of_month: int = Field(1, ge=1, description="Values above 28 are capped to 28")
    amount_tolerance: Decimal = Field(Decimal("0.05"), ge=0, description="Currency units")
    email_enabled: bool = False
    email_on_discrepancy_only: bool = True
    email_address: Optional[str] = None
    reference_prefix: str = Field("#", max_length=10, description="Prefix stripped when matching references")

    @field_validator("day_of_month")
    @classmethod
    def _cap_day_of_month(cls, value: int) -> int:
        return min(value, MAX_DAY_OF_MONTH)

    @field_validator("email_address")
    @classmethod
    def _validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _check_email(value)

    @classmethod
    def from_defaults(cls) -> "ReconciliationSettings":
        return cls(**RECONCILIATION_DEFAULTS)

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(mode="json")

    def merged(self, changes: dict[str, Any]) -> "ReconciliationSettings":
        """Return a new, re-validated settings value with ``changes`` applied."""
        return type(self)(**{**self.model_dump(), **changes})


class SettingsUpdate(BaseModel):
    """Partial update; omitted fields keep their stored value."""

    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    frequency: Optional[Frequency] = None
    day_of_week: Optional[int] = Field(None, ge=0, le=6)
    day_of_month: Optional[int] = Field(None, ge=1)
    amount_tolerance: Optional[Decimal] = Field(None, ge=0)
    email_enabled: Optional[bool] = None
    email_on_discrepancy_only: Optional[bool] = None
    email_address: Optional[str] = None
    reference_prefix: Optional[str] = Field(None, max_length=10)

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ScheduleRead(BaseModel):
    enabled: bool
    frequency: Frequency
    next_run_at: Optional[datetime] = None
    last_scheduled_run_at: Optional[datetime] = None


__all__ = ["ReconciliationSettings", "SettingsUpdate", "ScheduleRead", "MAX_DAY_OF_MONTH"]
