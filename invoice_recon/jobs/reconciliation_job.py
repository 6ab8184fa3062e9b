"""Reconciliation job payload structure."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from invoice_recon.models.db.enums import RunTrigger


@dataclass(slots=True)
class ReconciliationJob:
    period_start: date
    period_end: date
    trigger: RunTrigger = RunTrigger.MANUAL
    attempt: int = 1  # 1 = first try; retries of failed scheduled runs increment it
    correlation_id: Optional[str] = field(default_factory=lambda: uuid.uuid4().hex[:12])

    def key(self) -> str:
        """Queue de-duplication key: one waiting job per period and trigger."""
        return f"rec:{self.trigger.value}:{self.period_start.isoformat()}:{self.period_end.isoformat()}"

    def next_attempt(self) -> "ReconciliationJob":
        return ReconciliationJob(
            period_start=self.period_start,
            period_end=self.period_end,
            trigger=self.trigger,
            attempt=self.attempt + 1,
            correlation_id=self.correlation_id,
        )


__all__ = ["ReconciliationJob"]
