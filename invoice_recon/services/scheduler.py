"""Schedule computations for automatic reconciliation runs.

Every period (day, Sunday-started week, month) has exactly one *target
instant*: ``SCHEDULER_SETTINGS["run_hour"]`` UTC on the period's run day. A
run is due once ``now`` has passed the target and no scheduled run has been
recorded at or after it, so polling many times in the same period triggers at
most one run, and a target missed while the service was down is still caught
up later in the same period.

All functions are pure; ``jobs/scheduler_loop.py`` supplies the clock and the
last-run bookkeeping.
"""
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple

from invoice_recon.config import SCHEDULER_SETTINGS
from invoice_recon.models.db.enums import Frequency
from invoice_recon.models.schemas.settings import MAX_DAY_OF_MONTH, ReconciliationSettings


def _run_time() -> time:
    return time(int(SCHEDULER_SETTINGS["run_hour"]), 0, tzinfo=timezone.utc)


def _sunday_index(day: date) -> int:
    # date.weekday(): Monday=0 .. Sunday=6; schedule days count from Sunday=0
    return (day.weekday() + 1) % 7


def _run_day(settings: ReconciliationSettings, today: date) -> date:
    frequency = Frequency(settings.frequency)
    if frequency == Frequency.DAILY:
        return today
    if frequency == Frequency.WEEKLY:
        week_start = today - timedelta(days=_sunday_index(today))
        return week_start + timedelta(days=settings.day_of_week)
    return today.replace(day=min(settings.day_of_month, MAX_DAY_OF_MONTH))


def _next_period_run_day(settings: ReconciliationSettings, run_day: date) -> date:
    frequency = Frequency(settings.frequency)
    if frequency == Frequency.DAILY:
        return run_day + timedelta(days=1)
    if frequency == Frequency.WEEKLY:
        return run_day + timedelta(days=7)
    year, month = (run_day.year + 1, 1) if run_day.month == 12 else (run_day.year, run_day.month + 1)
    return date(year, month, min(settings.day_of_month, MAX_DAY_OF_MONTH))


def period_target(settings: ReconciliationSettings, now: datetime) -> datetime:
    """Target instant of the period containing ``now``."""
    now = now.astimezone(timezone.utc)
    return datetime.combine(_run_day(settings, now.date()), _run_time())


def is_due(settings: ReconciliationSettings, last_run_at: Optional[datetime], now: datetime) -> bool:
    if not settings.enabled:
        return False
    target = period_target(settings, now)
    if now < target:
        return False
    return last_run_at is None or last_run_at < target


# Name used by the scheduler contract
next_due = is_due


def next_run_at(settings: ReconciliationSettings, now: datetime, last_run_at: Optional[datetime] = None) -> Optional[datetime]:
    """When the next scheduled run fires; None when scheduling is disabled.

    A value at or before ``now`` means a run is due immediately.
    """
    if not settings.enabled:
        return None
    target = period_target(settings, now)
    if now < target:
        return target
    if last_run_at is None or last_run_at < target:
        return target
    next_day = _next_period_run_day(settings, target.date())
    return datetime.combine(next_day, _run_time())


def reconciliation_period(settings: ReconciliationSettings, today: date) -> Tuple[date, date]:
    """Period a scheduled run on ``today`` covers; always ends yesterday."""
    end = today - timedelta(days=1)
    frequency = Frequency(settings.frequency)
    if frequency == Frequency.DAILY:
        return end, end
    if frequency == Frequency.WEEKLY:
        return end - timedelta(days=6), end
    return end.replace(day=1), end


__all__ = ["is_due", "next_due", "next_run_at", "period_target", "reconciliation_period"]
