"""Persistence of the single ``ReconciliationSettings`` row plus scheduler bookkeeping."""
from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable

from sqlalchemy.orm import Session, sessionmaker

from invoice_recon.models.db.settings import ReconciliationSettingsRecord
from invoice_recon.models.schemas.settings import ReconciliationSettings
from invoice_recon.utils.logger import get_logger
from invoice_recon.utils.time import as_utc

logger = get_logger(__name__)

SETTINGS_ROW_ID = 1


class SettingsRepository:
    def __init__(self, session_factory: sessionmaker | Callable[[], Session]):
        self._session_factory = session_factory

    def _row(self, session: Session) -> ReconciliationSettingsRecord:
        row = session.get(ReconciliationSettingsRecord, SETTINGS_ROW_ID)
        if row is None:
            row = ReconciliationSettingsRecord(id=SETTINGS_ROW_ID, values=ReconciliationSettings.from_defaults().to_storage())
            session.add(row)
            session.flush()
        return row

    def get(self) -> ReconciliationSettings:
        """Current settings; seeded from ``RECONCILIATION_DEFAULTS`` on first read."""
        with self._session_factory() as session, session.begin():
            stored = dict(self._row(session).values or {})
        # Keys added after the row was written fall back to defaults
        merged = {**ReconciliationSettings.from_defaults().model_dump(), **stored}
        return ReconciliationSettings(**merged)

    def save(self, settings: ReconciliationSettings) -> ReconciliationSettings:
        with self._session_factory() as session, session.begin():
            row = self._row(session)
            row.values = settings.to_storage()
        logger.info("Reconciliation settings saved", frequency=settings.frequency.value, enabled=settings.enabled)
        return settings

    def update(self, changes: dict[str, Any]) -> ReconciliationSettings:
        """Apply a partial update; raises ``pydantic.ValidationError`` on bad values."""
        return self.save(self.get().merged(changes))

    def get_last_scheduled_run_at(self) -> datetime | None:
        with self._session_factory() as session, session.begin():
            value = self._row(session).last_scheduled_run_at
        return as_utc(value) if value else None

    def set_last_scheduled_run_at(self, when: datetime) -> None:
        with self._session_factory() as session, session.begin():
            self._row(session).last_scheduled_run_at = when

    def get_last_cleanup_on(self) -> date | None:
        with self._session_factory() as session, session.begin():
            return self._row(session).last_cleanup_on

    def set_last_cleanup_on(self, day: date) -> None:
        with self._session_factory() as session, session.begin():
            self._row(session).last_cleanup_on = day


__all__ = ["SettingsRepository", "SETTINGS_ROW_ID"]
