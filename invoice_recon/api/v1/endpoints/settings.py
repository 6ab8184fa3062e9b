"""
Reconciliation settings and schedule endpoints.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import ValidationError

from invoice_recon.api.deps import get_settings_repository, require_admin
from invoice_recon.models.schemas.settings import ReconciliationSettings, ScheduleRead, SettingsUpdate
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.scheduler import next_run_at
from invoice_recon.utils.logger import get_logger, log_business_event
from invoice_recon.utils.time import utc_now

router = APIRouter(dependencies=[Depends(require_admin)])
logger = get_logger(__name__)


@router.get("/settings", response_model=ReconciliationSettings, summary="Current reconciliation settings")
async def read_settings(settings_repo: SettingsRepository = Depends(get_settings_repository)) -> ReconciliationSettings:
    return settings_repo.get()


@router.put("/settings", response_model=ReconciliationSettings, summary="Update reconciliation settings")
async def update_settings(
    payload: SettingsUpdate,
    settings_repo: SettingsRepository = Depends(get_settings_repository),
) -> ReconciliationSettings:
    changes = payload.changes()
    try:
        updated = settings_repo.update(changes)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()],
        )
    log_business_event("settings_updated", {"fields": sorted(changes)})
    return updated


@router.get("/schedule", response_model=ScheduleRead, summary="Next scheduled run")
async def read_schedule(settings_repo: SettingsRepository = Depends(get_settings_repository)) -> ScheduleRead:
    settings = settings_repo.get()
    last_run_at = settings_repo.get_last_scheduled_run_at()
    return ScheduleRead(
        enabled=settings.enabled,
        frequency=settings.frequency,
        next_run_at=next_run_at(settings, utc_now(), last_run_at),
        last_scheduled_run_at=last_run_at,
    )
