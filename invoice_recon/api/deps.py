"""
Dependencies for authentication, repositories and the shared reconciliation services.
"""
import hmac
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import sessionmaker

from invoice_recon import config
from invoice_recon.database import SessionLocal
from invoice_recon.jobs.queue import RunQueue
from invoice_recon.jobs.run_lock import RunLock
from invoice_recon.repositories.report_repository import ReportRepository
from invoice_recon.repositories.settings_repository import SettingsRepository
from invoice_recon.services.reconciliation_engine import ReconciliationEngine
from invoice_recon.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer(auto_error=False)


def get_session_factory() -> sessionmaker:
    """Session factory used by the repositories; tests override it with a throwaway database."""
    return SessionLocal


def get_report_repository(session_factory: sessionmaker = Depends(get_session_factory)) -> ReportRepository:
    return ReportRepository(session_factory)


def get_settings_repository(session_factory: sessionmaker = Depends(get_session_factory)) -> SettingsRepository:
    return SettingsRepository(session_factory)


def get_run_lock(request: Request) -> RunLock:
    """Process-wide run lock shared by API-triggered runs and the worker."""
    lock = getattr(request.app.state, "run_lock", None)
    if lock is None:
        lock = RunLock()
        request.app.state.run_lock = lock
    return lock


def get_engine(
    session_factory: sessionmaker = Depends(get_session_factory),
    run_lock: RunLock = Depends(get_run_lock),
) -> ReconciliationEngine:
    return ReconciliationEngine.from_config(session_factory, run_lock=run_lock)


def get_queue(request: Request) -> RunQueue:
    queue: Optional[RunQueue] = getattr(request.app.state, "reconciliation_queue", None)
    if queue is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Reconciliation queue not available")
    return queue


def require_admin(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> None:
    """
    Bearer token check for the admin API.
    When ``ADMIN_API_TOKEN`` is not configured the API is open (local development).

    Raises:
        HTTPException: 401 if the token is missing or wrong
    """
    expected = config.ADMIN_API_TOKEN
    if not expected:
        return
    supplied = credentials.credentials if credentials else ""
    if not supplied or not hmac.compare_digest(supplied.encode(), expected.encode()):
        logger.warning("Admin authentication failed", token_supplied=bool(supplied))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API token",
            headers={"WWW-Authenticate": "Bearer"},
        )
