"""
API v1 router initialization and setup.
"""
from fastapi import APIRouter
from .endpoints import reconciliation, settings

api_router = APIRouter()

api_router.include_router(
    reconciliation.router,
    prefix="/reconciliation",
    tags=["reconciliation"]
)

api_router.include_router(
    settings.router,
    prefix="/reconciliation",
    tags=["settings"]
)
