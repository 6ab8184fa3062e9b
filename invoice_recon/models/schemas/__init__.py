from .base import ResponseBase
from .settings import ReconciliationSettings, SettingsUpdate, ScheduleRead
from .reports import (
    RunRequest,
    DiscrepancyRead,
    SummaryRead,
    ReportRead,
    ReportPageRead,
)

__all__ = [
    # Base
    "ResponseBase",

    # Settings
    "ReconciliationSettings",
    "SettingsUpdate",
    "ScheduleRead",

    # Reports
    "RunRequest",
    "DiscrepancyRead",
    "SummaryRead",
    "ReportRead",
    "ReportPageRead",
]
