from .enums import ReportStatus, RunTrigger, Frequency, DiscrepancyType
from .reconciliation_reports import ReconciliationReportRecord
from .settings import ReconciliationSettingsRecord

__all__ = [
    "ReportStatus",
    "RunTrigger",
    "Frequency",
    "DiscrepancyType",
    "ReconciliationReportRecord",
    "ReconciliationSettingsRecord",
]
