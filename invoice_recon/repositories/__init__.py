from .report_repository import ReportRepository, STALE_RUN_ERROR
from .settings_repository import SettingsRepository

__all__ = ["ReportRepository", "SettingsRepository", "STALE_RUN_ERROR"]
