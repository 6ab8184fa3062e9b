"""Core application configuration & tunable reconciliation rules.

Everything an operator may want to adjust (tolerance defaults, stale-run
threshold, retention, scheduler cadence, upstream endpoints, retry/circuit
thresholds, queue behaviour, run locking, SMTP delivery) is centralized here
so it can be changed without diving into service logic. Values are module
constants seeded from environment variables; tests monkeypatch the dicts.

Per-run business settings (tolerance, frequency, email preferences) live in
the database as a ``ReconciliationSettings`` row; ``RECONCILIATION_DEFAULTS``
only seeds that row the first time it is read.
"""
from __future__ import annotations

import os


def _env_bool(name: str, default: bool) -> bool:
	raw = os.getenv(name)
	if raw is None or not raw.strip():
		return default
	return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+pysqlite:///./reconciliation.db")

LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
LOG_FILE: str | None = os.getenv("LOG_FILE", "logs/app.log") or None

# Bearer token for the admin API. When unset the API is open (local dev).
ADMIN_API_TOKEN: str | None = os.getenv("ADMIN_API_TOKEN") or None

# ----------------------------- Reconciliation ----------------------------- #
RECONCILIATION_DEFAULTS: dict[str, object] = {
	"enabled": False,
	"frequency": "weekly",
	"day_of_week": 1,            # 0 = Sunday
	"day_of_month": 1,           # capped at 28
	"amount_tolerance": "0.05",  # currency units (string keeps Decimal exact)
	"email_enabled": False,
	"email_on_discrepancy_only": True,
	"email_address": os.getenv("RECONCILIATION_EMAIL") or None,
	"reference_prefix": "#",
}

STALE_RUN_SETTINGS: dict[str, int] = {
	# A ``running`` report older than this is considered crashed.
	"threshold_minutes": int(os.getenv("STALE_RUN_THRESHOLD_MINUTES", "60")),
}

RETENTION_SETTINGS: dict[str, int] = {
	"retention_days": int(os.getenv("REPORT_RETENTION_DAYS", "30")),
}

# -------------------------------- Scheduler ------------------------------- #
SCHEDULER_SETTINGS: dict[str, int | bool] = {
	"enabled": _env_bool("SCHEDULER_ENABLED", True),
	"run_hour": 2,          # UTC hour of the scheduled run on its due day
	"poll_seconds": 60,
	"cleanup_hour": 3,      # UTC hour of the daily retention cleanup
}

# --------------------------------- Sources -------------------------------- #
SOURCE_SETTINGS: dict[str, dict[str, object]] = {
	"woocommerce": {
		"base_url": os.getenv("WOOCOMMERCE_URL", "http://localhost:8080"),
		"consumer_key": os.getenv("WOOCOMMERCE_CONSUMER_KEY", ""),
		"consumer_secret": os.getenv("WOOCOMMERCE_CONSUMER_SECRET", ""),
		"per_page": 100,
		"timeout_seconds": float(os.getenv("WOOCOMMERCE_TIMEOUT", "30")),
		# Statuses whose orders are expected to have an invoice.
		"order_statuses": ["processing", "completed", "refunded", "cancelled"],
	},
	"zoho_books": {
		"base_url": os.getenv("ZOHO_BOOKS_URL", "https://www.zohoapis.com"),
		"organization_id": os.getenv("ZOHO_ORGANIZATION_ID", ""),
		"access_token": os.getenv("ZOHO_ACCESS_TOKEN", ""),
		"per_page": 200,
		"timeout_seconds": float(os.getenv("ZOHO_TIMEOUT", "30")),
	},
	# Hard stop for runaway pagination on either side.
	"limits": {
		"max_pages": 100,
	},
}

# ----------------------------- Circuit Breaker ---------------------------- #
CIRCUIT_BREAKER: dict[str, int | float] = {
	"failure_threshold": 5,          # Consecutive failures before OPEN
	"open_cooldown_seconds": 300,    # Stay OPEN for 5 minutes
	"half_open_probe_count": 3,      # Probes allowed in HALF_OPEN
}

# --------------------------------- Backoff -------------------------------- #
BACKOFF_POLICY: dict[str, int | float] = {
	"base_seconds": 1,
	"factor": 2,          # Exponential factor
	"max_seconds": 30,
	"max_attempts": 3,    # Attempts per page fetch
	"jitter_pct": 0.10,   # +/-10% jitter
}

# --------------------------------- Queue ---------------------------------- #
QUEUE_SETTINGS: dict[str, dict[str, int] | int | float] = {
	"priorities": {  # Lower number = higher priority
		"manual": 0,
		"scheduled": 5,
		"retry": 10,
	},
	"warn_depth": 100,
	"max_in_memory": 1000,
	# Caller-side retry of scheduled runs that end ``failed``.
	"scheduled_retry_attempts": 2,
	"scheduled_retry_delay_seconds": 900,
}

# -------------------------------- Run Lock -------------------------------- #
RUN_LOCK_SETTINGS: dict[str, str | int | bool] = {
	"use_redis": _env_bool("RUN_LOCK_USE_REDIS", False),
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"key_prefix": "recon:run-lock",
	# Redis keys expire so a crashed holder cannot block a period forever.
	"ttl_seconds": 3600,
}

# ---------------------------------- SMTP ---------------------------------- #
SMTP_SETTINGS: dict[str, str | int | None] = {
	"host": os.getenv("SMTP_HOST", "localhost"),
	"port": int(os.getenv("SMTP_PORT", "587")),
	"user": os.getenv("SMTP_USER") or None,
	"password": os.getenv("SMTP_PASSWORD") or None,
	"from_email": os.getenv("SMTP_FROM_EMAIL", "reconciliation@localhost"),
	"timeout_seconds": 30,
}

__all__ = [
	"DATABASE_URL",
	"LOG_LEVEL",
	"LOG_FILE",
	"ADMIN_API_TOKEN",
	# Rule groups
	"RECONCILIATION_DEFAULTS",
	"STALE_RUN_SETTINGS",
	"RETENTION_SETTINGS",
	"SCHEDULER_SETTINGS",
	"SOURCE_SETTINGS",
	"CIRCUIT_BREAKER",
	"BACKOFF_POLICY",
	"QUEUE_SETTINGS",
	"RUN_LOCK_SETTINGS",
	"SMTP_SETTINGS",
]
