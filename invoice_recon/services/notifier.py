"""
Email Notification Service
Sends the summary of a completed reconciliation report to the configured address.
"""
from __future__ import annotations

import html
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, Optional

from invoice_recon.config import SMTP_SETTINGS
from invoice_recon.models.db.enums import ReportStatus
from invoice_recon.models.records import Report, Summary
from invoice_recon.models.schemas.settings import ReconciliationSettings
from invoice_recon.services.report_export import SUMMARY_LABELS, strip_html
from invoice_recon.utils.logger import get_logger, log_business_event

logger = get_logger(__name__)

MAX_LISTED_DISCREPANCIES = 20


def build_subject(report: Report) -> str:
    if report.discrepancy_count:
        return f"[ZBooks] Reconciliation Report: {report.discrepancy_count} discrepancies found"
    return "[ZBooks] Reconciliation Report: All matched"


def _period(report: Report) -> str:
    return f"{report.period_start.isoformat()} to {report.period_end.isoformat()}"


def build_text_body(report: Report) -> str:
    summary = report.summary or Summary()
    lines = [
        "Reconciliation Report",
        f"Period: {_period(report)}",
        "",
        "Summary",
    ]
    lines.extend(f"  {label}: {getattr(summary, name)}" for name, label in SUMMARY_LABELS)
    lines.append("")

    if report.discrepancies:
        lines.append(f"Discrepancies ({report.discrepancy_count})")
        for d in report.discrepancies[:MAX_LISTED_DISCREPANCIES]:
            reference = d.order_number or d.invoice_number or d.invoice_reference or "—"
            lines.append(f"  - [{d.type.label}] {reference}: {strip_html(d.message) or '—'}")
        remaining = report.discrepancy_count - MAX_LISTED_DISCREPANCIES
        if remaining > 0:
            lines.append(f"  ... and {remaining} more discrepancies. View the full report in the admin console.")
    else:
        lines.append("All orders and invoices matched.")
    return "\n".join(lines)


def build_html_body(report: Report) -> str:
    summary = report.summary or Summary()
    esc = html.escape
    grid = "".join(
        f"<tr><td>{esc(label)}</td><td><strong>{esc(str(getattr(summary, name)))}</strong></td></tr>"
        for name, label in SUMMARY_LABELS
    )
    parts = [
        "<html><body>",
        "<h2>Reconciliation Report</h2>",
        f"<p>Period: {esc(_period(report))}</p>",
        f"<table class=\"summary\">{grid}</table>",
    ]
    if report.discrepancies:
        rows = "".join(
            "<tr>"
            f"<td>{esc(d.type.label)}</td>"
            f"<td>{esc(d.order_number or d.invoice_number or d.invoice_reference or '—')}</td>"
            f"<td>{esc(strip_html(d.message) or '—')}</td>"
            "</tr>"
            for d in report.discrepancies[:MAX_LISTED_DISCREPANCIES]
        )
        parts.append(f"<h3>Discrepancies ({report.discrepancy_count})</h3>")
        parts.append(f"<table><tr><th>Type</th><th>Order/Invoice</th><th>Details</th></tr>{rows}</table>")
        remaining = report.discrepancy_count - MAX_LISTED_DISCREPANCIES
        if remaining > 0:
            parts.append(f"<p>... and {remaining} more discrepancies. View the full report in the admin console.</p>")
    else:
        parts.append("<p>All orders and invoices matched.</p>")
    parts.append("</body></html>")
    return "".join(parts)


class ReportNotifier:
    """Sends report summaries over SMTP (STARTTLS + login when credentials are configured)."""

    def __init__(self, smtp_config: Optional[Dict[str, Any]] = None, smtp_factory: Callable[..., smtplib.SMTP] = smtplib.SMTP):
        cfg = {**SMTP_SETTINGS, **(smtp_config or {})}
        self.smtp_host = str(cfg["host"])
        self.smtp_port = int(cfg["port"])
        self.smtp_user = cfg.get("user")
        self.smtp_password = cfg.get("password")
        self.from_email = str(cfg.get("from_email") or self.smtp_user or "")
        self.timeout = float(cfg.get("timeout_seconds") or 30)
        self._smtp_factory = smtp_factory

    def should_notify(self, report: Report, settings: ReconciliationSettings) -> bool:
        if not settings.email_enabled or not settings.email_address:
            return False
        if report.status != ReportStatus.COMPLETED:
            return False
        if settings.email_on_discrepancy_only and report.discrepancy_count == 0:
            return False
        return True

    def build_message(self, report: Report, to_address: str) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = build_subject(report)
        msg["From"] = self.from_email
        msg["To"] = to_address
        msg.attach(MIMEText(build_text_body(report), "plain", "utf-8"))
        msg.attach(MIMEText(build_html_body(report), "html", "utf-8"))
        return msg

    def notify(self, report: Report, settings: ReconciliationSettings) -> bool:
        """Email the report; True only when a message was actually delivered."""
        if not self.should_notify(report, settings):
            logger.debug("Report notification suppressed", report_id=report.id, status=report.status.value)
            return False

        msg = self.build_message(report, str(settings.email_address))
        try:
            with self._smtp_factory(self.smtp_host, self.smtp_port, timeout=self.timeout) as server:
                if self.smtp_user and self.smtp_password:
                    server.starttls()
                    server.login(self.smtp_user, self.smtp_password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error("Failed to send report notification", report_id=report.id, error=str(e), exc_info=True)
            return False

        log_business_event("report_email_sent", {
            "report_id": report.id,
            "to": settings.email_address,
            "discrepancies": report.discrepancy_count,
        })
        return True


__all__ = ["ReportNotifier", "build_subject", "build_text_body", "build_html_body", "MAX_LISTED_DISCREPANCIES"]
