import logging

import requests
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail

from connections.config import AlertConfig

logger = logging.getLogger(__name__)

WEBHOOK_TIMEOUT_SECONDS = 10


def get_alert_recipients(config: AlertConfig) -> list:
    """Configured recipients, else every active user with an email address."""
    if config.recipients:
        return list(config.recipients)
    User = get_user_model()
    return list(
        User.objects.filter(is_active=True)
        .exclude(email="")
        .order_by("pk")
        .values_list("email", flat=True)
    )


def build_failure_message(alert, sync_run) -> tuple:
    connection = alert.connection
    subject = f"[PMPulse] {alert.consecutive_failures} Consecutive Sync Failures: {connection.name}"
    lines = [
        f"Sync for connection '{connection.name}' has failed {alert.consecutive_failures} times in a row.",
        "",
        "Last sync:",
        f"  Run: #{sync_run.pk} ({sync_run.mode})",
        f"  Started: {sync_run.started_at.isoformat() if sync_run.started_at else 'never started'}",
        f"  Errors: {sync_run.errors_count}",
        f"  Summary: {sync_run.error_summary or 'n/a'}",
        "",
        "Recent failures:",
    ]
    for entry in alert.recent_failures(3):
        details = entry.get("details", {})
        lines.append(f"  {entry.get('timestamp')}: {details.get('error') or 'unknown error'}")
    lines += ["", "Acknowledge the alert to silence further notifications until the next failure."]
    return subject, "\n".join(lines)


def build_webhook_payload(alert, sync_run) -> dict:
    return {
        "event": "sync.failure_threshold_reached",
        "connection_id": alert.connection_id,
        "connection_name": alert.connection.name,
        "consecutive_failures": alert.consecutive_failures,
        "sync_run": {
            "id": sync_run.pk,
            "mode": sync_run.mode,
            "status": sync_run.status,
            "error_summary": sync_run.error_summary,
            "errors_count": sync_run.errors_count,
        },
        "recent_failures": alert.recent_failures(3),
    }


def send_failure_notification(alert, sync_run, config: AlertConfig) -> bool:
    """Deliver the alert by email and, when configured, webhook. True if any channel succeeded."""
    delivered = False
    recipients = get_alert_recipients(config)
    if recipients:
        subject, body = build_failure_message(alert, sync_run)
        try:
            send_mail(subject, body, settings.DEFAULT_FROM_EMAIL, recipients, fail_silently=False)
            delivered = True
            logger.info(
                "Sync failure alert emailed for connection_id=%s to %s recipient(s)",
                alert.connection_id, len(recipients),
            )
        except Exception:
            logger.exception("Failed to email sync failure alert for connection_id=%s", alert.connection_id)
    else:
        logger.warning("No recipients for sync failure alert on connection_id=%s", alert.connection_id)

    if config.webhook_url:
        try:
            resp = requests.post(
                config.webhook_url,
                json=build_webhook_payload(alert, sync_run),
                timeout=WEBHOOK_TIMEOUT_SECONDS,
            )
            resp.raise_for_status()
            delivered = True
        except requests.RequestException as exc:
            logger.warning(
                "Sync failure webhook failed for connection_id=%s: %s", alert.connection_id, exc
            )
    return delivered
