"""
Failure escalation.

Every finished SyncRun is reported here. A completed run resets the
connection's consecutive-failure count; a failed run increments it and, once
the threshold is reached, notifies recipients at most once per cooldown window.
"""
import logging
from typing import Callable, Optional

from django.db import transaction
from django.utils import timezone

from connections.config import AlertConfig

from .models import SyncFailureAlert
from .notifications import send_failure_notification

logger = logging.getLogger(__name__)


class FailureEscalationService:
    def __init__(self, config: Optional[AlertConfig] = None, notifier: Optional[Callable] = None):
        self.config = config or AlertConfig()
        self.notifier = notifier or send_failure_notification

    def handle_sync_completed(self, sync_run) -> bool:
        """Returns True when a failure notification was sent for this run."""
        from ingestion.models import SyncRun

        if sync_run.status == SyncRun.Status.COMPLETED:
            self._handle_success(sync_run)
            return False
        if sync_run.status == SyncRun.Status.FAILED:
            return self._handle_failure(sync_run)
        logger.debug("Ignoring non-terminal sync_run_id=%s (%s)", sync_run.pk, sync_run.status)
        return False

    def _handle_success(self, sync_run):
        with transaction.atomic():
            alert, _ = SyncFailureAlert.objects.select_for_update().get_or_create(
                connection_id=sync_run.connection_id
            )
            if alert.consecutive_failures == 0:
                return
            previous = alert.consecutive_failures
            alert.reset_failures()
        logger.info(
            "Sync recovered for connection_id=%s after %s consecutive failures",
            sync_run.connection_id, previous,
        )

    def _handle_failure(self, sync_run) -> bool:
        with transaction.atomic():
            alert, _ = SyncFailureAlert.objects.select_for_update().get_or_create(
                connection_id=sync_run.connection_id
            )
            alert.record_failure(
                {
                    "sync_run_id": sync_run.pk,
                    "error": sync_run.error_summary,
                    "errors_count": sync_run.errors_count,
                    "mode": sync_run.mode,
                }
            )
            logger.warning(
                "Sync failure recorded for connection_id=%s (consecutive=%s)",
                sync_run.connection_id, alert.consecutive_failures,
            )

            if not self.config.notifications_enabled:
                return False
            if not alert.should_send_alert(self.config.failure_threshold, self.config.cooldown_minutes):
                return False

            try:
                sent = self.notifier(alert, sync_run, self.config)
            except Exception:
                logger.exception("Sync failure notification raised for connection_id=%s", sync_run.connection_id)
                return False
            if not sent:
                return False
            alert.mark_alert_sent()
            return True

    def acknowledge_alert(self, alert: SyncFailureAlert, user=None) -> SyncFailureAlert:
        alert.acknowledge(user)
        logger.info(
            "Sync failure alert %s acknowledged by user_id=%s",
            alert.pk, getattr(user, "pk", None),
        )
        return alert

    def get_alert_status(self, connection) -> dict:
        alert = SyncFailureAlert.objects.filter(connection=connection).first()
        threshold = self.config.failure_threshold
        if alert is None:
            return {
                "consecutive_failures": 0,
                "threshold": threshold,
                "is_active": False,
                "is_acknowledged": False,
                "last_alert_sent_at": None,
                "recent_failures": [],
            }
        return {
            "id": alert.pk,
            "consecutive_failures": alert.consecutive_failures,
            "threshold": threshold,
            "is_active": alert.is_active and alert.consecutive_failures >= threshold,
            "is_acknowledged": alert.is_acknowledged,
            "acknowledged_at": alert.acknowledged_at.isoformat() if alert.acknowledged_at else None,
            "last_alert_sent_at": alert.last_alert_sent_at.isoformat() if alert.last_alert_sent_at else None,
            "cooldown_remaining_minutes": self.cooldown_remaining(alert),
            "recent_failures": alert.recent_failures(3),
        }

    def get_active_alerts(self):
        """Unacknowledged alerts at or above the failure threshold."""
        return (
            SyncFailureAlert.objects.select_related("connection")
            .filter(
                consecutive_failures__gte=self.config.failure_threshold,
                acknowledged_at__isnull=True,
            )
            .order_by("-updated_at")
        )

    def cooldown_remaining(self, alert: SyncFailureAlert, now=None) -> int:
        """Minutes left before another notification may go out (0 when none pending)."""
        if alert.last_alert_sent_at is None:
            return 0
        now = now or timezone.now()
        elapsed = (now - alert.last_alert_sent_at).total_seconds() / 60
        return max(0, int(self.config.cooldown_minutes - elapsed))
