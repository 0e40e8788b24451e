from datetime import timedelta

from django.conf import settings
from django.db import models
from django.utils import timezone


class SyncFailureAlert(models.Model):
    """Consecutive-failure counter and alert state for one connection."""

    MAX_FAILURE_DETAILS = 10

    connection = models.OneToOneField(
        "connections.Connection", on_delete=models.CASCADE, related_name="failure_alert"
    )
    consecutive_failures = models.PositiveIntegerField(default=0)
    last_alert_sent_at = models.DateTimeField(blank=True, null=True)
    acknowledged_at = models.DateTimeField(blank=True, null=True)
    acknowledged_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        blank=True,
        null=True,
        related_name="acknowledged_sync_alerts",
    )
    failure_details = models.JSONField(default=list, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-updated_at"]

    def __str__(self):
        return f"Sync alert for {self.connection} ({self.consecutive_failures} failures)"

    @property
    def is_acknowledged(self) -> bool:
        return self.acknowledged_at is not None

    @property
    def is_active(self) -> bool:
        return self.consecutive_failures > 0 and not self.is_acknowledged

    def record_failure(self, details: dict):
        self.consecutive_failures += 1
        entries = list(self.failure_details or [])
        entries.append({"timestamp": timezone.now().isoformat(), "details": details})
        self.failure_details = entries[-self.MAX_FAILURE_DETAILS:]
        self.acknowledged_at = None
        self.acknowledged_by = None
        self.save()

    def reset_failures(self):
        self.consecutive_failures = 0
        self.failure_details = []
        self.save(update_fields=["consecutive_failures", "failure_details", "updated_at"])

    def mark_alert_sent(self, when=None):
        self.last_alert_sent_at = when or timezone.now()
        self.save(update_fields=["last_alert_sent_at", "updated_at"])

    def acknowledge(self, user=None):
        self.acknowledged_at = timezone.now()
        self.acknowledged_by = user
        self.save(update_fields=["acknowledged_at", "acknowledged_by", "updated_at"])

    def should_send_alert(self, threshold: int, cooldown_minutes: int, now=None) -> bool:
        if self.consecutive_failures < threshold or self.is_acknowledged:
            return False
        if self.last_alert_sent_at is None:
            return True
        now = now or timezone.now()
        return now - self.last_alert_sent_at >= timedelta(minutes=cooldown_minutes)

    def recent_failures(self, count: int = 3) -> list:
        return list(reversed((self.failure_details or [])[-count:]))
