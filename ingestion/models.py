from django.db import models
from django.utils import timezone


class SyncStateError(Exception):
    """Illegal transition on a SyncRun (e.g. touching a terminal run)."""


class SyncRun(models.Model):
    """
    One ingestion attempt for a connection. Moves pending -> running -> completed|failed
    and is never modified once terminal. Per-resource metrics are written once, by the
    resource's tracker.
    """

    class Mode(models.TextChoices):
        FULL = "full", "Full"
        INCREMENTAL = "incremental", "Incremental"

    class Status(models.TextChoices):
        PENDING = "pending", "Pending"
        RUNNING = "running", "Running"
        COMPLETED = "completed", "Completed"
        FAILED = "failed", "Failed"

    class Trigger(models.TextChoices):
        SCHEDULED = "scheduled", "Scheduled"
        MANUAL = "manual", "Manual"
        COMMAND = "command", "Management command"
        API = "api", "API"

    MAX_ERRORS_PER_RESOURCE = 10
    TERMINAL_STATUSES = (Status.COMPLETED, Status.FAILED)

    connection = models.ForeignKey(
        "connections.Connection", on_delete=models.CASCADE, related_name="sync_runs"
    )
    mode = models.CharField(max_length=16, choices=Mode.choices, default=Mode.INCREMENTAL)
    trigger = models.CharField(max_length=16, choices=Trigger.choices, default=Trigger.SCHEDULED)
    status = models.CharField(max_length=16, choices=Status.choices, default=Status.PENDING)
    started_at = models.DateTimeField(blank=True, null=True)
    ended_at = models.DateTimeField(blank=True, null=True)
    resources_synced = models.PositiveIntegerField(
        default=0, help_text="Records created or updated across all resources"
    )
    errors_count = models.PositiveIntegerField(default=0)
    error_summary = models.TextField(blank=True)
    resource_metrics = models.JSONField(default=dict, blank=True)
    resource_errors = models.JSONField(default=dict, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        indexes = [models.Index(fields=["connection", "status"], name="ingestion_run_status_idx")]
        constraints = [
            models.UniqueConstraint(
                fields=["connection"],
                condition=models.Q(status="running"),
                name="ingestion_one_running_run_per_connection",
            )
        ]

    def __str__(self):
        return f"SyncRun {self.pk} {self.mode} {self.status} connection={self.connection_id}"

    @property
    def is_terminal(self) -> bool:
        return self.status in self.TERMINAL_STATUSES

    @property
    def duration_seconds(self):
        if not self.started_at or not self.ended_at:
            return None
        return (self.ended_at - self.started_at).total_seconds()

    def mark_as_running(self):
        if self.status != self.Status.PENDING:
            raise SyncStateError(f"SyncRun {self.pk} is {self.status}, expected pending")
        self.status = self.Status.RUNNING
        self.started_at = timezone.now()
        self.save(update_fields=["status", "started_at"])

    def record_resource(self, resource_type: str, metrics: dict, errors: list):
        """Store one resource's final metrics and its most recent errors."""
        if self.status != self.Status.RUNNING:
            raise SyncStateError(f"SyncRun {self.pk} is {self.status}; resource metrics are closed")
        if resource_type in self.resource_metrics:
            raise SyncStateError(f"Metrics for {resource_type} already recorded on SyncRun {self.pk}")
        self.resource_metrics[resource_type] = metrics
        if errors:
            self.resource_errors[resource_type] = errors[-self.MAX_ERRORS_PER_RESOURCE:]
        self.save(update_fields=["resource_metrics", "resource_errors"])

    def finalize(self, status: str, error_summary: str = ""):
        if status not in self.TERMINAL_STATUSES:
            raise SyncStateError(f"Cannot finalize SyncRun {self.pk} as {status}")
        if self.is_terminal:
            raise SyncStateError(f"SyncRun {self.pk} is already {self.status}")
        totals = self.get_totals()
        self.status = status
        self.ended_at = timezone.now()
        self.resources_synced = totals["created"] + totals["updated"]
        self.errors_count = totals["errors"]
        self.error_summary = error_summary
        self.save(
            update_fields=["status", "ended_at", "resources_synced", "errors_count", "error_summary"]
        )

    def get_totals(self) -> dict:
        totals = {"created": 0, "updated": 0, "skipped": 0, "errors": 0}
        for metrics in self.resource_metrics.values():
            for key in totals:
                totals[key] += int(metrics.get(key, 0))
        return totals

    def get_summary(self) -> dict:
        return {
            "id": self.pk,
            "connection_id": self.connection_id,
            "mode": self.mode,
            "status": self.status,
            "trigger": self.trigger,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_seconds": self.duration_seconds,
            "resources_synced": self.resources_synced,
            "errors_count": self.errors_count,
            "error_summary": self.error_summary,
            "totals": self.get_totals(),
            "resources": self.resource_metrics,
            "errors": self.resource_errors,
        }


class RawEventQuerySet(models.QuerySet):
    def unprocessed(self):
        return self.filter(processed_at__isnull=True)


class RawEvent(models.Model):
    """Verbatim payload of one fetched item. Append-only apart from processed_at."""

    sync_run = models.ForeignKey(SyncRun, on_delete=models.CASCADE, related_name="raw_events")
    resource_type = models.CharField(max_length=32)
    external_id = models.CharField(max_length=64, blank=True)
    payload = models.JSONField()
    pulled_at = models.DateTimeField(default=timezone.now)
    processed_at = models.DateTimeField(blank=True, null=True)

    objects = RawEventQuerySet.as_manager()

    class Meta:
        ordering = ["id"]
        indexes = [
            models.Index(fields=["resource_type", "external_id"], name="ingestion_raw_ext_idx"),
            models.Index(fields=["processed_at"], name="ingestion_raw_processed_idx"),
        ]

    def __str__(self):
        return f"RawEvent {self.resource_type}:{self.external_id} run={self.sync_run_id}"

    def mark_as_processed(self):
        self.processed_at = timezone.now()
        self.save(update_fields=["processed_at"])
