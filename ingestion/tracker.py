import logging
import time
from typing import Optional

from django.utils import timezone

from .models import SyncRun, SyncStateError

logger = logging.getLogger(__name__)


class ResourceSyncTracker:
    """
    Per-resource counters for one run. finish() writes the metrics snapshot and the
    most recent errors into the SyncRun exactly once.
    """

    def __init__(self, sync_run: SyncRun, resource_type: str):
        self.sync_run = sync_run
        self.resource_type = resource_type
        self.created = 0
        self.updated = 0
        self.skipped = 0
        self.errors = []
        self.fatal_error: Optional[str] = None
        self.finished = False
        self._started = time.monotonic()
        logger.info("Starting sync for %s (sync_run_id=%s)", resource_type, sync_run.pk)

    def record_created(self):
        self.created += 1

    def record_updated(self):
        self.updated += 1

    def record_skipped(self, reason: str):
        self.skipped += 1
        logger.debug("Skipped %s record: %s", self.resource_type, reason)

    def record_error(self, message: str, context: Optional[dict] = None, fatal: bool = False):
        entry = {"message": message, "timestamp": timezone.now().isoformat()}
        if context:
            entry["context"] = context
        if fatal:
            entry["fatal"] = True
            if self.fatal_error is None:
                self.fatal_error = message
        self.errors.append(entry)
        logger.warning(
            "Sync error for %s (sync_run_id=%s%s): %s",
            self.resource_type, self.sync_run.pk, ", fatal" if fatal else "", message,
        )

    def get_processed_count(self) -> int:
        return self.created + self.updated

    def has_errors(self) -> bool:
        return bool(self.errors)

    def has_fatal_error(self) -> bool:
        return self.fatal_error is not None

    def get_error_messages(self) -> list:
        return [e["message"] for e in self.errors]

    def get_metrics(self) -> dict:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": len(self.errors),
            "duration_ms": int((time.monotonic() - self._started) * 1000),
        }

    def finish(self) -> dict:
        if self.finished:
            raise SyncStateError(f"Tracker for {self.resource_type} already finished")
        metrics = self.get_metrics()
        self.sync_run.record_resource(self.resource_type, metrics, self.errors)
        self.finished = True
        logger.info(
            "Completed sync for %s (sync_run_id=%s): created=%s updated=%s skipped=%s errors=%s duration_ms=%s",
            self.resource_type, self.sync_run.pk, metrics["created"], metrics["updated"],
            metrics["skipped"], metrics["errors"], metrics["duration_ms"],
        )
        return metrics
