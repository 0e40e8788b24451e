"""
Sync run orchestration.

IngestionOrchestrator drives one SyncRun: start_sync() claims the connection,
process_resource() pages through one resource (raw event first, then map and
upsert per item), and complete_sync()/fail_sync() finalize the run and hand it
to failure escalation.
"""
import logging
from datetime import timedelta
from typing import Optional

import requests
from django.db import IntegrityError, transaction
from django.db.models import Q
from django.utils import timezone

from alerts.services import FailureEscalationService
from connections.config import SyncConfig
from connections.models import Connection
from connections.services import RemoteApiError

from .mappers import MAPPERS, SkipRecord, extract_external_id
from .models import RawEvent, SyncRun, SyncStateError
from .sync_status import SYNC_LOCK_TIMEOUT
from .tracker import ResourceSyncTracker
from .upserts import EntityUpserter, update_unit_status_from_leases

logger = logging.getLogger(__name__)
sync_audit = logging.getLogger("ingestion.sync_audit")

ERROR_SUMMARY_MAX_LINES = 10
RAW_EXTERNAL_ID_LENGTH = RawEvent._meta.get_field("external_id").max_length
STALE_RUN_AFTER = timedelta(seconds=SYNC_LOCK_TIMEOUT)
STALE_RUN_MESSAGE = "Stale: the worker stopped before the run finished"


def has_open_run(connection_id: int) -> bool:
    """
    A recent pending or running run exists for the connection. Runs older than
    STALE_RUN_AFTER do not count: a stale running run is failed when the next
    run starts, and a pending run that old was lost by the queue.
    """
    cutoff = timezone.now() - STALE_RUN_AFTER
    return SyncRun.objects.filter(
        Q(status=SyncRun.Status.PENDING, created_at__gte=cutoff)
        | Q(status=SyncRun.Status.RUNNING, started_at__gte=cutoff),
        connection_id=connection_id,
    ).exists()


class SyncAlreadyRunning(SyncStateError):
    """Another run of the same connection is in progress."""


class IngestionOrchestrator:
    def __init__(self, client, config: SyncConfig, escalation_service: Optional[FailureEscalationService] = None):
        self.client = client
        self.config = config
        self.escalation_service = escalation_service or FailureEscalationService(config.alerts)
        self.sync_run: Optional[SyncRun] = None
        self._trackers = {}
        self._upserter = EntityUpserter()
        self._modified_since = None

    def execute(self, sync_run: SyncRun) -> SyncRun:
        """Start, process every configured resource, and finalize. Unexpected errors fail the run."""
        self.start_sync(sync_run)
        try:
            self.process_all()
        except Exception as e:
            logger.exception("Sync run %s crashed", sync_run.pk)
            return self.fail_sync(f"Unexpected error: {e}")
        return self.complete_sync()

    def start_sync(self, sync_run: SyncRun) -> SyncRun:
        stale_runs = []
        try:
            with transaction.atomic():
                Connection.objects.select_for_update().get(pk=sync_run.connection_id)
                sync_run.refresh_from_db()
                if sync_run.status != SyncRun.Status.PENDING:
                    raise SyncStateError(f"SyncRun {sync_run.pk} is {sync_run.status}, expected pending")
                stale_runs = self._fail_stale_runs(sync_run)
                running = (
                    SyncRun.objects.filter(connection_id=sync_run.connection_id, status=SyncRun.Status.RUNNING)
                    .exclude(pk=sync_run.pk)
                    .exists()
                )
                if running:
                    raise SyncAlreadyRunning(
                        f"Connection {sync_run.connection_id} already has a sync in progress"
                    )
                sync_run.mark_as_running()
        except IntegrityError as e:
            raise SyncAlreadyRunning(
                f"Connection {sync_run.connection_id} already has a sync in progress"
            ) from e
        for stale in stale_runs:
            self._escalate(stale)

        self.sync_run = sync_run
        self._trackers = {}
        self._upserter = EntityUpserter()
        self._modified_since = self._resolve_modified_since(sync_run)
        logger.info(
            "Sync run %s started: connection_id=%s mode=%s modified_since=%s",
            sync_run.pk, sync_run.connection_id, sync_run.mode,
            self._modified_since.isoformat() if self._modified_since else None,
        )
        return sync_run

    def process_all(self):
        for resource_type in self.config.resources:
            if resource_type not in self._trackers:
                self.process_resource(resource_type)

    def process_resource(self, resource_type: str) -> ResourceSyncTracker:
        self._require_running()
        if resource_type not in MAPPERS:
            raise ValueError(f"Unknown resource type: {resource_type}")
        if resource_type in self._trackers:
            raise SyncStateError(f"{resource_type} already processed in SyncRun {self.sync_run.pk}")

        tracker = ResourceSyncTracker(self.sync_run, resource_type)
        self._trackers[resource_type] = tracker
        try:
            for page in self.client.iter_pages(resource_type, modified_since=self._modified_since):
                for item in page["data"]:
                    self._process_item(resource_type, item, tracker)
        except RemoteApiError as e:
            tracker.record_error(str(e), {"status_code": e.status_code}, fatal=True)
        except requests.RequestException as e:
            tracker.record_error(f"Transport error: {e}", fatal=True)
        finally:
            tracker.finish()
        if resource_type == "leases" and not tracker.has_fatal_error():
            update_unit_status_from_leases(timezone.localdate(timezone=self.config.business_hours.tzinfo))
        return tracker

    def complete_sync(self) -> SyncRun:
        self._require_running()
        run = self.sync_run
        self._finish_open_trackers()

        fatal = [t for t in self._trackers.values() if t.has_fatal_error()]
        summary = self._build_error_summary(fatal[0] if fatal else None)
        if fatal:
            run.finalize(SyncRun.Status.FAILED, summary)
            run.connection.mark_as_error(summary.splitlines()[0])
        else:
            run.finalize(SyncRun.Status.COMPLETED, summary)
            run.connection.mark_as_success()

        logger.info(
            "Sync run %s %s: synced=%s errors=%s",
            run.pk, run.status, run.resources_synced, run.errors_count,
        )
        self._escalate(run)
        return run

    def fail_sync(self, message: str, sync_run: Optional[SyncRun] = None) -> SyncRun:
        """Run-level failure. Accepts a pending run that never started (e.g. unconfigured connection)."""
        run = sync_run or self.sync_run
        if run is None:
            raise SyncStateError("No sync run to fail")
        if run.is_terminal:
            raise SyncStateError(f"SyncRun {run.pk} is already {run.status}")
        if run is self.sync_run:
            self._finish_open_trackers()

        run.finalize(SyncRun.Status.FAILED, message)
        run.connection.mark_as_error(message)
        logger.error("Sync run %s failed: %s", run.pk, message)
        self._escalate(run)
        return run

    def get_tracker(self, resource_type: str) -> Optional[ResourceSyncTracker]:
        return self._trackers.get(resource_type)

    def _process_item(self, resource_type: str, item, tracker: ResourceSyncTracker):
        external_id = extract_external_id(resource_type, item)
        try:
            with transaction.atomic():
                raw_event = RawEvent.objects.create(
                    sync_run=self.sync_run,
                    resource_type=resource_type,
                    external_id=(external_id or "")[:RAW_EXTERNAL_ID_LENGTH],
                    payload=item if isinstance(item, dict) else {"value": item},
                )
        except Exception as e:
            tracker.record_error(
                f"Failed to store raw {resource_type} {external_id or 'unknown'}: {e}",
                {"external_id": external_id},
            )
            return
        sync_audit.info(
            "raw event stored",
            extra={"sync_run_id": self.sync_run.pk, "resource_type": resource_type, "external_id": external_id},
        )
        try:
            with transaction.atomic():
                created = self._upserter.upsert(resource_type, item)
                raw_event.mark_as_processed()
        except SkipRecord as skip:
            tracker.record_skipped(skip.reason)
            sync_audit.info(
                "record skipped",
                extra={"sync_run_id": self.sync_run.pk, "resource_type": resource_type, "reason": skip.reason},
            )
            return
        except Exception as e:
            tracker.record_error(
                f"Failed to process {resource_type} {external_id or 'unknown'}: {e}",
                {"external_id": external_id},
            )
            return

        if created:
            tracker.record_created()
        else:
            tracker.record_updated()

    def _finish_open_trackers(self):
        for tracker in self._trackers.values():
            if not tracker.finished:
                tracker.finish()

    def _build_error_summary(self, fatal_tracker: Optional[ResourceSyncTracker]) -> str:
        lines = []
        first = None
        if fatal_tracker is not None:
            first = fatal_tracker.fatal_error
            lines.append(f"{fatal_tracker.resource_type}: {first}")
        for tracker in self._trackers.values():
            for message in tracker.get_error_messages():
                if tracker is fatal_tracker and message == first:
                    first = None
                    continue
                lines.append(f"{tracker.resource_type}: {message}")
        if len(lines) > ERROR_SUMMARY_MAX_LINES:
            remaining = len(lines) - ERROR_SUMMARY_MAX_LINES
            lines = lines[:ERROR_SUMMARY_MAX_LINES] + [f"... and {remaining} more errors"]
        return "\n".join(lines)

    def _fail_stale_runs(self, sync_run: SyncRun) -> list:
        """Fail running runs of the connection that started longer ago than the sync lock lives."""
        cutoff = timezone.now() - STALE_RUN_AFTER
        stale_runs = list(
            SyncRun.objects.select_related("connection")
            .filter(
                connection_id=sync_run.connection_id,
                status=SyncRun.Status.RUNNING,
                started_at__lt=cutoff,
            )
            .exclude(pk=sync_run.pk)
        )
        for stale in stale_runs:
            message = f"{STALE_RUN_MESSAGE} (started {stale.started_at.isoformat()})"
            stale.finalize(SyncRun.Status.FAILED, message)
            stale.connection.mark_as_error(message)
            logger.warning(
                "Sync run %s was stale and has been failed; connection_id=%s",
                stale.pk, stale.connection_id,
            )
        return stale_runs

    def _resolve_modified_since(self, sync_run: SyncRun):
        if sync_run.mode == SyncRun.Mode.FULL:
            return None
        last_completed = (
            SyncRun.objects.filter(
                connection_id=sync_run.connection_id,
                status=SyncRun.Status.COMPLETED,
                started_at__isnull=False,
            )
            .exclude(pk=sync_run.pk)
            .order_by("-started_at")
            .first()
        )
        if last_completed is not None:
            return last_completed.started_at
        return timezone.now() - timedelta(days=self.config.incremental_days)

    def _require_running(self):
        if self.sync_run is None or self.sync_run.status != SyncRun.Status.RUNNING:
            raise SyncStateError("start_sync() must be called before processing")

    def _escalate(self, run: SyncRun):
        try:
            self.escalation_service.handle_sync_completed(run)
        except Exception:
            logger.exception("Failure escalation raised for sync_run_id=%s", run.pk)


class RawEventReplayer:
    """
    Re-applies stored raw events that were never mapped (skipped or errored), one
    bounded batch at a time. Batches walk forward by id so each call makes progress.
    """

    def __init__(self):
        self._upserter = EntityUpserter()

    def replay_batch(self, limit: int = 200, after_id: int = 0, resource_type: Optional[str] = None) -> dict:
        qs = RawEvent.objects.unprocessed().filter(pk__gt=after_id).order_by("pk")
        if resource_type:
            qs = qs.filter(resource_type=resource_type)
        events = list(qs[: limit + 1])
        has_more = len(events) > limit
        events = events[:limit]

        result = {"processed": 0, "skipped": 0, "errors": 0, "last_id": after_id, "has_more": has_more}
        for event in events:
            result["last_id"] = event.pk
            try:
                with transaction.atomic():
                    self._upserter.upsert(event.resource_type, event.payload)
                    event.mark_as_processed()
            except SkipRecord as skip:
                result["skipped"] += 1
                sync_audit.info("replay skipped", extra={"raw_event_id": event.pk, "reason": skip.reason})
            except Exception as e:
                result["errors"] += 1
                logger.warning("Replay of raw_event_id=%s failed: %s", event.pk, e)
            else:
                result["processed"] += 1
        logger.info(
            "Replayed raw events after_id=%s: processed=%s skipped=%s errors=%s has_more=%s",
            after_id, result["processed"], result["skipped"], result["errors"], has_more,
        )
        return result
