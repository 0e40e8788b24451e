import logging
from datetime import timedelta

from celery import shared_task
from django.utils import timezone

from connections.config import SyncConfig
from connections.models import Connection
from connections.services import RemoteApiClient

from .models import SyncRun
from .scheduling import SchedulingPolicy
from .services import IngestionOrchestrator, RawEventReplayer, SyncAlreadyRunning, has_open_run
from .sync_status import (
    acquire_sync_lock,
    clear_last_sync_error,
    is_sync_locked,
    release_sync_lock,
    set_last_sync_error,
)

logger = logging.getLogger(__name__)

REFUSED_MESSAGE = "Refused: another sync is already running for this connection"


def configured_connections():
    return [c for c in Connection.objects.all() if c.is_configured()]


def create_sync_run(connection: Connection, mode: str, trigger: str) -> SyncRun:
    return SyncRun.objects.create(connection=connection, mode=mode, trigger=trigger)


@shared_task
def run_scheduled_sync():
    """Beat entry point (every minute): start a run per connection when the policy says so."""
    config = SyncConfig.load()
    policy = SchedulingPolicy(config.business_hours, config.full_sync_time)
    now = timezone.now()
    if not policy.should_sync_now(now):
        return {"skipped": "Not a sync boundary", "next_sync": policy.get_next_sync_time(now).isoformat()}

    mode = SyncRun.Mode.FULL if policy.is_full_sync_time(now) else SyncRun.Mode.INCREMENTAL
    queued = []
    for connection in configured_connections():
        if is_sync_locked(connection.pk):
            logger.info("run_scheduled_sync skipped connection_id=%s reason=lock-held", connection.pk)
            continue
        if has_open_run(connection.pk):
            logger.info("run_scheduled_sync skipped connection_id=%s reason=run-open", connection.pk)
            continue
        sync_run = create_sync_run(connection, mode, SyncRun.Trigger.SCHEDULED)
        run_sync.delay(sync_run.pk)
        queued.append(sync_run.pk)
    logger.info("run_scheduled_sync queued %s run(s) mode=%s (%s)", len(queued), mode, policy.describe(now))
    return {"queued": queued, "mode": mode}


@shared_task
def run_sync(sync_run_id: int):
    """Execute one pending SyncRun while holding the connection's sync lock."""
    try:
        sync_run = SyncRun.objects.select_related("connection").get(pk=sync_run_id)
    except SyncRun.DoesNotExist:
        logger.warning("run_sync: sync_run_id=%s not found", sync_run_id)
        return {"error": "Sync run not found"}
    if sync_run.status != SyncRun.Status.PENDING:
        logger.warning("run_sync: sync_run_id=%s is %s", sync_run_id, sync_run.status)
        return {"error": f"Sync run is {sync_run.status}"}

    connection = sync_run.connection
    config = SyncConfig.load()
    client = RemoteApiClient(connection, config.retry)
    orchestrator = IngestionOrchestrator(client, config)

    if not client.is_configured():
        orchestrator.fail_sync("Connection is not configured", sync_run=sync_run)
        return {"error": "Connection is not configured", "sync_run_id": sync_run.pk}

    if not acquire_sync_lock(connection.pk):
        _refuse(sync_run)
        return {"skipped": "Sync already running for this connection", "sync_run_id": sync_run.pk}

    try:
        try:
            orchestrator.execute(sync_run)
        except SyncAlreadyRunning:
            _refuse(sync_run)
            return {"skipped": "Sync already running for this connection", "sync_run_id": sync_run.pk}

        if sync_run.status == SyncRun.Status.FAILED:
            set_last_sync_error(connection.pk, sync_run.error_summary)
        else:
            clear_last_sync_error(connection.pk)
        return sync_run.get_summary()
    except Exception as e:
        logger.exception("run_sync failed for sync_run_id=%s", sync_run_id)
        set_last_sync_error(connection.pk, str(e))
        return {"error": str(e), "sync_run_id": sync_run_id}
    finally:
        release_sync_lock(connection.pk)


def _refuse(sync_run: SyncRun):
    """Close a run that never executed because its connection was busy. Not escalated."""
    logger.info("run_sync refused sync_run_id=%s reason=connection-busy", sync_run.pk)
    sync_run.refresh_from_db()
    if not sync_run.is_terminal:
        sync_run.finalize(SyncRun.Status.FAILED, REFUSED_MESSAGE)


@shared_task
def replay_raw_events(limit: int = 200, after_id: int = 0, resource_type: str = None):
    """Replay one bounded batch of unprocessed raw events and re-enqueue while more remain."""
    result = RawEventReplayer().replay_batch(limit=limit, after_id=after_id, resource_type=resource_type)
    if result["has_more"]:
        replay_raw_events.delay(limit=limit, after_id=result["last_id"], resource_type=resource_type)
    return result


@shared_task
def prune_sync_runs(days: int = 90):
    """Delete terminal runs older than `days`; their raw events go with them."""
    cutoff = timezone.now() - timedelta(days=days)
    qs = SyncRun.objects.filter(
        status__in=SyncRun.TERMINAL_STATUSES,
        created_at__lt=cutoff,
    )
    count = qs.count()
    qs.delete()
    logger.info("prune_sync_runs deleted %s run(s) older than %s days", count, days)
    return {"deleted": count}
