import logging

from django.utils import timezone
from rest_framework import status, viewsets
from rest_framework.decorators import api_view
from rest_framework.response import Response

from alerts.services import FailureEscalationService
from connections.config import SyncConfig
from connections.models import Connection

from .models import SyncRun
from .scheduling import SchedulingPolicy
from .serializers import SyncRunSerializer, SyncTriggerSerializer
from .services import has_open_run
from .sync_status import get_last_sync_error, is_sync_locked

logger = logging.getLogger(__name__)


class SyncRunViewSet(viewsets.ReadOnlyModelViewSet):
    """Sync history, newest first. Filter with ?connection=<id>&status=<status>."""

    serializer_class = SyncRunSerializer

    def get_queryset(self):
        qs = SyncRun.objects.select_related("connection").order_by("-created_at", "-id")
        connection_id = self.request.query_params.get("connection")
        if connection_id:
            qs = qs.filter(connection_id=connection_id)
        run_status = self.request.query_params.get("status")
        if run_status:
            qs = qs.filter(status=run_status)
        return qs


@api_view(["GET"])
def sync_health(request):
    """Per-connection sync health plus the current schedule."""
    config = SyncConfig.load()
    policy = SchedulingPolicy(config.business_hours, config.full_sync_time)
    escalation = FailureEscalationService(config.alerts)

    connections = []
    for connection in Connection.objects.all():
        last_run = connection.sync_runs.order_by("-created_at", "-id").first()
        connections.append(
            {
                "id": connection.pk,
                "name": connection.name,
                "status": connection.status,
                "is_configured": connection.is_configured(),
                "last_success_at": connection.last_success_at,
                "last_error": connection.last_error or get_last_sync_error(connection.pk),
                "sync_in_progress": is_sync_locked(connection.pk),
                "last_run": last_run.get_summary() if last_run else None,
                "alert": escalation.get_alert_status(connection),
            }
        )
    return Response(
        {
            "checked_at": timezone.now(),
            "schedule": policy.get_configuration(),
            "connections": connections,
        }
    )


@api_view(["POST"])
def sync_trigger(request):
    """Queue a manual sync. Responds 409 while the connection is already syncing."""
    from .tasks import run_sync

    serializer = SyncTriggerSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    connection = serializer.validated_data["connection"]
    mode = serializer.validated_data["mode"]

    busy = is_sync_locked(connection.pk) or has_open_run(connection.pk)
    if busy:
        return Response(
            {"detail": "A sync is already pending or running for this connection"},
            status=status.HTTP_409_CONFLICT,
        )

    sync_run = SyncRun.objects.create(connection=connection, mode=mode, trigger=SyncRun.Trigger.API)
    run_sync.delay(sync_run.pk)
    logger.info(
        "Manual sync queued: sync_run_id=%s connection_id=%s mode=%s user_id=%s",
        sync_run.pk, connection.pk, mode, request.user.pk,
    )
    return Response(SyncRunSerializer(sync_run).data, status=status.HTTP_202_ACCEPTED)
