from rest_framework import viewsets
from rest_framework.decorators import action
from rest_framework.response import Response

from connections.config import SyncConfig

from .models import SyncFailureAlert
from .serializers import SyncFailureAlertSerializer
from .services import FailureEscalationService


class SyncFailureAlertViewSet(viewsets.ReadOnlyModelViewSet):
    """Active sync failure alerts (pass ?all=true for every alert) and acknowledgment."""

    serializer_class = SyncFailureAlertSerializer

    def get_queryset(self):
        if self.action == "list" and self.request.query_params.get("all", "").lower() not in ("1", "true"):
            service = FailureEscalationService(SyncConfig.load().alerts)
            return service.get_active_alerts().select_related("acknowledged_by")
        return SyncFailureAlert.objects.select_related("connection", "acknowledged_by")

    @action(detail=True, methods=["post"])
    def acknowledge(self, request, pk=None):
        alert = self.get_object()
        service = FailureEscalationService(SyncConfig.load().alerts)
        service.acknowledge_alert(alert, request.user)
        return Response(self.get_serializer(alert).data)
