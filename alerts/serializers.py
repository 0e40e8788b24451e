from rest_framework import serializers

from .models import SyncFailureAlert


class SyncFailureAlertSerializer(serializers.ModelSerializer):
    connection_name = serializers.CharField(source="connection.name", read_only=True)
    is_active = serializers.BooleanField(read_only=True)
    acknowledged_by = serializers.StringRelatedField(read_only=True)

    class Meta:
        model = SyncFailureAlert
        fields = [
            "id",
            "connection",
            "connection_name",
            "consecutive_failures",
            "last_alert_sent_at",
            "acknowledged_at",
            "acknowledged_by",
            "is_active",
            "failure_details",
            "updated_at",
        ]
        read_only_fields = fields
