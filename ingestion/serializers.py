from rest_framework import serializers

from connections.models import Connection

from .models import SyncRun


class SyncRunSerializer(serializers.ModelSerializer):
    connection_name = serializers.CharField(source="connection.name", read_only=True)
    duration_seconds = serializers.FloatField(read_only=True)

    class Meta:
        model = SyncRun
        fields = [
            "id",
            "connection",
            "connection_name",
            "mode",
            "trigger",
            "status",
            "started_at",
            "ended_at",
            "duration_seconds",
            "resources_synced",
            "errors_count",
            "error_summary",
            "resource_metrics",
            "resource_errors",
            "created_at",
        ]
        read_only_fields = fields


class SyncTriggerSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(choices=SyncRun.Mode.choices, default=SyncRun.Mode.INCREMENTAL)
    connection = serializers.PrimaryKeyRelatedField(queryset=Connection.objects.all(), required=False)

    def validate(self, attrs):
        connection = attrs.get("connection")
        if connection is None:
            connection = next((c for c in Connection.objects.all() if c.is_configured()), None)
            if connection is None:
                raise serializers.ValidationError("No configured connection to sync")
            attrs["connection"] = connection
        elif not connection.is_configured():
            raise serializers.ValidationError({"connection": "Connection is not configured"})
        return attrs
