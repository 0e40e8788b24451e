from django.contrib import admin

from .models import SyncFailureAlert


@admin.register(SyncFailureAlert)
class SyncFailureAlertAdmin(admin.ModelAdmin):
    list_display = (
        "connection",
        "consecutive_failures",
        "last_alert_sent_at",
        "acknowledged_at",
        "acknowledged_by",
    )
    list_filter = ("acknowledged_at",)
    readonly_fields = ("failure_details", "created_at", "updated_at")
