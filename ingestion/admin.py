from django.contrib import admin

from .models import RawEvent, SyncRun


@admin.register(SyncRun)
class SyncRunAdmin(admin.ModelAdmin):
    list_display = (
        "id",
        "connection",
        "mode",
        "trigger",
        "status",
        "started_at",
        "ended_at",
        "resources_synced",
        "errors_count",
    )
    list_filter = ("status", "mode", "trigger", "connection")
    readonly_fields = ("resource_metrics", "resource_errors", "error_summary", "created_at")


@admin.register(RawEvent)
class RawEventAdmin(admin.ModelAdmin):
    list_display = ("id", "resource_type", "external_id", "sync_run", "pulled_at", "processed_at")
    list_filter = ("resource_type",)
    search_fields = ("external_id",)
    readonly_fields = ("payload",)
