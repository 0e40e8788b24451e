from django.contrib import admin

from .models import Connection, Setting


@admin.register(Connection)
class ConnectionAdmin(admin.ModelAdmin):
    list_display = ("name", "base_url", "status", "last_success_at", "updated_at")
    search_fields = ("name", "base_url", "client_id")
    list_filter = ("status",)
    exclude = ("client_secret_encrypted",)
    readonly_fields = ("last_success_at", "last_error", "created_at", "updated_at")


@admin.register(Setting)
class SettingAdmin(admin.ModelAdmin):
    list_display = ("category", "key", "value", "updated_at")
    search_fields = ("category", "key")
    list_filter = ("category",)
