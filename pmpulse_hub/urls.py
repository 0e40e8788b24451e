from django.contrib import admin
from django.urls import include, path
from rest_framework import routers

from alerts.views import SyncFailureAlertViewSet
from ingestion.views import SyncRunViewSet, sync_health, sync_trigger

router = routers.DefaultRouter()
router.register(r"sync/runs", SyncRunViewSet, basename="sync-run")
router.register(r"sync/alerts", SyncFailureAlertViewSet, basename="sync-alert")

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/sync/health/", sync_health, name="sync_health"),
    path("api/sync/trigger/", sync_trigger, name="sync_trigger"),
    path("api/", include(router.urls)),
]
