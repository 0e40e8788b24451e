import os

from celery import Celery
from celery.schedules import crontab

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "pmpulse_hub.settings")

app = Celery("pmpulse_hub")
app.config_from_object("django.conf:settings", namespace="CELERY")
app.autodiscover_tasks()

# The scheduler ticks every minute; SchedulingPolicy decides whether a tick syncs.
app.conf.beat_schedule = {
    "run-scheduled-sync": {
        "task": "ingestion.tasks.run_scheduled_sync",
        "schedule": crontab(minute="*"),
    },
    "prune-sync-runs": {
        "task": "ingestion.tasks.prune_sync_runs",
        "schedule": crontab(hour=3, minute=30),
    },
}
