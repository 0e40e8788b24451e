from django.core.management.base import BaseCommand

from connections.config import SyncConfig
from ingestion.scheduling import SchedulingPolicy


class Command(BaseCommand):
    help = "Show the business-hours sync schedule and when the next sync will run"

    def handle(self, *args, **options):
        config = SyncConfig.load()
        schedule = SchedulingPolicy(config.business_hours, config.full_sync_time).get_configuration()
        self.stdout.write(self.style.SUCCESS(schedule["current_mode"]))
        for key in (
            "enabled",
            "timezone",
            "business_hours",
            "weekdays_only",
            "business_hours_interval",
            "off_hours_interval",
            "full_sync_time",
            "next_sync",
        ):
            self.stdout.write(f"  {key}: {schedule[key]}")
