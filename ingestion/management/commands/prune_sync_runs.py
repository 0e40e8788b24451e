from datetime import timedelta

from django.core.management.base import BaseCommand
from django.utils import timezone

from ingestion.models import RawEvent, SyncRun
from ingestion.tasks import prune_sync_runs


class Command(BaseCommand):
    help = "Delete finished sync runs (and their raw events) older than --days"

    def add_arguments(self, parser):
        parser.add_argument("--days", type=int, default=90, help="Retention in days (default 90)")
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report what would be deleted",
        )

    def handle(self, *args, **options):
        days = options["days"]
        if options.get("dry_run"):
            cutoff = timezone.now() - timedelta(days=days)
            runs = SyncRun.objects.filter(status__in=SyncRun.TERMINAL_STATUSES, created_at__lt=cutoff)
            events = RawEvent.objects.filter(sync_run__in=runs).count()
            self.stdout.write(
                self.style.WARNING(
                    f"DRY RUN: would delete {runs.count()} run(s) and {events} raw event(s) older than {days} days"
                )
            )
            return
        result = prune_sync_runs(days=days)
        self.stdout.write(self.style.SUCCESS(f"Deleted {result['deleted']} sync run(s)."))
