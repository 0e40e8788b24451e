"""
Re-map stored raw events that were never applied (for example units skipped
because their property had not been ingested yet).
"""
from django.core.management.base import BaseCommand

from ingestion.models import RawEvent
from ingestion.services import RawEventReplayer
from ingestion.tasks import replay_raw_events


class Command(BaseCommand):
    help = "Replay unprocessed raw events in bounded batches"

    def add_arguments(self, parser):
        parser.add_argument("--limit", type=int, default=200, help="Events per batch")
        parser.add_argument("--resource", help="Only replay this resource type")
        parser.add_argument(
            "--queue",
            action="store_true",
            help="Queue batches on Celery (each batch re-enqueues the next)",
        )
        parser.add_argument(
            "--dry-run",
            action="store_true",
            help="Only report how many events are pending",
        )

    def handle(self, *args, **options):
        limit = options["limit"]
        resource_type = options.get("resource")
        pending = RawEvent.objects.unprocessed()
        if resource_type:
            pending = pending.filter(resource_type=resource_type)
        pending_count = pending.count()

        if options.get("dry_run") or not pending_count:
            self.stdout.write(self.style.WARNING(f"{pending_count} unprocessed raw event(s)."))
            return

        if options.get("queue"):
            replay_raw_events.delay(limit=limit, resource_type=resource_type)
            self.stdout.write(self.style.SUCCESS(f"Queued replay of {pending_count} raw event(s)."))
            return

        replayer = RawEventReplayer()
        after_id = 0
        totals = {"processed": 0, "skipped": 0, "errors": 0}
        while True:
            result = replayer.replay_batch(limit=limit, after_id=after_id, resource_type=resource_type)
            for key in totals:
                totals[key] += result[key]
            after_id = result["last_id"]
            if not result["has_more"]:
                break
        self.stdout.write(
            self.style.SUCCESS(
                f"Replayed: {totals['processed']} processed, {totals['skipped']} skipped, "
                f"{totals['errors']} errors"
            )
        )
