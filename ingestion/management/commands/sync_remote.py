"""
Run a sync from the command line: synchronously by default, or queued to
Celery with --queue.
"""
from django.core.management.base import BaseCommand, CommandError

from connections.models import Connection
from ingestion.models import SyncRun
from ingestion.services import has_open_run
from ingestion.tasks import configured_connections, create_sync_run, run_sync


class Command(BaseCommand):
    help = "Sync data from the remote property-management API"

    def add_arguments(self, parser):
        parser.add_argument(
            "--mode",
            choices=[SyncRun.Mode.INCREMENTAL, SyncRun.Mode.FULL],
            default=SyncRun.Mode.INCREMENTAL,
            help="incremental (default) or full",
        )
        parser.add_argument(
            "--connection-id",
            type=int,
            help="Sync only this connection ID",
        )
        parser.add_argument(
            "--queue",
            action="store_true",
            help="Queue the run on Celery instead of running it in this process",
        )

    def handle(self, *args, **options):
        mode = options["mode"]
        connection_id = options.get("connection_id")
        if connection_id:
            try:
                connections = [Connection.objects.get(pk=connection_id)]
            except Connection.DoesNotExist:
                raise CommandError(f"Connection {connection_id} not found")
        else:
            connections = configured_connections()
        if not connections:
            self.stdout.write(self.style.WARNING("No configured connections to sync."))
            return

        for connection in connections:
            if has_open_run(connection.pk):
                self.stdout.write(
                    self.style.WARNING(f"{connection.name}: a sync is already pending or running, skipping.")
                )
                continue

            sync_run = create_sync_run(connection, mode, SyncRun.Trigger.COMMAND)
            if options.get("queue"):
                run_sync.delay(sync_run.pk)
                self.stdout.write(f"{connection.name}: queued sync run {sync_run.pk} ({mode}).")
                continue

            self.stdout.write(f"{connection.name}: running {mode} sync (run {sync_run.pk})...")
            result = run_sync(sync_run.pk)
            sync_run.refresh_from_db()
            if sync_run.status == SyncRun.Status.COMPLETED:
                totals = sync_run.get_totals()
                self.stdout.write(
                    self.style.SUCCESS(
                        f"  Completed: {totals['created']} created, {totals['updated']} updated, "
                        f"{totals['skipped']} skipped, {totals['errors']} errors"
                    )
                )
            else:
                message = sync_run.error_summary or result.get("error") or result.get("skipped", "")
                self.stdout.write(self.style.ERROR(f"  {sync_run.status}: {message}"))
