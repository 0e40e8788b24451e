from django.core.management.base import BaseCommand

from connections.config import SyncConfig
from connections.models import Connection
from connections.services import RemoteApiClient


class Command(BaseCommand):
    help = "Check each configured connection's credentials against the remote API"

    def add_arguments(self, parser):
        parser.add_argument(
            "--connection-id",
            type=int,
            help="Only test this connection ID",
        )

    def handle(self, *args, **options):
        connections = Connection.objects.all()
        if options.get("connection_id"):
            connections = connections.filter(pk=options["connection_id"])
        if not connections.exists():
            self.stdout.write(self.style.WARNING("No connections found."))
            return

        config = SyncConfig.load()
        for connection in connections:
            client = RemoteApiClient(connection, config.retry)
            if client.test_connection():
                self.stdout.write(self.style.SUCCESS(f"{connection.name} (id={connection.pk}): OK"))
            else:
                self.stdout.write(self.style.ERROR(f"{connection.name} (id={connection.pk}): FAILED"))
