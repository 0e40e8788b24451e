"""
Create or update a remote API connection. The client secret is encrypted
before it is stored.
"""
from django.core.management.base import BaseCommand, CommandError

from connections.models import Connection


class Command(BaseCommand):
    help = "Create or update a remote API connection (credentials are encrypted at rest)"

    def add_arguments(self, parser):
        parser.add_argument("--connection-id", type=int, help="Update this connection instead of creating one")
        parser.add_argument("--name", help="Display name")
        parser.add_argument("--base-url", help="API base URL, e.g. https://tenant.example.com/api")
        parser.add_argument("--client-id", help="API client id")
        parser.add_argument("--client-secret", help="API client secret")

    def handle(self, *args, **options):
        connection_id = options.get("connection_id")
        if connection_id:
            try:
                connection = Connection.objects.get(pk=connection_id)
            except Connection.DoesNotExist:
                raise CommandError(f"Connection {connection_id} not found")
        else:
            connection = Connection()

        if options.get("name"):
            connection.name = options["name"]
        if options.get("base_url"):
            connection.base_url = options["base_url"].rstrip("/")
        if options.get("client_id"):
            connection.client_id = options["client_id"]
        if options.get("client_secret"):
            connection.set_client_secret(options["client_secret"])
        connection.save()

        if connection.is_configured():
            self.stdout.write(
                self.style.SUCCESS(f"Connection {connection.pk} ({connection.name}) is configured.")
            )
        else:
            self.stdout.write(
                self.style.WARNING(
                    f"Connection {connection.pk} saved but still needs base URL, client id and secret."
                )
            )
