from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name="Connection",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("name", models.CharField(default="Primary Connection", max_length=255)),
                ("base_url", models.URLField(blank=True, max_length=255)),
                ("client_id", models.CharField(blank=True, max_length=255)),
                ("client_secret_encrypted", models.TextField(blank=True)),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("unconfigured", "Not configured"),
                            ("configured", "Configured"),
                            ("connected", "Connected"),
                            ("error", "Error"),
                        ],
                        default="unconfigured",
                        max_length=32,
                    ),
                ),
                ("last_success_at", models.DateTimeField(blank=True, null=True)),
                ("last_error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["name"],
            },
        ),
        migrations.CreateModel(
            name="Setting",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("category", models.CharField(max_length=64)),
                ("key", models.CharField(max_length=128)),
                ("value", models.JSONField(blank=True, null=True)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("updated_at", models.DateTimeField(auto_now=True)),
            ],
            options={
                "ordering": ["category", "key"],
                "unique_together": {("category", "key")},
            },
        ),
    ]
