from django.db import models
from django.utils import timezone

from .crypto import decrypt_value, encrypt_value


class ConnectionStatus(models.TextChoices):
    UNCONFIGURED = "unconfigured", "Not configured"
    CONFIGURED = "configured", "Configured"
    CONNECTED = "connected", "Connected"
    ERROR = "error", "Error"


class Connection(models.Model):
    """Credentials and health for one remote property-management API tenant."""

    name = models.CharField(max_length=255, default="Primary Connection")
    base_url = models.URLField(max_length=255, blank=True)
    client_id = models.CharField(max_length=255, blank=True)
    client_secret_encrypted = models.TextField(blank=True)
    status = models.CharField(
        max_length=32, choices=ConnectionStatus.choices, default=ConnectionStatus.UNCONFIGURED
    )
    last_success_at = models.DateTimeField(blank=True, null=True)
    last_error = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return f"{self.name} ({self.status})"

    def set_client_secret(self, raw_secret: str):
        self.client_secret_encrypted = encrypt_value(raw_secret) if raw_secret else ""
        if self.is_configured() and self.status == ConnectionStatus.UNCONFIGURED:
            self.status = ConnectionStatus.CONFIGURED

    def get_client_secret(self) -> str:
        if not self.client_secret_encrypted:
            return ""
        return decrypt_value(self.client_secret_encrypted)

    def is_configured(self) -> bool:
        return bool(self.base_url and self.client_id and self.client_secret_encrypted)

    def mark_as_success(self):
        self.status = ConnectionStatus.CONNECTED
        self.last_success_at = timezone.now()
        self.last_error = ""
        self.save(update_fields=["status", "last_success_at", "last_error", "updated_at"])

    def mark_as_error(self, error: str):
        self.status = ConnectionStatus.ERROR
        self.last_error = error[:2000]
        self.save(update_fields=["status", "last_error", "updated_at"])


class Setting(models.Model):
    """Operator overrides for sync configuration, keyed by category and key."""

    category = models.CharField(max_length=64)
    key = models.CharField(max_length=128)
    value = models.JSONField(blank=True, null=True)
    description = models.CharField(max_length=255, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = (("category", "key"),)
        ordering = ["category", "key"]

    def __str__(self):
        return f"{self.category}.{self.key}"

    @classmethod
    def get_value(cls, category: str, key: str, default=None):
        row = cls.objects.filter(category=category, key=key).first()
        return row.value if row is not None else default

    @classmethod
    def set_value(cls, category: str, key: str, value, description: str = ""):
        row, _ = cls.objects.update_or_create(
            category=category,
            key=key,
            defaults={"value": value, "description": description},
        )
        return row

    @classmethod
    def as_overrides(cls) -> dict:
        """All rows as {category: {key: value}}."""
        overrides = {}
        for row in cls.objects.all():
            overrides.setdefault(row.category, {})[row.key] = row.value
        return overrides
