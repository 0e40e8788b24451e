"""
Immutable sync configuration.

SyncConfig.load() merges settings.REMOTE_SYNC with Setting rows exactly once;
the resulting struct is handed to the client, the scheduling policy, the
orchestrator and the escalation service for the duration of a run.
"""
import copy
import re
from dataclasses import dataclass, field
from typing import Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from django.conf import settings

# Entities referenced by later resources come first.
RESOURCE_ORDER = ("properties", "units", "vendors", "leases", "work_orders", "expenses")

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class ConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class BusinessHoursConfig:
    enabled: bool = True
    timezone: str = "America/Los_Angeles"
    start_hour: int = 9
    end_hour: int = 17
    weekdays_only: bool = True
    business_hours_interval: int = 15
    off_hours_interval: int = 60

    def __post_init__(self):
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ConfigurationError(f"Unknown timezone: {self.timezone}") from e
        if not (0 <= self.start_hour <= 23 and 0 <= self.end_hour <= 24):
            raise ConfigurationError("Business hours must fall within 0-24")
        if self.start_hour >= self.end_hour:
            raise ConfigurationError("Business hours start must be before end")
        for interval in (self.business_hours_interval, self.off_hours_interval):
            if interval < 1 or interval > 60:
                raise ConfigurationError("Sync intervals must be between 1 and 60 minutes")

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 1
    initial_backoff_seconds: float = 1.0
    backoff_multiplier: float = 2.0
    max_backoff_seconds: float = 60.0
    request_timeout_seconds: float = 30.0
    per_page: int = 100
    max_pages: int = 500

    def backoff_for(self, attempt: int) -> float:
        """Delay before retry number `attempt` (1-based)."""
        delay = self.initial_backoff_seconds * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_backoff_seconds)


@dataclass(frozen=True)
class AlertConfig:
    notifications_enabled: bool = True
    failure_threshold: int = 3
    cooldown_minutes: int = 60
    recipients: Tuple[str, ...] = ()
    webhook_url: str = ""


@dataclass(frozen=True)
class SyncConfig:
    business_hours: BusinessHoursConfig = field(default_factory=BusinessHoursConfig)
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    alerts: AlertConfig = field(default_factory=AlertConfig)
    resources: Tuple[str, ...] = RESOURCE_ORDER
    incremental_days: int = 7
    full_sync_time: str = "02:00"

    def __post_init__(self):
        unknown = [r for r in self.resources if r not in RESOURCE_ORDER]
        if unknown:
            raise ConfigurationError(f"Unknown resource types: {', '.join(unknown)}")
        if not _TIME_OF_DAY.match(self.full_sync_time):
            raise ConfigurationError(f"full_sync_time must be HH:MM, got {self.full_sync_time!r}")
        ordered = tuple(r for r in RESOURCE_ORDER if r in self.resources)
        object.__setattr__(self, "resources", ordered)

    @classmethod
    def load(cls, overrides: Optional[dict] = None) -> "SyncConfig":
        """
        Build the config from settings.REMOTE_SYNC, then Setting rows, then `overrides`
        (a {category: {key: value}} dict, mainly for callers that already hold values).
        """
        from .models import Setting

        raw = copy.deepcopy(getattr(settings, "REMOTE_SYNC", {}))
        for source in (Setting.as_overrides(), overrides or {}):
            for category, values in source.items():
                if isinstance(values, dict):
                    raw.setdefault(category, {}).update(values)
        return cls.from_dict(raw)

    @classmethod
    def from_dict(cls, raw: dict) -> "SyncConfig":
        hours = raw.get("business_hours", {})
        sync = raw.get("sync", {})
        alerts = raw.get("alerts", {})
        features = raw.get("features", {})

        business_hours = BusinessHoursConfig(
            enabled=_as_bool(hours.get("enabled", True)),
            timezone=str(hours.get("timezone", "America/Los_Angeles")),
            start_hour=int(hours.get("start_hour", 9)),
            end_hour=int(hours.get("end_hour", 17)),
            weekdays_only=_as_bool(hours.get("weekdays_only", True)),
            business_hours_interval=int(hours.get("business_hours_interval", 15)),
            off_hours_interval=int(hours.get("off_hours_interval", 60)),
        )
        retry = RetryPolicy(
            max_retries=max(0, int(sync.get("max_retries", 1))),
            initial_backoff_seconds=float(sync.get("initial_backoff_seconds", 1)),
            backoff_multiplier=float(sync.get("backoff_multiplier", 2)),
            max_backoff_seconds=float(sync.get("max_backoff_seconds", 60)),
            request_timeout_seconds=float(sync.get("request_timeout_seconds", 30)),
            per_page=max(1, int(sync.get("per_page", 100))),
            max_pages=max(1, int(sync.get("max_pages", 500))),
        )
        recipients = alerts.get("recipients") or ()
        if isinstance(recipients, str):
            recipients = [r.strip() for r in recipients.split(",")]
        alert_config = AlertConfig(
            notifications_enabled=_as_bool(features.get("notifications", True)),
            failure_threshold=max(1, int(alerts.get("failure_threshold", 3))),
            cooldown_minutes=max(0, int(alerts.get("cooldown_minutes", 60))),
            recipients=tuple(r for r in recipients if r),
            webhook_url=str(alerts.get("webhook_url") or ""),
        )
        return cls(
            business_hours=business_hours,
            retry=retry,
            alerts=alert_config,
            resources=tuple(sync.get("resources") or RESOURCE_ORDER),
            incremental_days=max(1, int(sync.get("incremental_days", 7))),
            full_sync_time=str(sync.get("full_sync_time", "02:00")),
        )


def _as_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
