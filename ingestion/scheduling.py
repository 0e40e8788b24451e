"""
Business-hours-aware sync cadence.

The beat scheduler ticks every minute; SchedulingPolicy decides whether a given
tick should start a sync. All methods are pure and take an explicit `now`.
"""
from datetime import datetime, timedelta
from typing import Optional

from django.utils import timezone

from connections.config import BusinessHoursConfig


class SchedulingPolicy:
    def __init__(self, config: BusinessHoursConfig, full_sync_time: str = "02:00"):
        self.config = config
        self.full_sync_time = full_sync_time

    def local_time(self, now: Optional[datetime] = None) -> datetime:
        return (now or timezone.now()).astimezone(self.config.tzinfo)

    def is_business_hours(self, now: Optional[datetime] = None) -> bool:
        if not self.config.enabled:
            return True
        local = self.local_time(now)
        if self.config.weekdays_only and local.weekday() >= 5:
            return False
        return self.config.start_hour <= local.hour < self.config.end_hour

    def get_sync_interval(self, now: Optional[datetime] = None) -> int:
        if self.is_business_hours(now):
            return self.config.business_hours_interval
        return self.config.off_hours_interval

    def should_sync_now(self, now: Optional[datetime] = None) -> bool:
        local = self.local_time(now)
        return local.minute % self.get_sync_interval(local) == 0

    def get_next_sync_time(self, now: Optional[datetime] = None) -> datetime:
        """
        First interval boundary strictly after the current minute. The interval can
        change when the window opens or closes, so it is re-evaluated per minute.
        """
        local = self.local_time(now).replace(second=0, microsecond=0)
        candidate = local + timedelta(minutes=1)
        # Minute 0 matches every interval, so the boundary is at most an hour away.
        for _ in range(60):
            if candidate.minute % self.get_sync_interval(candidate) == 0:
                return candidate
            candidate += timedelta(minutes=1)
        return candidate

    def is_full_sync_time(self, now: Optional[datetime] = None) -> bool:
        return self.local_time(now).strftime("%H:%M") == self.full_sync_time

    def describe(self, now: Optional[datetime] = None) -> str:
        interval = self.get_sync_interval(now)
        if not self.config.enabled:
            return f"Business hours disabled (every {interval} minutes)"
        if self.is_business_hours(now):
            return f"Business hours (every {interval} minutes)"
        return f"Off-hours (every {interval} minutes)"

    def get_configuration(self, now: Optional[datetime] = None) -> dict:
        local = self.local_time(now)
        return {
            "enabled": self.config.enabled,
            "timezone": self.config.timezone,
            "business_hours": f"{self.config.start_hour}:00 - {self.config.end_hour}:00",
            "weekdays_only": self.config.weekdays_only,
            "business_hours_interval": self.config.business_hours_interval,
            "off_hours_interval": self.config.off_hours_interval,
            "full_sync_time": self.full_sync_time,
            "is_business_hours": self.is_business_hours(local),
            "current_mode": self.describe(local),
            "current_interval": self.get_sync_interval(local),
            "next_sync": self.get_next_sync_time(local).isoformat(),
        }
