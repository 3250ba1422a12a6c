"""Notification configuration model."""

import re
from typing import List
from pydantic import BaseModel, Field, field_validator

_HHMM = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


class NotificationConfig(BaseModel):
    """E-mail/webhook notification settings stored under the `email_notifications` key."""

    critical_alerts_enabled: bool = True
    daily_summary_enabled: bool = True
    daily_summary_time: str = Field("07:00", description="HH:MM, local server time")
    weekly_report_enabled: bool = True
    weekly_report_day: int = Field(1, ge=0, le=6, description="0=Sunday .. 6=Saturday")
    recipient_roles: List[str] = Field(default_factory=lambda: ["admin", "ceo"])
    recipient_user_ids: List[str] = Field(default_factory=list)

    @field_validator("daily_summary_time")
    @classmethod
    def _check_time(cls, value: str) -> str:
        if not _HHMM.match(value or ""):
            raise ValueError("daily_summary_time must be HH:MM")
        return value

    def daily_summary_hour_minute(self):
        hour, minute = self.daily_summary_time.split(":")
        return int(hour), int(minute)


class Recipient(BaseModel):
    """A user who receives notifications."""

    user_id: str
    role: str
    email: str = ""
    name: str = ""
