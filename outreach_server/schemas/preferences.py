# outreach_server/schemas/preferences.py
from datetime import date, datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from daily_outreach.conf import DEFAULT_SCHEDULE_DAYS, DEFAULT_SCHEDULE_TIME, DEFAULT_TIMEZONE
from outreach_server.services.next_run import WEEKDAY_TOKENS, normalize_days, parse_schedule_time


class OutreachPreferencesRequest(BaseModel):
    """
    Create or update a user's outreach preferences.

    Fields left out of the request body keep their stored values.
    """

    enabled: bool = Field(True, description="Whether the daily job runs for this user")
    schedule_days: List[str] = Field(
        default_factory=lambda: list(DEFAULT_SCHEDULE_DAYS),
        description="Local weekdays to run on (e.g. ['mon', 'wed', 'fri'])",
    )
    schedule_time: str = Field(DEFAULT_SCHEDULE_TIME, description="Local time of day, HH:MM")
    timezone: str = Field(DEFAULT_TIMEZONE, description="IANA timezone id (e.g. 'America/New_York')")
    vacation_mode: bool = False
    vacation_start_date: Optional[date] = None
    vacation_end_date: Optional[date] = None
    active_product_id: Optional[int] = None
    active_sender_profile_id: Optional[int] = None
    active_customer_profile_id: Optional[int] = None

    @field_validator("schedule_days")
    @classmethod
    def validate_days(cls, value: List[str]) -> List[str]:
        days = normalize_days(value)
        if not days:
            raise ValueError("schedule_days must not be empty")
        unknown = days - set(WEEKDAY_TOKENS)
        if unknown:
            raise ValueError(f"Unknown weekday(s): {', '.join(sorted(unknown))}")
        return [token for token in WEEKDAY_TOKENS if token in days]

    @field_validator("schedule_time")
    @classmethod
    def validate_time(cls, value: str) -> str:
        return parse_schedule_time(value).strftime("%H:%M")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {value}") from e
        return value

    @model_validator(mode="after")
    def validate_vacation_range(self) -> "OutreachPreferencesRequest":
        start, end = self.vacation_start_date, self.vacation_end_date
        if start and end and end < start:
            raise ValueError("vacation_end_date must not be before vacation_start_date")
        return self


class OutreachPreferencesResponse(BaseModel):
    """Stored outreach preferences (defaults when the user never saved any)."""

    user_id: int
    enabled: bool
    schedule_days: List[str]
    schedule_time: str
    timezone: str
    vacation_mode: bool = False
    vacation_start_date: Optional[date] = None
    vacation_end_date: Optional[date] = None
    active_product_id: Optional[int] = None
    active_sender_profile_id: Optional[int] = None
    active_customer_profile_id: Optional[int] = None
    last_nudge_sent: Optional[datetime] = None
