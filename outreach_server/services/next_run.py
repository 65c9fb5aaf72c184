# outreach_server/services/next_run.py
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Any, Iterable, Set
from zoneinfo import ZoneInfo

from croniter import croniter

from daily_outreach.conf import DEFAULT_SCHEDULE_DAYS, DEFAULT_SCHEDULE_TIME, DEFAULT_TIMEZONE

logger = logging.getLogger(__name__)

# Index matches datetime.weekday(); also valid cron day-of-week names
WEEKDAY_TOKENS = ("mon", "tue", "wed", "thu", "fri", "sat", "sun")


def normalize_days(days: Iterable[str]) -> Set[str]:
    """Map "Monday", "MON", "mon" ... to the three-letter tokens."""
    return {str(day).strip().lower()[:3] for day in days if str(day).strip()}


def parse_schedule_time(value: str) -> time:
    """Parse a local HH:MM string."""
    try:
        hour_str, minute_str = value.strip().split(":")[:2]
        return time(hour=int(hour_str), minute=int(minute_str))
    except (AttributeError, ValueError) as e:
        raise ValueError(f"schedule_time must be HH:MM, got: {value!r}") from e


def build_cron_expression(days: Iterable[str], run_time: time) -> str:
    """Cron expression firing at run_time on the given weekday tokens, in week order."""
    selected = set(days)
    day_field = ",".join(token for token in WEEKDAY_TOKENS if token in selected)
    return f"{run_time.minute} {run_time.hour} * * {day_field}"


def compute_next_run(preferences: Any, now: datetime) -> datetime:
    """
    Next UTC instant the user's daily job should fire.

    Reads schedule_days, schedule_time and timezone from preferences and walks a
    weekday cron expression from now, localised to the user's timezone, so the
    weekday and wall-clock time are the user's. The result is strictly after now.
    """
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    tz = ZoneInfo(getattr(preferences, "timezone", None) or DEFAULT_TIMEZONE)
    schedule_days = getattr(preferences, "schedule_days", None)
    days = normalize_days(DEFAULT_SCHEDULE_DAYS if schedule_days is None else schedule_days)
    run_time = parse_schedule_time(getattr(preferences, "schedule_time", None) or DEFAULT_SCHEDULE_TIME)

    known_days = days & set(WEEKDAY_TOKENS)
    if not known_days:
        fallback = now + timedelta(hours=24)
        logger.warning("No scheduled day found for days=%s, falling back to %s", sorted(days), fallback)
        return fallback

    cron = build_cron_expression(known_days, run_time)
    next_local = croniter(cron, now.astimezone(tz)).get_next(datetime)
    return next_local.astimezone(timezone.utc)
