# outreach_server/routers/preferences.py
import logging
from datetime import date, datetime
from typing import List, Optional, cast

from fastapi import APIRouter, Depends, HTTPException, status

from daily_outreach.conf import DEFAULT_SCHEDULE_DAYS, DEFAULT_SCHEDULE_TIME, DEFAULT_TIMEZONE
from daily_outreach.db.models import OutreachPreferences
from daily_outreach.db.preferences import PreferenceStore
from outreach_server.auth import verify_api_key
from outreach_server.dependencies import get_preference_store
from outreach_server.schemas.preferences import OutreachPreferencesRequest, OutreachPreferencesResponse
from outreach_server.services.scheduler import OutreachScheduler, get_scheduler

logger = logging.getLogger(__name__)

router = APIRouter()


def _preferences_to_response(prefs: OutreachPreferences) -> OutreachPreferencesResponse:
    """Convert OutreachPreferences model to OutreachPreferencesResponse schema."""
    return OutreachPreferencesResponse(
        user_id=cast(int, prefs.user_id),
        enabled=cast(bool, prefs.enabled),
        schedule_days=cast(List[str], prefs.schedule_days),
        schedule_time=cast(str, prefs.schedule_time),
        timezone=cast(str, prefs.timezone),
        vacation_mode=cast(bool, prefs.vacation_mode),
        vacation_start_date=cast(Optional[date], prefs.vacation_start_date),
        vacation_end_date=cast(Optional[date], prefs.vacation_end_date),
        active_product_id=cast(Optional[int], prefs.active_product_id),
        active_sender_profile_id=cast(Optional[int], prefs.active_sender_profile_id),
        active_customer_profile_id=cast(Optional[int], prefs.active_customer_profile_id),
        last_nudge_sent=cast(Optional[datetime], prefs.last_nudge_sent),
    )


@router.get("/users/{user_id}/outreach/preferences", response_model=OutreachPreferencesResponse)
def get_preferences_endpoint(
    user_id: int,
    store: PreferenceStore = Depends(get_preference_store),
    api_key: str = Depends(verify_api_key),
):
    """Get a user's outreach preferences."""
    prefs = store.get_preferences(user_id)
    if prefs is None:
        return OutreachPreferencesResponse(
            user_id=user_id,
            enabled=False,
            schedule_days=list(DEFAULT_SCHEDULE_DAYS),
            schedule_time=DEFAULT_SCHEDULE_TIME,
            timezone=DEFAULT_TIMEZONE,
        )
    return _preferences_to_response(prefs)


@router.put("/users/{user_id}/outreach/preferences", response_model=OutreachPreferencesResponse)
def update_preferences_endpoint(
    user_id: int,
    request: OutreachPreferencesRequest,
    store: PreferenceStore = Depends(get_preference_store),
    scheduler: OutreachScheduler = Depends(get_scheduler),
    api_key: str = Depends(verify_api_key),
):
    """Save preferences and resynchronise the user's scheduler job."""
    try:
        prefs = store.upsert_preferences(user_id, request.model_dump(exclude_unset=True))
    except Exception as e:
        logger.error("Error saving preferences for user %s: %s", user_id, e, exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=f"Internal server error: {str(e)}"
        )

    if prefs.enabled:
        scheduler.update_user_preferences(user_id, prefs)
    else:
        scheduler.disable_user_outreach(user_id)

    return _preferences_to_response(prefs)
