# daily_outreach/db/preferences.py
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from daily_outreach.db.models import OutreachPreferences

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = (
    "enabled",
    "schedule_days",
    "schedule_time",
    "timezone",
    "vacation_mode",
    "vacation_start_date",
    "vacation_end_date",
    "active_product_id",
    "active_sender_profile_id",
    "active_customer_profile_id",
)


class PreferenceStore:
    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_preferences(self, user_id: int) -> Optional[OutreachPreferences]:
        session = self._session_factory()
        try:
            return session.get(OutreachPreferences, user_id)
        finally:
            session.close()

    def list_enabled(self) -> List[OutreachPreferences]:
        session = self._session_factory()
        try:
            return (
                session.query(OutreachPreferences)
                .filter(OutreachPreferences.enabled == True)  # noqa: E712
                .order_by(OutreachPreferences.user_id.asc())
                .all()
            )
        finally:
            session.close()

    def upsert_preferences(self, user_id: int, payload: Dict[str, Any]) -> OutreachPreferences:
        """
        Create or update a user's preferences. Only keys in EDITABLE_FIELDS are applied;
        missing keys keep their stored (or default) values.
        """
        session = self._session_factory()
        try:
            row = session.get(OutreachPreferences, user_id)
            if row is None:
                row = OutreachPreferences(user_id=user_id)
                session.add(row)

            for key in EDITABLE_FIELDS:
                if key in payload:
                    setattr(row, key, payload[key])

            session.commit()
            session.refresh(row)
            logger.info("Outreach preferences saved → user %s (enabled=%s)", user_id, row.enabled)
            return row
        finally:
            session.close()

    def record_nudge_sent(self, user_id: int, sent_at: datetime) -> None:
        session = self._session_factory()
        try:
            row = session.get(OutreachPreferences, user_id)
            if row is None:
                return
            row.last_nudge_sent = sent_at
            session.commit()
        finally:
            session.close()
