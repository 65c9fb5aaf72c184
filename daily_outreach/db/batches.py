# daily_outreach/db/batches.py
import json
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session, selectinload

from daily_outreach.db.models import BatchItem, DailyBatch

logger = logging.getLogger(__name__)

_WITH_ITEMS = (
    selectinload(DailyBatch.items).selectinload(BatchItem.contact),
    selectinload(DailyBatch.items).selectinload(BatchItem.company),
)


class BatchStore:
    """Persistence for daily batches and their items."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def create_batch(
        self,
        user_id: int,
        created_at: datetime,
        expires_at: datetime,
        secure_token: str,
        items: List[Dict[str, Any]],
    ) -> DailyBatch:
        """Insert a batch and all of its items in one transaction."""
        session = self._session_factory()
        try:
            batch = DailyBatch(
                user_id=user_id,
                batch_date=created_at,
                secure_token=secure_token,
                status="pending",
                created_at=created_at,
                expires_at=expires_at,
            )
            session.add(batch)
            session.flush()

            for item in items:
                session.add(BatchItem(batch_id=batch.id, status="pending", **item))

            session.commit()
            logger.info("Created batch %s for user %s with %d items", batch.id, user_id, len(items))
            return self._load(session, batch.id)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def get_batch_by_token(self, secure_token: str) -> Optional[DailyBatch]:
        session = self._session_factory()
        try:
            return (
                session.query(DailyBatch)
                .options(*_WITH_ITEMS)
                .filter(DailyBatch.secure_token == secure_token)
                .one_or_none()
            )
        finally:
            session.close()

    def list_batches(self, user_id: int) -> List[DailyBatch]:
        session = self._session_factory()
        try:
            return (
                session.query(DailyBatch)
                .options(*_WITH_ITEMS)
                .filter(DailyBatch.user_id == user_id)
                .order_by(DailyBatch.id.asc())
                .all()
            )
        finally:
            session.close()

    def mark_expired(self, batch_id: int) -> None:
        session = self._session_factory()
        try:
            batch = session.get(DailyBatch, batch_id)
            if batch and batch.status != "expired":
                batch.status = "expired"
                session.commit()
                logger.info("Batch %s expired", batch_id)
        finally:
            session.close()

    def update_item_content(self, batch_id: int, item_id: int, subject: str, body: str) -> Optional[BatchItem]:
        session = self._session_factory()
        try:
            item = self._get_item(session, batch_id, item_id)
            if item is None:
                return None
            item.email_subject = subject
            item.email_body = body
            item.edited_content = json.dumps({"subject": subject, "body": body})
            item.status = "edited"
            session.commit()
            return item
        finally:
            session.close()

    def mark_item_sent(self, batch_id: int, item_id: int, sent_at: datetime) -> Optional[BatchItem]:
        """Mark an item sent and roll the batch status forward (partial → complete)."""
        session = self._session_factory()
        try:
            item = self._get_item(session, batch_id, item_id)
            if item is None:
                return None
            item.status = "sent"
            item.sent_at = sent_at

            batch = session.get(DailyBatch, batch_id)
            pending = (
                session.query(BatchItem)
                .filter(BatchItem.batch_id == batch_id, BatchItem.status == "pending", BatchItem.id != item_id)
                .count()
            )
            if pending == 0:
                batch.status = "complete"
            elif batch.status == "pending":
                batch.status = "partial"
            session.commit()
            return item
        finally:
            session.close()

    def skip_item(self, batch_id: int, item_id: int) -> Optional[BatchItem]:
        session = self._session_factory()
        try:
            item = self._get_item(session, batch_id, item_id)
            if item is None:
                return None
            item.status = "skipped"
            session.commit()
            return item
        finally:
            session.close()

    @staticmethod
    def _get_item(session: Session, batch_id: int, item_id: int) -> Optional[BatchItem]:
        return (
            session.query(BatchItem)
            .filter(BatchItem.id == item_id, BatchItem.batch_id == batch_id)
            .one_or_none()
        )

    @staticmethod
    def _load(session: Session, batch_id: int) -> DailyBatch:
        return session.query(DailyBatch).options(*_WITH_ITEMS).filter(DailyBatch.id == batch_id).one()
