# daily_outreach/db/leads.py
import logging
from typing import Callable, Dict, Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from daily_outreach.db.models import (
    BatchItem,
    Company,
    Contact,
    CustomerProfile,
    DailyBatch,
    ProductProfile,
    SenderProfile,
    User,
)

logger = logging.getLogger(__name__)


def _has_email():
    return (Contact.email.isnot(None)) & (func.trim(Contact.email) != "")


def _by_confidence():
    return func.coalesce(Contact.confidence_score, 0).desc(), Contact.id.asc()


class LeadStore:
    """Read access to users, contacts, companies and profiles, plus outreach history."""

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def get_user(self, user_id: int) -> Optional[User]:
        session = self._session_factory()
        try:
            return session.get(User, user_id)
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Outreach history (all batches ever created for the user)
    # ------------------------------------------------------------------
    def used_contact_ids(self, user_id: int) -> Set[int]:
        session = self._session_factory()
        try:
            rows = (
                session.query(BatchItem.contact_id)
                .join(DailyBatch, BatchItem.batch_id == DailyBatch.id)
                .filter(DailyBatch.user_id == user_id)
                .distinct()
                .all()
            )
            return {row[0] for row in rows}
        finally:
            session.close()

    def used_company_ids(self, user_id: int) -> Set[int]:
        session = self._session_factory()
        try:
            rows = (
                session.query(BatchItem.company_id)
                .join(DailyBatch, BatchItem.batch_id == DailyBatch.id)
                .filter(DailyBatch.user_id == user_id)
                .distinct()
                .all()
            )
            return {row[0] for row in rows}
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Candidate selection
    # ------------------------------------------------------------------
    def uncontacted_contacts(self, user_id: int, limit: int) -> List[Contact]:
        """Emailable contacts never placed in any of the user's batches, best confidence first."""
        used_ids = self.used_contact_ids(user_id)
        session = self._session_factory()
        try:
            query = session.query(Contact).filter(Contact.user_id == user_id).filter(_has_email())
            if used_ids:
                query = query.filter(Contact.id.notin_(used_ids))
            return query.order_by(*_by_confidence()).limit(limit).all()
        finally:
            session.close()

    def count_uncontacted_contacts(self, user_id: int) -> int:
        used_ids = self.used_contact_ids(user_id)
        session = self._session_factory()
        try:
            query = session.query(func.count(Contact.id)).filter(Contact.user_id == user_id).filter(_has_email())
            if used_ids:
                query = query.filter(Contact.id.notin_(used_ids))
            return int(query.scalar() or 0)
        finally:
            session.close()

    def contacts_from_new_companies(
        self, user_id: int, limit: int, exclude_ids: Iterable[int] = ()
    ) -> List[Contact]:
        """Emailable contacts of companies that never had a contact in one of the user's batches."""
        used_company_ids = self.used_company_ids(user_id)
        excluded = set(exclude_ids)
        session = self._session_factory()
        try:
            query = session.query(Contact).filter(Contact.user_id == user_id).filter(_has_email())
            if used_company_ids:
                query = query.filter(Contact.company_id.notin_(used_company_ids))
            if excluded:
                query = query.filter(Contact.id.notin_(excluded))
            return query.order_by(*_by_confidence()).limit(limit).all()
        finally:
            session.close()

    def get_companies(self, company_ids: Iterable[int]) -> Dict[int, Company]:
        ids = set(company_ids)
        if not ids:
            return {}
        session = self._session_factory()
        try:
            return {company.id: company for company in session.query(Company).filter(Company.id.in_(ids)).all()}
        finally:
            session.close()

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def resolve_product_profile(self, user_id: int, active_product_id: Optional[int] = None) -> Optional[ProductProfile]:
        """The selected product profile, else the user's most recently created one."""
        session = self._session_factory()
        try:
            if active_product_id is not None:
                product = session.get(ProductProfile, active_product_id)
                if product is not None and product.user_id == user_id:
                    return product
                logger.warning(
                    "Active product %s not found for user %s, falling back to latest", active_product_id, user_id
                )
            return (
                session.query(ProductProfile)
                .filter(ProductProfile.user_id == user_id)
                .order_by(ProductProfile.created_at.desc(), ProductProfile.id.desc())
                .first()
            )
        finally:
            session.close()

    def resolve_sender_profile(self, user_id: int, active_sender_id: Optional[int] = None) -> Optional[SenderProfile]:
        """The selected sender profile, else the default one, else the latest."""
        session = self._session_factory()
        try:
            if active_sender_id is not None:
                sender = session.get(SenderProfile, active_sender_id)
                if sender is not None and sender.user_id == user_id:
                    return sender
            return (
                session.query(SenderProfile)
                .filter(SenderProfile.user_id == user_id)
                .order_by(SenderProfile.is_default.desc(), SenderProfile.created_at.desc(), SenderProfile.id.desc())
                .first()
            )
        finally:
            session.close()

    def resolve_customer_profile(
        self, user_id: int, active_customer_id: Optional[int] = None
    ) -> Optional[CustomerProfile]:
        if active_customer_id is None:
            return None
        session = self._session_factory()
        try:
            customer = session.get(CustomerProfile, active_customer_id)
            if customer is not None and customer.user_id == user_id:
                return customer
            return None
        finally:
            session.close()
