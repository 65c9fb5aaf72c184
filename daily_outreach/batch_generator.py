# daily_outreach/batch_generator.py
from __future__ import annotations

import logging
import secrets
from collections import Counter
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from pydantic import BaseModel

from daily_outreach import conf
from daily_outreach.content import (
    EmailContentGenerator,
    EmailContentRequest,
    build_email_prompt,
    build_fallback_email,
    pick_tone,
)
from daily_outreach.db.batches import BatchStore
from daily_outreach.db.leads import LeadStore
from daily_outreach.db.models import Company, Contact, DailyBatch
from daily_outreach.db.preferences import PreferenceStore

logger = logging.getLogger(__name__)

# First match wins; checked against the lowercased company description
COMPANY_CATEGORIES = (
    ("Software Companies", ("software", "saas", "tech")),
    ("Marketing Agencies", ("marketing", "agency")),
    ("Service Providers", ("consulting", "services")),
    ("Retail Businesses", ("retail", "ecommerce")),
)
DEFAULT_CATEGORY = "Companies"


class CompanyTypeCount(BaseModel):
    type: str
    count: int


class GeneratedBatchItem(BaseModel):
    id: int
    contact_id: int
    contact_name: str
    contact_role: Optional[str] = None
    contact_email: Optional[str] = None
    company_id: int
    company_name: str
    email_subject: str
    email_body: str
    email_tone: str
    status: str
    sent_at: Optional[datetime] = None


class GeneratedBatch(BaseModel):
    """A freshly persisted batch, with the details the notification needs."""

    id: int
    user_id: int
    secure_token: str
    status: str
    batch_date: datetime
    expires_at: datetime
    items: List[GeneratedBatchItem]
    companies_by_type: List[CompanyTypeCount]


def contact_rank(contact: Contact) -> int:
    return (contact.confidence_score or 0) + (conf.ROLE_SCORE_BONUS if contact.role else 0)


def select_top_contacts(contacts: List[Contact], count: int) -> List[Contact]:
    """Highest confidence first, with a bonus for contacts that have a known role."""
    return sorted(contacts, key=contact_rank, reverse=True)[:count]


def categorize_company(company: Company) -> str:
    description = (company.description or "").lower()
    if description:
        for category, keywords in COMPANY_CATEGORIES:
            if any(keyword in description for keyword in keywords):
                return category
    return DEFAULT_CATEGORY


def categorize_companies(companies: Iterable[Company]) -> List[CompanyTypeCount]:
    counts = Counter(categorize_company(company) for company in companies)
    # Counter.most_common keeps first-seen order for ties
    return [CompanyTypeCount(type=category, count=count) for category, count in counts.most_common()]


class DailyBatchGenerator:
    """Selects never-contacted leads for a user and persists a batch of generated emails."""

    def __init__(
        self,
        leads: LeadStore,
        batches: BatchStore,
        preferences: PreferenceStore,
        content_generator: EmailContentGenerator,
        clock: Optional[Callable[[], datetime]] = None,
        batch_size: int = conf.BATCH_ITEM_COUNT,
    ):
        self.leads = leads
        self.batches = batches
        self.preferences = preferences
        self.content_generator = content_generator
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.batch_size = batch_size

    def generate_daily_batch(self, user_id: int) -> Optional[GeneratedBatch]:
        """
        Build today's batch for a user.

        Returns:
            The persisted batch, or None when fewer than batch_size eligible contacts
            exist (or anything goes wrong while generating).
        """
        try:
            candidates = self.find_candidates(user_id)
            if len(candidates) < self.batch_size:
                logger.info("Not enough contacts for user %s. Found %d", user_id, len(candidates))
                return None

            selected = select_top_contacts(candidates, self.batch_size)
            companies = self.leads.get_companies(contact.company_id for contact in selected)

            items = self._generate_items(user_id, selected, companies)
            return self._persist(user_id, items, selected, companies)
        except Exception as e:
            logger.error("Error generating daily batch for user %s: %s", user_id, e, exc_info=True)
            return None

    def find_candidates(self, user_id: int) -> List[Contact]:
        """Uncontacted contacts, topped up from never-used companies when short."""
        candidates = self.leads.uncontacted_contacts(user_id, limit=conf.CANDIDATE_POOL_LIMIT)
        if len(candidates) < self.batch_size:
            needed = self.batch_size - len(candidates)
            extra = self.leads.contacts_from_new_companies(
                user_id,
                limit=needed * 2,
                exclude_ids=[contact.id for contact in candidates],
            )
            candidates.extend(extra)
        return candidates

    def _generate_items(self, user_id: int, contacts: List[Contact], companies: Dict[int, Company]) -> List[dict]:
        prefs = self.preferences.get_preferences(user_id)
        product = self.leads.resolve_product_profile(user_id, prefs.active_product_id if prefs else None)
        sender = self.leads.resolve_sender_profile(user_id, prefs.active_sender_profile_id if prefs else None)
        customer = self.leads.resolve_customer_profile(user_id, prefs.active_customer_profile_id if prefs else None)

        prompt = build_email_prompt(product)
        tone = pick_tone(product)

        items = []
        for contact in contacts:
            company = companies[contact.company_id]
            request = EmailContentRequest(
                prompt=prompt,
                contact=contact,
                company=company,
                user_id=user_id,
                tone=tone,
                sender=sender,
                customer=customer,
            )
            try:
                email = self.content_generator.generate_email_content(request)
            except Exception as e:
                logger.warning("Email generation failed for contact %s, using template: %s", contact.id, e)
                email = build_fallback_email(contact, company)

            items.append(
                {
                    "contact_id": contact.id,
                    "company_id": company.id,
                    "email_subject": email.subject,
                    "email_body": email.content,
                    "email_tone": tone,
                }
            )
        return items

    def _persist(
        self, user_id: int, items: List[dict], contacts: List[Contact], companies: Dict[int, Company]
    ) -> GeneratedBatch:
        now = self.clock()
        batch = self.batches.create_batch(
            user_id=user_id,
            created_at=now,
            expires_at=now + conf.BATCH_TTL,
            secure_token=secrets.token_urlsafe(32),
            items=items,
        )
        # Preserve the ranking order of the selected contacts
        ordered_companies = list({contact.company_id: companies[contact.company_id] for contact in contacts}.values())
        return to_generated_batch(batch, categorize_companies(ordered_companies))


def to_generated_batch(batch: DailyBatch, companies_by_type: List[CompanyTypeCount]) -> GeneratedBatch:
    return GeneratedBatch(
        id=batch.id,
        user_id=batch.user_id,
        secure_token=batch.secure_token,
        status=batch.status,
        batch_date=batch.batch_date,
        expires_at=batch.expires_at,
        items=[
            GeneratedBatchItem(
                id=item.id,
                contact_id=item.contact_id,
                contact_name=item.contact.name,
                contact_role=item.contact.role,
                contact_email=item.contact.email,
                company_id=item.company_id,
                company_name=item.company.name,
                email_subject=item.email_subject,
                email_body=item.email_body,
                email_tone=item.email_tone,
                status=item.status,
                sent_at=item.sent_at,
            )
            for item in batch.items
        ],
        companies_by_type=companies_by_type,
    )
