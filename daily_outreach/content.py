# daily_outreach/content.py
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from openai import OpenAI
from pydantic import BaseModel, Field, ValidationError

from daily_outreach import conf
from daily_outreach.db.models import Company, Contact, CustomerProfile, ProductProfile, SenderProfile

logger = logging.getLogger(__name__)

DEFAULT_OFFER_STRATEGY = "value_proposition"


class EmailGenerationError(Exception):
    """Raised when the content generator cannot produce a usable email."""


class EmailContent(BaseModel):
    """Generated email subject and body."""

    subject: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


@dataclass
class EmailContentRequest:
    prompt: str
    contact: Contact
    company: Company
    user_id: int
    tone: str
    offer_strategy: str = DEFAULT_OFFER_STRATEGY
    sender: Optional[SenderProfile] = None
    customer: Optional[CustomerProfile] = None


class EmailContentGenerator(ABC):
    """
    Produces one personalised outreach email per contact.

    Implementations may call remote services and are allowed to raise; callers
    fall back to a template per contact.
    """

    @abstractmethod
    def generate_email_content(self, request: EmailContentRequest) -> EmailContent:
        pass


def build_email_prompt(product: Optional[ProductProfile]) -> str:
    if product is not None and product.product_service:
        return f"Introduce {product.product_service} to this company and how it can help their business"
    return "Introduce our services and explore potential collaboration"


def pick_tone(product: Optional[ProductProfile]) -> str:
    goal = (product.primary_business_goal or "") if product is not None else ""
    return "professional" if "professional" in goal.lower() else "friendly"


def build_fallback_email(contact: Contact, company: Company) -> EmailContent:
    """Deterministic email used whenever the generator fails for a contact."""
    return EmailContent(
        subject=f"Quick question for {company.name}",
        content=(
            f"Hi {contact.name},\n\n"
            f"I noticed {company.name} and wanted to reach out about how we might be able "
            "to help with your business needs.\n\n"
            "Would you be open to a brief conversation?\n\n"
            "Best regards"
        ),
    )


class OpenAIEmailContentGenerator(EmailContentGenerator):
    """Email generator backed by the OpenAI chat completions API (JSON output)."""

    def __init__(self, client: Any = None, model: Optional[str] = None):
        if client is None:
            if not conf.OPENAI_API_KEY:
                raise EmailGenerationError("OPENAI_API_KEY not configured")
            client = OpenAI(api_key=conf.OPENAI_API_KEY, timeout=30)
        self.client = client
        self.model = model or conf.OPENAI_MODEL

    def _system_message(self) -> str:
        return (
            "You write short, personalised B2B cold emails. "
            'Return ONLY a JSON object: {"subject": "...", "content": "..."}. '
            "No markdown, no placeholders, under 150 words."
        )

    def _user_message(self, request: EmailContentRequest) -> str:
        lines = [
            f"Goal: {request.prompt}",
            f"Tone: {request.tone}",
            f"Offer strategy: {request.offer_strategy}",
            f"Recipient: {request.contact.name}" + (f", {request.contact.role}" if request.contact.role else ""),
            f"Company: {request.company.name}",
        ]
        if request.company.description:
            lines.append(f"Company description: {request.company.description}")
        if request.customer is not None:
            lines.append(f"Ideal customer: {request.customer.label}. {request.customer.description or ''}".strip())
        if request.sender is not None:
            signature = ", ".join(
                part for part in (request.sender.display_name, request.sender.title, request.sender.company_name) if part
            )
            lines.append(f"Sign as: {signature}")
        return "\n".join(lines)

    def generate_email_content(self, request: EmailContentRequest) -> EmailContent:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": self._system_message()},
                    {"role": "user", "content": self._user_message(request)},
                ],
                response_format={"type": "json_object"},
                temperature=0.7,
            )
        except Exception as e:
            raise EmailGenerationError(f"OpenAI request failed: {e}") from e

        raw = response.choices[0].message.content if response.choices else None
        if not raw:
            raise EmailGenerationError("OpenAI returned an empty response")

        try:
            return EmailContent(**json.loads(raw))
        except (json.JSONDecodeError, TypeError, ValidationError) as e:
            raise EmailGenerationError(f"Unparseable email content: {e}") from e


class TemplateEmailContentGenerator(EmailContentGenerator):
    """Offline generator; always returns the deterministic template."""

    def generate_email_content(self, request: EmailContentRequest) -> EmailContent:
        return build_fallback_email(request.contact, request.company)


def get_default_content_generator() -> EmailContentGenerator:
    if conf.OPENAI_API_KEY:
        return OpenAIEmailContentGenerator()
    logger.warning("OPENAI_API_KEY not set, daily batches will use the template email")
    return TemplateEmailContentGenerator()
