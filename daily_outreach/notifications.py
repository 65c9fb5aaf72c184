# daily_outreach/notifications.py
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from html import escape
from typing import Optional

import httpx
from pydantic import BaseModel

from daily_outreach import conf
from daily_outreach.batch_generator import GeneratedBatch
from daily_outreach.db.models import User

logger = logging.getLogger(__name__)

SENDGRID_SEND_URL = "https://api.sendgrid.com/v3/mail/send"

READY_SUBJECT = "Your 5 leads for today are ready"
REFILL_SUBJECT = "Time to refill your sales pipeline"

_STYLE = """
      body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Helvetica, Arial, sans-serif; }
      .container { max-width: 600px; margin: 0 auto; padding: 20px; }
      .header { color: #333; margin-bottom: 20px; }
      .button { display: inline-block; background: #0066FF; color: white !important; padding: 14px 28px;
                text-decoration: none; border-radius: 6px; margin: 24px 0; font-weight: 500; }
      .list { margin: 16px 0; padding-left: 20px; }
      .stats { background: #f5f5f5; padding: 16px; border-radius: 8px; margin: 20px 0; }
      .footer { color: #666; font-size: 14px; margin-top: 30px; }
"""


class NotificationContent(BaseModel):
    subject: str
    html: str
    text: str


def _page(body: str) -> str:
    return (
        "<!DOCTYPE html>\n<html>\n<head>\n  <meta charset=\"utf-8\">\n"
        "  <meta name=\"viewport\" content=\"width=device-width, initial-scale=1.0\">\n"
        f"  <style>{_STYLE}  </style>\n</head>\n<body>\n  <div class=\"container\">\n{body}\n  </div>\n</body>\n</html>\n"
    )


def batch_url(batch: GeneratedBatch, app_url: str) -> str:
    return f"{app_url.rstrip('/')}/outreach/daily/{batch.secure_token}"


def build_contacts_ready_email(batch: GeneratedBatch, app_url: str = conf.APP_URL) -> NotificationContent:
    secure_url = batch_url(batch, app_url)

    breakdown = "".join(f"<li>{entry.count} {escape(entry.type)}</li>" for entry in batch.companies_by_type)
    breakdown = breakdown or "<li>5 carefully selected prospects</li>"

    contact_rows = []
    contact_lines = []
    for item in batch.items:
        role_html = f"<br><small>{escape(item.contact_role)}</small>" if item.contact_role else ""
        contact_rows.append(
            f'<li><a href="{secure_url}" target="_blank"><strong>{escape(item.contact_name)}</strong>'
            f" @ {escape(item.company_name)}{role_html}</a></li>"
        )
        role_text = f" ({item.contact_role})" if item.contact_role else ""
        contact_lines.append(f"- {item.contact_name} @ {item.company_name}{role_text}")

    contacts_html = ""
    contacts_text = ""
    if contact_rows:
        contacts_html = (
            '<div class="stats"><h3>Your prospects for today:</h3>'
            f'<ul style="list-style: none; padding: 0;">{"".join(contact_rows)}</ul></div>'
        )
        contacts_text = "\nYour prospects for today:\n" + "\n".join(contact_lines) + "\n"

    html = _page(
        f"""    <h2 class="header">{READY_SUBJECT}</h2>
    <p>Hi there,</p>
    <p>Your personalized outreach emails are waiting:</p>
    <ul class="list">{breakdown}</ul>
    {contacts_html}
    <a href="{secure_url}" class="button">Review and Send Emails →</a>
    <p class="footer">
      <strong>Pro tip:</strong> Send these before noon for 23% higher response rates.<br><br>
      This link expires in 24 hours for security.
    </p>"""
    )

    text = f"""{READY_SUBJECT}

Hi there,

Your personalized outreach emails are waiting.
{contacts_text}
Review and send them here: {secure_url}

Pro tip: Send these before noon for 23% higher response rates.

This link expires in 24 hours for security."""

    return NotificationContent(subject=READY_SUBJECT, html=html, text=text)


def build_need_more_contacts_email(user: User, app_url: str = conf.APP_URL) -> NotificationContent:
    search_url = f"{app_url.rstrip('/')}/search"
    name = user.username or "there"

    html = _page(
        f"""    <h2 class="header">Time to find new prospects</h2>
    <p>Hi {escape(name)},</p>
    <p>You're running low on contacts to reach out to. Let's fix that!</p>
    <div class="stats">
      <strong>Quick tip:</strong><br>
      Search for 10-15 new companies to maintain a healthy pipeline.
      Each search typically yields 3-5 quality contacts per company.
    </div>
    <a href="{search_url}" class="button">Search for New Leads →</a>
    <p class="footer">
      <strong>Remember:</strong> Consistent outreach is the key to predictable sales.<br>
      Aim to add new prospects weekly to keep your pipeline full.
    </p>"""
    )

    text = f"""Time to find new prospects

Hi {name},

You're running low on contacts to reach out to. Let's fix that!

Search for new leads here: {search_url}

Quick tip: Search for 10-15 new companies to maintain a healthy pipeline.
Each search typically yields 3-5 quality contacts per company.

Remember: Consistent outreach is the key to predictable sales.
Aim to add new prospects weekly to keep your pipeline full."""

    return NotificationContent(subject=REFILL_SUBJECT, html=html, text=text)


class NotificationDispatcher(ABC):
    """Sends the daily "leads ready" / "need more contacts" email."""

    @abstractmethod
    def send_daily_nudge_email(self, user: User, batch: Optional[GeneratedBatch]) -> bool:
        """
        Send the nudge for a user.

        Args:
            user: Recipient
            batch: Today's batch, or None for the "need more contacts" email

        Returns:
            True if the provider accepted the message
        """
        pass


class SendGridNotificationDispatcher(NotificationDispatcher):
    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        from_name: Optional[str] = None,
        app_url: Optional[str] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.api_key = api_key if api_key is not None else conf.SENDGRID_API_KEY
        self.from_email = from_email or conf.SENDGRID_FROM_EMAIL
        self.from_name = from_name or conf.SENDGRID_FROM_NAME
        self.app_url = app_url or conf.APP_URL
        self.client = client or httpx.Client(timeout=15.0)

    def build_payload(self, user: User, content: NotificationContent) -> dict:
        return {
            "personalizations": [{"to": [{"email": user.email}]}],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": content.subject,
            "content": [
                {"type": "text/plain", "value": content.text},
                {"type": "text/html", "value": content.html},
            ],
            "tracking_settings": {
                "click_tracking": {"enable": True},
                "open_tracking": {"enable": True},
            },
        }

    def send_daily_nudge_email(self, user: User, batch: Optional[GeneratedBatch]) -> bool:
        if not self.api_key:
            logger.error("SendGrid API key not configured")
            return False

        content = (
            build_contacts_ready_email(batch, self.app_url)
            if batch is not None
            else build_need_more_contacts_email(user, self.app_url)
        )

        try:
            response = self.client.post(
                SENDGRID_SEND_URL,
                json=self.build_payload(user, content),
                headers={"Authorization": f"Bearer {self.api_key}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("SendGrid email error for user %s: %s", user.id, e)
            return False

        logger.info("Daily nudge email sent to user %s (%s)", user.id, content.subject)
        return True
