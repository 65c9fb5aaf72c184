# tests/daily_outreach/test_content.py
"""Test email content generation."""
import json
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from daily_outreach.content import (
    EmailContentRequest,
    EmailGenerationError,
    OpenAIEmailContentGenerator,
    TemplateEmailContentGenerator,
    build_email_prompt,
    get_default_content_generator,
    pick_tone,
)


def _request(**kwargs):
    values = {
        "prompt": "Introduce widgets",
        "contact": SimpleNamespace(id=1, name="Ada Lovelace", role="CTO"),
        "company": SimpleNamespace(id=2, name="Analytical Engines", description="SaaS for engines"),
        "user_id": 1,
        "tone": "friendly",
    }
    values.update(kwargs)
    return EmailContentRequest(**values)


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestPromptHelpers:
    """Test build_email_prompt() and pick_tone()."""

    def test_prompt_uses_product_service(self):
        """The product's service is introduced."""
        product = SimpleNamespace(product_service="payroll automation", primary_business_goal=None)
        assert "payroll automation" in build_email_prompt(product)

    def test_prompt_without_product(self):
        """A generic prompt is used without a product."""
        assert build_email_prompt(None) == "Introduce our services and explore potential collaboration"

    def test_tone(self):
        """'professional' in the goal selects the professional tone."""
        assert pick_tone(SimpleNamespace(primary_business_goal="Be Professional")) == "professional"
        assert pick_tone(SimpleNamespace(primary_business_goal="Grow fast")) == "friendly"
        assert pick_tone(None) == "friendly"


class TestOpenAIEmailContentGenerator:
    """Test OpenAIEmailContentGenerator with a mocked client."""

    def test_parses_json_response(self):
        """The JSON object becomes EmailContent."""
        client = MagicMock()
        client.chat.completions.create.return_value = _completion(
            json.dumps({"subject": "Engines, faster", "content": "Hi Ada, ..."})
        )
        generator = OpenAIEmailContentGenerator(client=client, model="gpt-test")

        email = generator.generate_email_content(_request())

        assert email.subject == "Engines, faster"
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        user_message = kwargs["messages"][1]["content"]
        assert "Ada Lovelace, CTO" in user_message
        assert "Analytical Engines" in user_message

    def test_sender_signature_in_prompt(self):
        """Sender details are passed to the model."""
        client = MagicMock()
        client.chat.completions.create.return_value = _completion('{"subject": "S", "content": "C"}')
        sender = SimpleNamespace(display_name="Sam", title="Founder", company_name="Widgets Inc")

        OpenAIEmailContentGenerator(client=client).generate_email_content(_request(sender=sender))

        user_message = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
        assert "Sign as: Sam, Founder, Widgets Inc" in user_message

    @pytest.mark.parametrize("content", [None, "", "not json", '{"subject": ""}'])
    def test_bad_response_raises(self, content):
        """Empty or malformed responses raise EmailGenerationError."""
        client = MagicMock()
        client.chat.completions.create.return_value = _completion(content)

        with pytest.raises(EmailGenerationError):
            OpenAIEmailContentGenerator(client=client).generate_email_content(_request())

    def test_api_error_raises(self):
        """Client exceptions are wrapped."""
        client = MagicMock()
        client.chat.completions.create.side_effect = TimeoutError("slow")

        with pytest.raises(EmailGenerationError, match="OpenAI request failed"):
            OpenAIEmailContentGenerator(client=client).generate_email_content(_request())

    @patch("daily_outreach.content.conf.OPENAI_API_KEY", None)
    def test_requires_api_key_without_client(self):
        """No client and no key → EmailGenerationError."""
        with pytest.raises(EmailGenerationError):
            OpenAIEmailContentGenerator()


class TestDefaults:
    """Test get_default_content_generator() and the template generator."""

    @patch("daily_outreach.content.conf.OPENAI_API_KEY", None)
    def test_template_without_key(self):
        """Without an API key the template generator is used."""
        assert isinstance(get_default_content_generator(), TemplateEmailContentGenerator)

    def test_template_email(self):
        """The template names the company and the contact."""
        email = TemplateEmailContentGenerator().generate_email_content(_request())
        assert email.subject == "Quick question for Analytical Engines"
        assert email.content.startswith("Hi Ada Lovelace,")
