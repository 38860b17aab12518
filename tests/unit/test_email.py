"""
Tests for Figma email parsing, classification, the Resend client and forwarding.
"""

import pytest

from discubot.config.settings import EmailConfig
from discubot.email.classifier import EmailMessageType, classify_figma_email, should_forward_email
from discubot.email.forwarding import EmailForwarder
from discubot.email.parser import (
    extract_file_key_from_url,
    extract_text_from_html,
    find_comment_by_text,
    parse_email,
    text_similarity,
)
from discubot.email.resend import ResendClient, transform_to_mailgun_format
from discubot.exceptions import EmailProviderError
from discubot.models.flow import FlowInput, SourceType
from discubot.models.inbox import InboxMessage
from discubot.models.webhook import ResendEmail

from conftest import json_body

FIGMA_HTML = """
<html><body>
  <table><tr><td class="comment">@Figbot please make the header darker</td></tr></table>
  <a href="https://www.figma.com/file/AbC123xyz/Landing-Page?node-id=1">View in Figma</a>
  <img src="https://www.figma.com/preview.png?commentx=10&commenty=20">
</body></html>
"""


class TestParseEmail:
    """Tests for Figma notification parsing."""

    def test_plain_text_and_sender_key(self):
        parsed = parse_email({
            "from": "Ada via Figma <comments-KEY42@email.figma.com>",
            "subject": "Ada commented on Landing Page",
            "stripped-text": "Please make the header darker",
            "timestamp": "1700000000",
        })
        assert parsed.text == "Please make the header darker"
        assert parsed.file_key == "KEY42"
        assert parsed.email_type == "comment"
        assert parsed.timestamp.year == 2023

    def test_html_only_email(self):
        parsed = parse_email({"from": "notifications@figma.com", "subject": "New comment", "body-html": FIGMA_HTML})
        assert parsed.text.startswith("@Figbot please make the header darker")
        assert parsed.file_key == "AbC123xyz"
        assert parsed.file_url.startswith("https://www.figma.com/file/AbC123xyz")
        assert parsed.links[0].startswith("https://www.figma.com/preview.png")
        assert parsed.figma_link.startswith("https://www.figma.com/file/AbC123xyz")

    def test_file_key_from_url_variants(self):
        assert extract_file_key_from_url("https://www.figma.com/design/Xyz789/Name") == "Xyz789"
        assert extract_file_key_from_url("https://www.figma.com/board/Brd1/Jam") == "Brd1"
        assert extract_file_key_from_url("https://example.com/") is None

    def test_selector_fallback(self):
        html = '<html><body><p>Short</p><div class="comment-body">Rename the CTA to Start now</div></body></html>'
        assert extract_text_from_html(html) == "Rename the CTA to Start now"


class TestFuzzyMatch:
    """Tests for comment lookup by text."""

    def test_similarity(self):
        assert text_similarity("abc", "abc") == 1.0
        assert text_similarity("abcd", "abcdefgh") == 0.5

    def test_best_match_above_threshold(self):
        comments = [
            {"id": "1", "message": "Completely unrelated"},
            {"id": "2", "message": "Please make the  header darker"},
        ]
        match = find_comment_by_text("please make the header darker", comments)
        assert match["id"] == "2"

    def test_no_match_below_threshold(self):
        assert find_comment_by_text("something else", [{"id": "1", "message": "Make it blue"}]) is None


class TestClassifier:
    """Tests for email classification."""

    def test_comment(self):
        result = classify_figma_email("comments-KEY@email.figma.com", "Ada commented on Landing")
        assert result.message_type == EmailMessageType.COMMENT

    def test_comment_requires_comment_sender(self):
        result = classify_figma_email("someone@example.com", "Ada commented on Landing")
        assert result.message_type == EmailMessageType.OTHER

    def test_verification_wins_over_comment(self):
        result = classify_figma_email("comments-KEY@email.figma.com", "Verify your email", text_body="commented on")
        assert result.message_type == EmailMessageType.ACCOUNT_VERIFICATION

    def test_password_reset_invitation_and_notification(self):
        assert classify_figma_email("x@figma.com", "Reset your password").message_type == EmailMessageType.PASSWORD_RESET
        assert classify_figma_email("x@figma.com", "Ada invited you").message_type == EmailMessageType.INVITATION
        assert classify_figma_email("news@figma.com", "Figma news").message_type == EmailMessageType.NOTIFICATION

    def test_forwarding_policy(self):
        assert should_forward_email(EmailMessageType.ACCOUNT_VERIFICATION)
        assert should_forward_email(EmailMessageType.PASSWORD_RESET)
        assert not should_forward_email(EmailMessageType.INVITATION)


class TestResendClient:
    """Tests for fetching and reshaping Resend emails."""

    EMAIL = {
        "id": "em_1",
        "from": "comments-KEY@email.figma.com",
        "to": ["team-a@in.discubot.app"],
        "subject": "Ada commented on Landing",
        "html": "<p>hi</p>",
        "text": "hi",
        "created_at": "2023-11-14T22:13:20Z",
    }

    @pytest.mark.asyncio
    async def test_fetch_email(self, fake_api, http_client):
        fake_api.add("GET", "api.resend.com/emails/receiving/em_1", self.EMAIL)
        email = await ResendClient(http_client, "re_token").fetch_email("em_1")
        assert email.from_address == "comments-KEY@email.figma.com"
        request = fake_api.calls("GET", "api.resend.com/emails/receiving/em_1")[0]
        assert request.headers["Authorization"] == "Bearer re_token"

    @pytest.mark.asyncio
    async def test_fetch_errors(self, fake_api, http_client):
        fake_api.add("GET", "api.resend.com/emails/receiving/gone", (404, {"message": "Email not found"}))
        fake_api.add("GET", "api.resend.com/emails/receiving/busy", (503, {}))
        client = ResendClient(http_client, "re_token")

        with pytest.raises(EmailProviderError) as not_found:
            await client.fetch_email("gone")
        assert not not_found.value.retryable
        assert "Email not found" in not_found.value.message

        with pytest.raises(EmailProviderError) as unavailable:
            await client.fetch_email("busy")
        assert unavailable.value.retryable

    @pytest.mark.asyncio
    async def test_incomplete_response(self, fake_api, http_client):
        fake_api.add("GET", "api.resend.com/emails/receiving/em_2", {"id": "em_2", "from": "a@b.c"})
        with pytest.raises(EmailProviderError):
            await ResendClient(http_client, "re_token").fetch_email("em_2")

    def test_transform_to_mailgun_format(self):
        payload = transform_to_mailgun_format(ResendEmail.model_validate(self.EMAIL))
        assert payload["recipient"] == "team-a@in.discubot.app"
        assert payload["body-plain"] == "hi"
        assert payload["stripped-text"] == "hi"
        assert payload["timestamp"] == 1_700_000_000.0


class TestEmailForwarder:
    """Tests for forwarding inbox messages to input owners."""

    @pytest.mark.asyncio
    async def test_forwards_and_records(self, fake_api, http_client, inbox):
        fake_api.add("POST", "api.resend.com/emails", {"id": "sent_1"})
        forwarder = EmailForwarder(ResendClient(http_client, "re_token"), inbox, EmailConfig())
        flow_input = FlowInput(
            source_type=SourceType.FIGMA, enable_email_forwarding=True, owner_email="owner@example.com",
        )
        message = InboxMessage(message_type="password-reset", subject="Reset your password", from_address="x@figma.com")

        result = await forwarder.forward_to_input_owner(message, flow_input)

        assert result.forwarded
        sent = json_body(fake_api.calls("POST", "api.resend.com/emails")[0])
        assert sent["to"] == ["owner@example.com"]
        assert sent["subject"] == "[Discubot Inbox] Reset your password"
        stored = await inbox.get_message(message.id)
        assert stored.forwarded_to == "owner@example.com"

    @pytest.mark.asyncio
    async def test_disabled_forwarding(self, http_client, inbox):
        forwarder = EmailForwarder(ResendClient(http_client, "re_token"), inbox, EmailConfig())
        result = await forwarder.forward_to_input_owner(InboxMessage(), FlowInput(owner_email="owner@example.com"))
        assert not result.forwarded
        assert result.error == "Email forwarding disabled for input"

    @pytest.mark.asyncio
    async def test_send_failure_is_reported(self, fake_api, http_client, inbox):
        fake_api.add("POST", "api.resend.com/emails", (500, {"message": "boom"}))
        forwarder = EmailForwarder(ResendClient(http_client, "re_token"), inbox, EmailConfig())
        flow_input = FlowInput(enable_email_forwarding=True, owner_email="owner@example.com")
        result = await forwarder.forward_to_input_owner(InboxMessage(subject="s"), flow_input)
        assert not result.forwarded
        assert result.error
