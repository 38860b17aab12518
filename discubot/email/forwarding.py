"""
Forwarding of auxiliary Figma emails (verification, password reset)
to the owner of the input that received them.

Forwarding is best effort: failures are logged and reported in the
result, never raised to the webhook caller.
"""

import html
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .classifier import EmailMessageType
from .resend import ResendClient
from ..config.settings import EmailConfig
from ..data.base import InboxRepository
from ..exceptions import DiscubotError
from ..models.base import utc_now
from ..models.flow import FlowInput
from ..models.inbox import InboxMessage

logger = logging.getLogger(__name__)

FORWARD_SUBJECT_PREFIX = "[Discubot Inbox]"

_TYPE_LABELS = {
    EmailMessageType.ACCOUNT_VERIFICATION.value: "Account Verification",
    EmailMessageType.PASSWORD_RESET.value: "Password Reset",
    EmailMessageType.COMMENT.value: "Comment",
    EmailMessageType.INVITATION.value: "Invitation",
    EmailMessageType.NOTIFICATION.value: "Notification",
    EmailMessageType.OTHER.value: "Other",
}


@dataclass
class ForwardResult:
    forwarded: bool
    forwarded_to: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"forwarded": self.forwarded, "forwarded_to": self.forwarded_to, "error": self.error}


def format_message_type(message_type: str) -> str:
    return _TYPE_LABELS.get(message_type, message_type)


def build_forwarded_html(message: InboxMessage, base_url: str) -> str:
    """HTML body: metadata table, original HTML content and an inbox link."""
    original = message.html_body or '<p style="color: #9ca3af; font-style: italic;">No HTML content available</p>'
    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>Forwarded Email from Discubot</title></head>
<body style="margin: 0; padding: 20px; font-family: sans-serif; background-color: #f9fafb;">
  <div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; border: 1px solid #e5e7eb;">
    <div style="background-color: #4f46e5; padding: 24px; text-align: center;">
      <h1 style="margin: 0; color: #ffffff; font-size: 24px;">Forwarded Email from Discubot</h1>
    </div>
    <div style="padding: 24px; border-bottom: 1px solid #e5e7eb;">
      <table style="width: 100%;">
        <tr><td><strong>Type:</strong></td><td>{html.escape(format_message_type(message.message_type))}</td></tr>
        <tr><td><strong>From:</strong></td><td>{html.escape(message.from_address)}</td></tr>
        <tr><td><strong>Subject:</strong></td><td>{html.escape(message.subject)}</td></tr>
      </table>
    </div>
    <div style="padding: 24px;">
      <h2 style="margin: 0 0 16px 0; font-size: 16px;">Original Message</h2>
      <div>{original}</div>
    </div>
    <div style="padding: 24px; text-align: center; font-size: 12px;">
      <p>This email was automatically forwarded from your Discubot inbox.</p>
      <a href="{base_url}/dashboard/inbox">View in Discubot</a>
    </div>
  </div>
</body>
</html>"""


def build_forwarded_text(message: InboxMessage, base_url: str) -> str:
    return "\n".join([
        "Forwarded Email from Discubot",
        "=============================",
        "",
        f"Type: {format_message_type(message.message_type)}",
        f"From: {message.from_address}",
        f"Subject: {message.subject}",
        "",
        "---",
        "",
        message.text_body or "No text content available",
        "",
        "---",
        "",
        "This email was automatically forwarded from your Discubot inbox.",
        f"View your inbox: {base_url}/dashboard/inbox",
    ])


class EmailForwarder:
    """Sends inbox messages on to the input owner and records the forward."""

    def __init__(self, resend_client: ResendClient, inbox_repository: InboxRepository, email_config: EmailConfig):
        self.resend_client = resend_client
        self.inbox_repository = inbox_repository
        self.email_config = email_config

    async def forward_to_input_owner(self, message: InboxMessage, flow_input: Optional[FlowInput]) -> ForwardResult:
        """
        Forward an inbox message to the owner of the receiving input.

        Args:
            message: Stored inbox message
            flow_input: Input the email was addressed to

        Returns:
            ForwardResult; ``forwarded`` is False when forwarding is
            disabled, no owner is configured or sending failed
        """
        if flow_input is None:
            return ForwardResult(forwarded=False, error="Input not found")
        if not flow_input.enable_email_forwarding:
            return ForwardResult(forwarded=False, error="Email forwarding disabled for input")
        if not flow_input.owner_email:
            return ForwardResult(forwarded=False, error="No owner email configured for input")

        base_url = self.email_config.base_url.rstrip("/")
        try:
            await self.resend_client.send_email(
                from_address=self.email_config.from_address,
                to=flow_input.owner_email,
                subject=f"{FORWARD_SUBJECT_PREFIX} {message.subject}",
                html=build_forwarded_html(message, base_url),
                text=build_forwarded_text(message, base_url),
            )
            message.forwarded_to = flow_input.owner_email
            message.forwarded_at = utc_now()
            await self.inbox_repository.save_message(message)
        except DiscubotError as e:
            logger.error(f"Failed to forward inbox message {message.id}: {e.to_log_string()}")
            return ForwardResult(forwarded=False, error=e.message)

        logger.info(f"Forwarded {message.message_type} email {message.id} to {flow_input.owner_email}")
        return ForwardResult(forwarded=True, forwarded_to=flow_input.owner_email)
