"""
Resend API client: fetching received emails and sending forwarded ones.

Resend webhooks carry metadata only, so the body is fetched here and then
reshaped into the Mailgun payload the Figma parser understands.
"""

import logging
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..config.constants import RESEND_API_BASE
from ..exceptions import EmailProviderError
from ..models.webhook import ResendEmail
from ..utils.webhook_security import parse_timestamp

logger = logging.getLogger(__name__)


class ResendClient:
    """Thin async client over the Resend REST API."""

    def __init__(self, http_client: httpx.AsyncClient, api_token: str, base_url: str = RESEND_API_BASE):
        self.http_client = http_client
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_token}",
            "Content-Type": "application/json",
        }

    async def fetch_email(self, email_id: str) -> ResendEmail:
        """Fetch a received email by id.

        Raises:
            EmailProviderError: on HTTP failures or a response missing
                id, from, to or subject
        """
        if not email_id or not email_id.strip():
            raise EmailProviderError("Email ID is required", source_type="figma")
        if not self.api_token:
            raise EmailProviderError("Resend API token is required", source_type="figma")

        url = f"{self.base_url}/emails/receiving/{email_id}"
        try:
            response = await self.http_client.get(url, headers=self._headers())
        except httpx.HTTPError as e:
            raise EmailProviderError(
                f"Failed to fetch email from Resend: {e}", source_type="figma", retryable=True, cause=e
            ) from e

        if response.status_code >= 400:
            message = f"Resend API error: {response.status_code}"
            try:
                detail = response.json().get("message")
                if detail:
                    message = f"Resend API error: {detail}"
            except ValueError:
                pass
            raise EmailProviderError(
                message,
                source_type="figma",
                status_code=response.status_code,
                retryable=response.status_code >= 500 or response.status_code == 429,
            )

        data = response.json()
        if not (data.get("id") and data.get("from") and data.get("to") and data.get("subject")):
            raise EmailProviderError(
                "Invalid email response from Resend API - missing required fields", source_type="figma"
            )
        try:
            return ResendEmail.model_validate(data)
        except ValidationError as e:
            raise EmailProviderError(f"Invalid email response from Resend API: {e}", source_type="figma") from e

    async def send_email(self, from_address: str, to: str, subject: str, html: str, text: str) -> Optional[str]:
        """Send an email and return the provider id."""
        payload = {"from": from_address, "to": [to], "subject": subject, "html": html, "text": text}
        try:
            response = await self.http_client.post(f"{self.base_url}/emails", headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise EmailProviderError(f"Failed to send email: {e}", retryable=True, cause=e) from e
        if response.status_code >= 400:
            raise EmailProviderError(
                f"Resend send failed: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.json().get("id")


def transform_to_mailgun_format(email: ResendEmail) -> Dict[str, Any]:
    """Reshape a Resend email into the Mailgun inbound payload."""
    timestamp = parse_timestamp(email.created_at) if email.created_at else None
    return {
        "subject": email.subject,
        "from": email.from_address,
        "recipient": email.to[0] if email.to else "",
        "body-html": email.html or "",
        "body-plain": email.text or "",
        "stripped-text": email.text or "",
        "timestamp": timestamp,
    }
