"""
Mailgun inbound route: Figma comment notifications delivered by email.
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from ...exceptions import PayloadValidationError, SignatureVerificationError
from ...models.flow import SourceType
from ...utils.rate_limit import RateLimitPresets, rate_limit
from ...utils.webhook_security import verify_mailgun_signature
from ..context import AppContext, get_context
from ..dispatch import parse_json_body, process_or_queue

logger = logging.getLogger(__name__)

router = APIRouter()

BODY_FIELDS = ("body-plain", "body-html", "stripped-text")


async def read_mailgun_payload(request: Request) -> Dict[str, Any]:
    """Form-encoded (Mailgun's default) or JSON body as a flat dict."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith(("multipart/form-data", "application/x-www-form-urlencoded")):
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}
    return parse_json_body(await request.body())


def signature_fields(payload: Dict[str, Any]):
    """Mailgun nests the signature for JSON events and flattens it in forms."""
    nested = payload.get("signature")
    if isinstance(nested, dict):
        return nested.get("timestamp"), nested.get("token"), nested.get("signature")
    return payload.get("timestamp"), payload.get("token"), nested


def validate_mailgun_payload(payload: Dict[str, Any]) -> None:
    errors = []
    if not payload.get("recipient"):
        errors.append("Missing required field: recipient")
    if not any(payload.get(name) for name in BODY_FIELDS):
        errors.append("Missing email body (need body-plain, body-html, or stripped-text)")
    if errors:
        raise PayloadValidationError("Invalid Mailgun payload", errors=errors, user_message="Invalid Mailgun payload")


@router.post("/mailgun")
async def mailgun_webhook(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
):
    """Parse a forwarded Figma email and run it through the pipeline."""
    rate_limit(request, response, RateLimitPresets.WEBHOOK, limiter=context.rate_limiter)

    payload = await read_mailgun_payload(request)

    signing_key = context.config.secrets.mailgun_signing_key
    timestamp, token, signature = signature_fields(payload)
    if signing_key and signature:
        if not verify_mailgun_signature(timestamp, token, signature, signing_key):
            raise SignatureVerificationError("Mailgun signature mismatch")
    elif not signing_key:
        logger.warning("Mailgun signature verification skipped - MAILGUN_SIGNING_KEY not configured")

    logger.info(f"Mailgun email received for {payload.get('recipient')}")
    validate_mailgun_payload(payload)

    # AdapterError is non-retryable here and maps to 422
    parsed = await context.adapter(SourceType.FIGMA).parse_incoming(payload)
    logger.info(f"Parsed Figma email: team={parsed.team_id}, file={parsed.metadata.get('fileKey')}")

    return await process_or_queue(context, background_tasks, parsed)
