"""
Resend inbound route.

Resend webhooks only carry metadata, so the email is fetched, classified
and either processed as a Figma comment or stored in the inbox.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, Response
from pydantic import ValidationError

from ...email.classifier import EmailMessageType, classify_figma_email, should_forward_email
from ...email.resend import transform_to_mailgun_format
from ...exceptions import (
    ConfigurationError, EmailProviderError, PayloadValidationError, SignatureVerificationError,
)
from ...models.flow import SourceType
from ...models.inbox import InboxMessage
from ...models.webhook import ResendWebhookPayload
from ...utils.rate_limit import RateLimitPresets, rate_limit
from ...utils.webhook_security import parse_event_time, verify_svix_signature
from ..context import AppContext, get_context
from ..dispatch import parse_json_body, process_or_queue

logger = logging.getLogger(__name__)

router = APIRouter()


def validate_resend_payload(payload: ResendWebhookPayload) -> None:
    errors = []
    if not payload.type:
        errors.append("Missing required field: type")
    elif payload.type != "email.received":
        errors.append(f"Invalid event type: {payload.type}. Expected: email.received")
    if not payload.data.email_id:
        errors.append("Missing required field: data.email_id")
    if errors:
        raise PayloadValidationError(
            "Invalid Resend webhook payload", errors=errors, user_message="Invalid Resend webhook payload"
        )


@router.post("/resend")
async def resend_webhook(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
):
    """Fetch, classify and route an email received through Resend."""
    rate_limit(request, response, RateLimitPresets.WEBHOOK, limiter=context.rate_limiter)

    raw_body = await request.body()

    signing_secret = context.config.secrets.resend_webhook_signing_secret
    if signing_secret:
        if not verify_svix_signature(
            raw_body,
            request.headers.get("svix-id"),
            request.headers.get("svix-timestamp"),
            request.headers.get("svix-signature"),
            signing_secret,
        ):
            raise SignatureVerificationError("Resend (Svix) signature mismatch")
    else:
        logger.warning("Resend signature verification skipped - RESEND_WEBHOOK_SIGNING_SECRET not configured")

    try:
        payload = ResendWebhookPayload.model_validate(parse_json_body(raw_body))
    except ValidationError as e:
        raise PayloadValidationError(
            f"Invalid Resend webhook payload: {e}", user_message="Invalid Resend webhook payload"
        ) from e
    validate_resend_payload(payload)

    if context.resend_client is None:
        raise ConfigurationError(
            "RESEND_API_TOKEN not configured",
            error_code="RESEND_NOT_CONFIGURED",
            user_message="RESEND_API_TOKEN not configured",
        )

    try:
        email = await context.resend_client.fetch_email(payload.data.email_id)
    except EmailProviderError as e:
        logger.error(f"Failed to fetch email {payload.data.email_id}: {e.to_log_string()}")
        raise HTTPException(
            status_code=503 if e.retryable else 422,
            detail={"error": e.error_code, "message": "Failed to fetch email from Resend API"},
        ) from e

    classification = classify_figma_email(email.from_address, email.subject, email.html or "", email.text or "")
    logger.info(
        f"Email {email.id} classified as {classification.message_type.value} "
        f"(confidence {classification.confidence})"
    )

    if classification.message_type != EmailMessageType.COMMENT:
        return await store_inbox_message(context, payload, email, classification.message_type)

    mailgun_payload = transform_to_mailgun_format(email)
    parsed = await context.adapter(SourceType.FIGMA).parse_incoming(mailgun_payload)
    logger.info(f"Parsed Figma email: team={parsed.team_id}, file={parsed.metadata.get('fileKey')}")
    return await process_or_queue(context, background_tasks, parsed)


async def store_inbox_message(context: AppContext, payload: ResendWebhookPayload, email, message_type: EmailMessageType):
    """Keep a non-comment email for the team and forward it when it needs a human."""
    recipient = email.to[0] if email.to else ""
    flow_input = await context.flows.find_input_by_email(recipient) if recipient else None
    if flow_input is None:
        logger.warning(f"No input found for inbox message to {recipient} ({message_type.value})")
        return {
            "success": True,
            "stored": False,
            "reason": "No matching input found",
            "message_type": message_type.value,
        }

    message = InboxMessage(
        input_id=flow_input.id,
        team_id=flow_input.team_id,
        message_type=message_type.value,
        from_address=email.from_address,
        to_address=recipient,
        subject=email.subject,
        html_body=email.html,
        text_body=email.text,
        received_at=parse_event_time(payload.created_at),
        provider_email_id=email.id,
    )
    await context.inbox.save_message(message)
    logger.info(f"Stored {message_type.value} email {message.id} for input {flow_input.id}")

    forwarded = False
    if should_forward_email(message_type) and context.forwarder is not None:
        result = await context.forwarder.forward_to_input_owner(message, flow_input)
        forwarded = result.forwarded
        if not forwarded:
            logger.info(f"Inbox message {message.id} not forwarded: {result.error}")

    return {
        "success": True,
        "stored": True,
        "inbox_message_id": message.id,
        "message_type": message_type.value,
        "forwarded": forwarded,
    }
