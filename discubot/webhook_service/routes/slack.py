"""
Slack Events API route.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from ...exceptions import AdapterError, PayloadValidationError, SignatureVerificationError
from ...models.flow import SourceType
from ...utils.rate_limit import RateLimitPresets, rate_limit
from ...utils.webhook_security import verify_slack_signature
from ..context import AppContext, get_context
from ..dispatch import parse_json_body, process_or_queue

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/slack")
async def slack_webhook(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
):
    """Handle the URL challenge and ``app_mention`` events."""
    rate_limit(request, response, RateLimitPresets.WEBHOOK, limiter=context.rate_limiter)

    raw_body = await request.body()
    signing_secret = context.config.secrets.slack_signing_secret
    if signing_secret:
        if not verify_slack_signature(raw_body, request.headers, signing_secret):
            raise SignatureVerificationError("Slack signature mismatch")
    else:
        logger.warning("Slack signature verification skipped - SLACK_SIGNING_SECRET not configured")

    body = parse_json_body(raw_body)

    if body.get("type") == "url_verification":
        logger.info("Slack URL verification challenge received")
        return {"challenge": body.get("challenge")}

    if body.get("type") != "event_callback":
        logger.debug(f"Ignoring non-event Slack payload: {body.get('type')}")
        return {"success": True, "message": "Non-event payload ignored"}

    event = body.get("event")
    if not isinstance(event, dict):
        raise PayloadValidationError("Missing event in payload", user_message="Missing event in payload")

    if event.get("type") != "app_mention":
        logger.debug(f"Ignoring Slack event type {event.get('type')}")
        return {"success": True, "message": "Event type not supported", "event_type": event.get("type")}

    try:
        parsed = await context.adapter(SourceType.SLACK).parse_incoming(body)
    except AdapterError as e:
        raise PayloadValidationError(
            f"Failed to parse Slack event: {e.message}", user_message="Failed to parse event", cause=e,
        ) from e
    logger.info(f"Slack mention in {parsed.source_thread_id} for team {parsed.team_id}")

    return await process_or_queue(context, background_tasks, parsed)
