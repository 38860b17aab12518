"""
Notion webhooks route for ``comment.created`` events.

A comment is only processed when it contains the input's trigger
keyword. Rejected requests get the same 401 whatever check failed.
"""

import logging
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response

from ...adapters.notion import (
    capture_notion_ids, check_for_trigger, get_notion_token, get_trigger_keyword, match_notion_input,
)
from ...exceptions import PayloadValidationError, SignatureVerificationError
from ...models.flow import Flow, FlowInput, SourceType
from ...utils.rate_limit import RateLimitPreset, rate_limit
from ...utils.webhook_security import validate_notion_timestamp, verify_notion_signature
from ..context import AppContext, get_context
from ..dispatch import parse_json_body, process_or_queue

logger = logging.getLogger(__name__)

router = APIRouter()

NOTION_WORKSPACE_LIMIT = RateLimitPreset(60, 60, "Rate limit exceeded")


async def _inputs_with_active_flow(context: AppContext) -> List[FlowInput]:
    inputs = await context.flows.get_inputs_by_source(SourceType.NOTION, active_only=True)
    usable = []
    for flow_input in inputs:
        flow = await context.flows.get_flow(flow_input.flow_id)
        if flow is not None and flow.active:
            usable.append(flow_input)
    return usable


@router.post("/notion-input")
async def notion_input_webhook(
    request: Request,
    response: Response,
    background_tasks: BackgroundTasks,
    context: AppContext = Depends(get_context),
):
    """Verify, match, trigger-check and process a Notion comment."""
    raw_body = await request.body()
    body = parse_json_body(raw_body)

    if body.get("verification_token") and (not body.get("type") or body.get("type") == "url_verification"):
        logger.info("Notion URL verification challenge received")
        return {"verification_token": body["verification_token"]}

    signing_secret = context.config.secrets.notion_webhook_secret
    if signing_secret:
        if not verify_notion_signature(raw_body, request.headers.get("x-notion-signature"), signing_secret):
            raise SignatureVerificationError("Notion signature missing or invalid")
    else:
        logger.warning("Notion signature verification skipped - NOTION_WEBHOOK_SECRET not configured")

    if not validate_notion_timestamp(body.get("timestamp")):
        raise SignatureVerificationError("Notion event timestamp outside tolerance window")

    workspace_id = body.get("workspace_id") or "unknown"
    rate_limit(
        request, response, NOTION_WORKSPACE_LIMIT,
        identifier=f"notion:{workspace_id}", endpoint="notion-input", limiter=context.rate_limiter,
    )

    event_type = body.get("type")
    if event_type != "comment.created":
        logger.debug(f"Ignoring Notion event {event_type}")
        return {
            "success": True,
            "message": f"Event type '{event_type}' ignored (only 'comment.created' is processed)",
        }

    entity = body.get("entity") or {}
    data = body.get("data") or {}
    comment_id = entity.get("id")
    parent_id = (data.get("parent") or {}).get("id") or data.get("page_id")
    if not comment_id:
        raise PayloadValidationError("Missing entity.id", user_message="Invalid payload structure - missing entity.id")
    if not parent_id:
        raise PayloadValidationError("Missing parent id", user_message="Missing parent ID")

    integration_id = body.get("integration_id")
    candidates = await _inputs_with_active_flow(context)
    flow_input = match_notion_input(candidates, workspace_id, integration_id)
    if flow_input is None:
        logger.warning(f"No active flow found for Notion workspace {workspace_id} ({len(candidates)} candidate(s))")
        return {"success": False, "message": f"No active flow configured for workspace: {workspace_id}"}

    if capture_notion_ids(flow_input, workspace_id, integration_id):
        await context.flows.save_input(flow_input)
        logger.info(f"Captured workspace/integration ids for Notion input {flow_input.id}")

    token = get_notion_token(flow_input)
    if not token:
        logger.warning(f"No API token configured for Notion input {flow_input.id}")
        return {"success": False, "message": "No API token configured"}

    adapter = context.adapter(SourceType.NOTION)
    comment = await adapter.fetch_comment(comment_id, token)
    if comment is None:
        return {"success": False, "message": "Failed to fetch comment content"}

    keyword = get_trigger_keyword(flow_input)
    if not check_for_trigger(comment.get("rich_text"), keyword):
        logger.info(f"Notion comment {comment_id} has no trigger keyword '{keyword}'")
        return {"success": True, "message": f"Comment does not contain trigger keyword '{keyword}'"}

    flow: Flow = await context.flows.get_flow(flow_input.flow_id)
    parsed = await adapter.parse_incoming(body, flow_input, comment=comment)
    parsed.team_id = flow.team_id or parsed.team_id
    parsed.metadata["notionWorkspaceId"] = workspace_id
    logger.info(f"Notion comment {comment_id} triggered processing of {parsed.source_thread_id}")

    return await process_or_queue(context, background_tasks, parsed, flow_input=flow_input)
