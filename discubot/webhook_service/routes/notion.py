"""
Notion completion callback: tells the source thread a task page is Done.
"""

import logging

from fastapi import APIRouter, Depends, Request, Response

from ...utils.rate_limit import RateLimitPresets, rate_limit
from ..context import AppContext, get_context
from ..dispatch import parse_json_body

logger = logging.getLogger(__name__)

router = APIRouter()

DONE_STATUS = "done"


@router.post("/notion")
async def notion_completion_webhook(
    request: Request,
    response: Response,
    context: AppContext = Depends(get_context),
):
    rate_limit(request, response, RateLimitPresets.WEBHOOK, limiter=context.rate_limiter)
    body = parse_json_body(await request.body())

    data = body.get("data")
    if not isinstance(data, dict):
        return {"success": True, "message": "Payload missing data - ignored"}

    if body.get("type") != "page" and data.get("object") != "page":
        return {"success": True, "message": "Non-page event ignored"}

    page_id = data.get("id") or (body.get("event") or {}).get("id")
    if not page_id:
        logger.warning("No page id in Notion completion payload")
        return {"success": False, "error": "Missing page ID"}

    status = (((data.get("properties") or {}).get("Status") or {}).get("status") or {}).get("name")
    if status and status.lower() != DONE_STATUS:
        return {"success": True, "message": f'Status "{status}" is not Done - ignored'}

    logger.info(f"Notion page {page_id} marked done")
    return await context.processor.notify_task_completed(page_id)
