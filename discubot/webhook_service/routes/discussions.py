"""
Discussion management routes.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response

from ...exceptions import ProcessingError
from ...utils.rate_limit import RateLimitPresets, rate_limit
from ..context import AppContext, get_context, require_api_key
from ..dispatch import processing_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/discussions/{discussion_id}/retry",
    responses={
        401: {"description": "Missing or invalid API key"},
        404: {"description": "Discussion not found"},
        422: {"description": "Discussion did not fail or failed permanently"},
        429: {"description": "Rate limit exceeded"},
        503: {"description": "Retry failed with a transient error"},
    },
)
async def retry_discussion(
    request: Request,
    response: Response,
    discussion_id: str = Path(..., description="Discussion ID"),
    api_key: str = Depends(require_api_key),
    context: AppContext = Depends(get_context),
):
    """Reprocess a failed discussion."""
    rate_limit(request, response, RateLimitPresets.WRITE, limiter=context.rate_limiter)
    try:
        result = await context.processor.retry_discussion(discussion_id)
    except ProcessingError as e:
        if e.error_code == "DISCUSSION_NOT_FOUND":
            raise HTTPException(status_code=404, detail={"error": e.error_code, "message": e.message}) from e
        raise

    logger.info(f"Retry of discussion {discussion_id} succeeded as {result.discussion_id}")
    return processing_response(result)
