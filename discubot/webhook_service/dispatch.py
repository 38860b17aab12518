"""
Running the processor from a webhook, inline or as a background task.
"""

import json
import logging
from datetime import datetime
from typing import Any, Dict, Optional, Union

from fastapi import BackgroundTasks

from ..exceptions import DiscubotError, PayloadValidationError
from ..models.discussion import ParsedDiscussion
from ..models.flow import FlowInput
from ..models.webhook import ProcessingResponse, TaskLink
from ..services.processor import DiscussionProcessor, ProcessingResult
from .context import AppContext

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Discussion queued for background processing"


def processing_response(result: ProcessingResult) -> ProcessingResponse:
    return ProcessingResponse(
        discussion_id=result.discussion_id,
        task_count=len(result.notion_tasks),
        tasks=[TaskLink(id=t.id, url=t.url) for t in result.notion_tasks],
        is_multi_task=result.is_multi_task,
        processing_time=result.processing_time,
        summary=result.ai_analysis.summary.summary,
        skipped=result.skipped,
    )


async def _process_in_background(
    processor: DiscussionProcessor,
    parsed: ParsedDiscussion,
    flow_input: Optional[FlowInput],
) -> None:
    try:
        result = await processor.process(parsed, flow_input=flow_input)
    except DiscubotError as e:
        # The response is already sent; the discussion record holds the failure.
        logger.error(f"Background processing of {parsed.source_thread_id} failed: {e.to_log_string()}")
        return
    logger.info(
        f"Background processing completed: discussion={result.discussion_id}, "
        f"tasks={len(result.notion_tasks)}, time={result.processing_time:.2f}s"
    )


async def process_or_queue(
    context: AppContext,
    background_tasks: BackgroundTasks,
    parsed: ParsedDiscussion,
    flow_input: Optional[FlowInput] = None,
) -> Union[ProcessingResponse, Dict[str, Any]]:
    """
    Process ``parsed`` now, or queue it when background processing is on.

    Raises:
        ProcessingError: Inline processing failed; the server maps it to
            503 (retryable) or 422
    """
    if context.config.webhook_config.background_processing:
        background_tasks.add_task(_process_in_background, context.processor, parsed, flow_input)
        logger.info(f"Queued {parsed.source_type.value} discussion {parsed.source_thread_id}")
        return {
            "success": True,
            "message": QUEUED_MESSAGE,
            "timestamp": datetime.utcnow().isoformat(),
        }

    result = await context.processor.process(parsed, flow_input=flow_input)
    return processing_response(result)


def parse_json_body(raw_body: bytes) -> Dict[str, Any]:
    """
    Decode a JSON object body.

    Raises:
        PayloadValidationError: Empty body, invalid JSON or not an object
    """
    if not raw_body:
        raise PayloadValidationError("Missing request body", user_message="Missing request body")
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise PayloadValidationError(f"Invalid JSON body: {e}", user_message="Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise PayloadValidationError("JSON body must be an object", user_message="Invalid JSON body")
    return payload
