"""
Connectivity checks for configured outputs and inputs.

Used before and after provisioning a flow to confirm that stored
credentials still reach Notion and the source platform.
"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException, Path, Request, Response

from ...exceptions import DiscubotError
from ...models.flow import OutputType
from ...services.notion_sink import config_from_output
from ...utils.rate_limit import RateLimitPresets, rate_limit
from ..context import AppContext, get_context, require_api_key

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/flows/{flow_id}/test-connection")
async def check_flow_outputs(
    request: Request,
    response: Response,
    flow_id: str = Path(..., description="Flow ID"),
    api_key: str = Depends(require_api_key),
    context: AppContext = Depends(get_context),
):
    """Check every Notion output of a flow and suggest a field mapping for each."""
    rate_limit(request, response, RateLimitPresets.WRITE, limiter=context.rate_limiter)
    started = time.monotonic()

    flow = await context.flows.get_flow(flow_id)
    if flow is None:
        raise HTTPException(status_code=404, detail={"error": "FLOW_NOT_FOUND", "message": f"Flow {flow_id} not found"})

    results = []
    for output in await context.flows.get_outputs(flow_id, active_only=False):
        entry = {"output_id": output.id, "name": output.name, "is_default": output.is_default}
        if output.output_type != OutputType.NOTION:
            entry.update(connected=False, error=f"Unsupported output type {output.output_type.value}")
        else:
            try:
                config = config_from_output(output)
            except DiscubotError as e:
                entry.update(connected=False, error=e.message)
            else:
                entry.update(await context.processor.sink.test_connection(config.notion_token, config.database_id))
        if not entry["connected"]:
            logger.warning(f"Output {output.id} of flow {flow_id} failed its connection test: {entry.get('error')}")
        results.append(entry)

    return {
        "success": bool(results) and all(r["connected"] for r in results),
        "flow_id": flow_id,
        "outputs": results,
        "test_time": round(time.monotonic() - started, 3),
    }


@router.post("/inputs/{input_id}/test-connection")
async def check_input_connection(
    request: Request,
    response: Response,
    input_id: str = Path(..., description="Input ID"),
    api_key: str = Depends(require_api_key),
    context: AppContext = Depends(get_context),
):
    """Check that an input's credentials work against its source platform."""
    rate_limit(request, response, RateLimitPresets.WRITE, limiter=context.rate_limiter)

    flow_input = await context.flows.get_input(input_id)
    if flow_input is None:
        raise HTTPException(
            status_code=404, detail={"error": "INPUT_NOT_FOUND", "message": f"Input {input_id} not found"},
        )

    source_type = flow_input.source_type
    try:
        connected = await context.adapter(source_type).test_connection(flow_input)
        error = None if connected else f"Connection test returned false - check the {source_type.value} token"
    except DiscubotError as e:
        logger.error(f"Connection test for input {input_id} failed: {e.to_log_string()}")
        connected, error = False, e.message

    return {
        "success": connected,
        "input_id": input_id,
        "source_type": source_type.value,
        "connected": connected,
        "error": error,
    }
