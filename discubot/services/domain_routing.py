"""
Routing of detected tasks to flow outputs by domain.

Each flow has exactly one default output; outputs with a domain filter
receive tasks whose domain they list, and everything else falls back to
the default.
"""

import logging
from typing import List, Optional

from ..adapters.base import ValidationResult
from ..exceptions import RoutingError
from ..models.flow import FlowOutput
from ..models.task import DetectedTask

logger = logging.getLogger(__name__)


def _default_output(outputs: List[FlowOutput]) -> Optional[FlowOutput]:
    defaults = [o for o in outputs if o.is_default]
    if len(defaults) > 1:
        logger.warning(
            f"Multiple default outputs found ({', '.join(o.name or o.id for o in defaults)}), "
            f"using the first"
        )
    return defaults[0] if defaults else None


def route_task_to_outputs(task: DetectedTask, outputs: List[FlowOutput]) -> List[FlowOutput]:
    """
    Decide which outputs receive a task.

    Args:
        task: Detected task; its ``domain`` drives routing
        outputs: The flow's active outputs

    Returns:
        Matching outputs, or ``[default]`` when none match

    Raises:
        RoutingError: No output is flagged default
    """
    default = _default_output(outputs)
    if default is None:
        raise RoutingError(
            "No default output configured for flow",
            user_message="Flow has no default output",
        )

    if not task.domain:
        return [default]

    matching = [o for o in outputs if o.domain_filter and task.domain in o.domain_filter]
    if not matching:
        logger.debug(f"No output matches domain '{task.domain}', routing to default")
        return [default]
    return matching


def validate_flow_outputs(outputs: List[FlowOutput]) -> ValidationResult:
    """Check the flow output invariant: at least one output, exactly one default."""
    errors, warnings = [], []
    if not outputs:
        errors.append("Flow must have at least one output")
        return ValidationResult.from_messages(errors, warnings)

    defaults = [o for o in outputs if o.is_default]
    if not defaults:
        errors.append("Flow must have exactly one default output")
    elif len(defaults) > 1:
        warnings.append(f"Flow has {len(defaults)} default outputs; only the first is used")
    return ValidationResult.from_messages(errors, warnings)
