"""
Discussion processing errors.
"""

from typing import Any, Dict, List, Optional

from .base import DiscubotError


class ProcessingError(DiscubotError):
    """A pipeline stage failed.

    ``stage`` names the processor stage (validation, deduplication,
    flow_loading, thread_building, ai_analysis, delivery, ...).
    """

    default_code = "PROCESSING_ERROR"

    def __init__(self, message: str, stage: str = "unknown", retryable: bool = False, **kwargs):
        super().__init__(message, retryable=retryable, **kwargs)
        self.stage = stage
        self.context.setdefault("stage", stage)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["stage"] = self.stage
        return data


class DeliveryError(ProcessingError):
    """Task delivery aborted after a sink failure.

    ``delivered`` lists the task results created before the failure so
    callers can reconcile partial state.
    """

    default_code = "DELIVERY_FAILED"

    def __init__(self, message: str, delivered: Optional[List[Any]] = None, **kwargs):
        kwargs.setdefault("stage", "delivery")
        super().__init__(message, **kwargs)
        self.delivered = delivered or []

    @property
    def delivered_count(self) -> int:
        return len(self.delivered)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["delivered_count"] = self.delivered_count
        return data


class RoutingError(DiscubotError):
    """Flow outputs violate the one-default invariant."""

    default_code = "ROUTING_ERROR"


class AIAnalysisError(DiscubotError):
    """The AI collaborator failed or returned an unusable response."""

    default_code = "AI_ANALYSIS_ERROR"
