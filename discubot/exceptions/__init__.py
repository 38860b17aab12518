"""
Exception hierarchy for Discubot.
"""

from .base import DiscubotError, ConfigurationError, create_error_context, handle_unexpected_error
from .webhook import (
    WebhookError,
    SignatureVerificationError,
    PayloadValidationError,
    RateLimitExceededError,
)
from .adapter import AdapterError, EmailProviderError
from .processing import ProcessingError, DeliveryError, RoutingError, AIAnalysisError
from .notion import NotionAPIError

__all__ = [
    "DiscubotError",
    "ConfigurationError",
    "create_error_context",
    "handle_unexpected_error",
    "WebhookError",
    "SignatureVerificationError",
    "PayloadValidationError",
    "RateLimitExceededError",
    "AdapterError",
    "EmailProviderError",
    "ProcessingError",
    "DeliveryError",
    "RoutingError",
    "AIAnalysisError",
    "NotionAPIError",
]
