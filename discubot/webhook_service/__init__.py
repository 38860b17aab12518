"""
Webhook HTTP service.

Public Interface:
    - WebhookServer: FastAPI app with middleware, routes and error handlers
    - AppContext / get_context: shared services handed to routes
"""

from .context import AppContext, get_context
from .server import WebhookServer

__all__ = ['WebhookServer', 'AppContext', 'get_context']
