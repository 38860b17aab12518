"""
Webhook and API routers.
"""

from fastapi import APIRouter

from .mailgun import router as mailgun_router
from .resend import router as resend_router
from .slack import router as slack_router
from .notion_input import router as notion_input_router
from .notion import router as notion_router
from .discussions import router as discussions_router
from .connections import router as connections_router


def create_webhook_router() -> APIRouter:
    """All inbound webhook routes under ``/api/webhooks``."""
    router = APIRouter(prefix="/api/webhooks", tags=["Webhooks"])
    router.include_router(mailgun_router)
    router.include_router(resend_router)
    router.include_router(slack_router)
    router.include_router(notion_input_router)
    router.include_router(notion_router)
    return router


def create_api_router() -> APIRouter:
    router = APIRouter(prefix="/api", tags=["Management"])
    router.include_router(discussions_router)
    router.include_router(connections_router)
    return router


__all__ = ['create_webhook_router', 'create_api_router']
