"""
Shared services for webhook handlers.

One ``AppContext`` is built at startup and stored on ``app.state``;
handlers receive it through the ``get_context`` dependency.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

import httpx
from anthropic import AsyncAnthropic
from fastapi import Depends, Header, HTTPException, Request

from ..adapters import ADAPTER_REGISTRY, SourceAdapter, get_adapter
from ..config.settings import DiscubotConfig
from ..data.base import (
    DiscussionRepository, FlowRepository, InboxRepository, TaskRepository, UserMappingRepository,
)
from ..data.repositories import RepositoryFactory
from ..email.forwarding import EmailForwarder
from ..email.resend import ResendClient
from ..models.flow import SourceType
from ..services.ai import DiscussionAnalyzer
from ..services.notion_sink import NotionTaskSink
from ..services.processor import DiscussionProcessor
from ..services.reply_generator import ReplyGenerator
from ..utils.rate_limit import RateLimiter, get_rate_limiter
from ..utils.webhook_security import safe_compare

logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    """Everything a webhook handler needs, wired once per process."""
    config: DiscubotConfig
    flows: FlowRepository
    discussions: DiscussionRepository
    tasks: TaskRepository
    user_mappings: UserMappingRepository
    inbox: InboxRepository
    http_client: httpx.AsyncClient
    adapters: Dict[SourceType, SourceAdapter]
    processor: DiscussionProcessor
    resend_client: Optional[ResendClient] = None
    forwarder: Optional[EmailForwarder] = None
    rate_limiter: RateLimiter = field(default_factory=get_rate_limiter)

    def adapter(self, source_type: SourceType) -> SourceAdapter:
        return self.adapters[source_type]

    @classmethod
    async def create(
        cls,
        config: DiscubotConfig,
        factory: RepositoryFactory,
        http_client: httpx.AsyncClient,
        anthropic_client: Optional[AsyncAnthropic] = None,
        rate_limiter: Optional[RateLimiter] = None,
    ) -> 'AppContext':
        """
        Build repositories, adapters and the processor.

        Args:
            config: Loaded application configuration
            factory: Repository factory for the configured backend
            http_client: Client shared by adapters, the sink and Resend
            anthropic_client: Overrides the client built from the API key
            rate_limiter: Overrides the process-wide limiter
        """
        flows = await factory.get_flow_repository()
        discussions = await factory.get_discussion_repository()
        tasks = await factory.get_task_repository()
        user_mappings = await factory.get_user_mapping_repository()
        inbox = await factory.get_inbox_repository()

        adapters = {source_type: get_adapter(source_type, http_client) for source_type in ADAPTER_REGISTRY}

        api_key = config.secrets.anthropic_api_key
        if anthropic_client is None and api_key:
            anthropic_client = AsyncAnthropic(api_key=api_key)
        if anthropic_client is None:
            logger.warning("ANTHROPIC_API_KEY not set; AI analysis will fail until configured")

        processor = DiscussionProcessor(
            flows=flows,
            discussions=discussions,
            tasks=tasks,
            user_mappings=user_mappings,
            adapters=adapters,
            analyzer=DiscussionAnalyzer(anthropic_client, config.ai_config),
            sink=NotionTaskSink(http_client),
            reply_generator=ReplyGenerator(anthropic_client),
        )

        resend_client = None
        forwarder = None
        if config.secrets.resend_api_token:
            resend_client = ResendClient(http_client, config.secrets.resend_api_token)
            forwarder = EmailForwarder(resend_client, inbox, config.email_config)
        else:
            logger.warning("RESEND_API_TOKEN not set; Resend webhooks will be rejected")

        return cls(
            config=config,
            flows=flows,
            discussions=discussions,
            tasks=tasks,
            user_mappings=user_mappings,
            inbox=inbox,
            http_client=http_client,
            adapters=adapters,
            processor=processor,
            resend_client=resend_client,
            forwarder=forwarder,
            rate_limiter=rate_limiter or get_rate_limiter(),
        )


def get_context(request: Request) -> AppContext:
    """FastAPI dependency returning the application context."""
    context = getattr(request.app.state, "context", None)
    if context is None:
        raise HTTPException(
            status_code=503,
            detail={"error": "SERVICE_UNAVAILABLE", "message": "Service is starting up"},
        )
    return context


def require_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
    context: AppContext = Depends(get_context),
) -> str:
    """Guard management routes with the shared ``DISCUBOT_API_KEY``."""
    expected = context.config.secrets.management_api_key
    if not expected:
        logger.warning("Management request rejected - DISCUBOT_API_KEY not configured")
        raise HTTPException(
            status_code=500,
            detail={"error": "API_KEY_NOT_CONFIGURED", "message": "Management API not configured"},
        )
    if not x_api_key or not safe_compare(x_api_key, expected):
        raise HTTPException(status_code=401, detail={"error": "INVALID_API_KEY", "message": "Invalid API key"})
    return x_api_key
