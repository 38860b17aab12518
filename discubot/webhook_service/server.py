"""
FastAPI webhook server for Discubot.
"""

import asyncio
import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from ..config.settings import DiscubotConfig
from ..exceptions import ConfigurationError, DiscubotError, RateLimitExceededError, WebhookError
from .context import AppContext
from .routes import create_api_router, create_webhook_router

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
CACHE_CLEANUP_INTERVAL = 3600


def status_code_for(exc: DiscubotError) -> int:
    """HTTP status for a pipeline error: 4xx for bad input, 503 when a retry can help."""
    if isinstance(exc, WebhookError):
        return exc.status_code
    if isinstance(exc, ConfigurationError):
        return 500
    return 503 if exc.retryable else 422


class WebhookServer:
    """FastAPI server for webhook endpoints."""

    def __init__(self, config: DiscubotConfig, context: AppContext):
        """Initialize webhook server.

        Args:
            config: Application configuration
            context: Shared services handed to every route
        """
        self.config = config
        self.context = context
        self.server: Optional[uvicorn.Server] = None
        self._server_task: Optional[asyncio.Task] = None

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            logger.info("Webhook server starting up")
            cleanup_task = asyncio.create_task(self._run_cache_cleanup())

            yield

            cleanup_task.cancel()
            logger.info("Webhook server shutting down")

        self.app = FastAPI(
            title="Discubot API",
            description="Webhook intake for discussions that become Notion tasks",
            version=VERSION,
            docs_url="/docs",
            redoc_url="/redoc",
            openapi_url="/openapi.json",
            lifespan=lifespan,
        )
        self.app.state.context = context

        self._setup_middleware()
        self._setup_routes()
        self._setup_error_handlers()

    def _setup_middleware(self) -> None:
        """Configure FastAPI middleware."""
        cors_origins = list(self.config.webhook_config.cors_origins or [])
        logger.info(f"CORS allowed origins: {cors_origins}")

        self.app.add_middleware(
            CORSMiddleware,
            allow_origins=cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["X-Request-ID", "RateLimit-Limit", "RateLimit-Remaining", "RateLimit-Reset"],
        )

        self.app.add_middleware(GZipMiddleware, minimum_size=1000)

    def _setup_routes(self) -> None:
        """Configure API routes."""
        build_number = os.environ.get("BUILD_NUMBER", os.environ.get("GIT_COMMIT", "dev"))

        @self.app.get("/health", tags=["Health"])
        async def health_check():
            """Check API health status.

            Always 200 while the process is up; missing credentials show
            as degraded services rather than an outage.
            """
            services = {
                "ai": "configured" if self.context.processor.analyzer.is_configured else "not_configured",
                "resend": "configured" if self.context.resend_client is not None else "not_configured",
                "storage": self.config.database_config.backend,
            }
            degraded = "not_configured" in services.values()
            return JSONResponse(
                status_code=200,
                content={
                    "status": "degraded" if degraded else "healthy",
                    "version": VERSION,
                    "build": build_number,
                    "server_time": datetime.utcnow().strftime("%Y-%m-%dT%H:%M:%SZ"),
                    "services": services,
                },
            )

        @self.app.get("/", tags=["Info"])
        async def root():
            """API information."""
            return {
                "name": "Discubot API",
                "version": VERSION,
                "build": build_number,
                "docs": "/docs",
                "health": "/health",
            }

        self.app.include_router(create_webhook_router())
        self.app.include_router(create_api_router())

    def _setup_error_handlers(self) -> None:
        """Configure global error handlers."""

        @self.app.exception_handler(RateLimitExceededError)
        async def rate_limit_error_handler(request: Request, exc: RateLimitExceededError):
            reset_seconds = str(int(exc.reset_in + 0.999))
            return JSONResponse(
                status_code=429,
                content=exc.to_dict(),
                headers={
                    "Retry-After": reset_seconds,
                    "RateLimit-Limit": str(exc.limit),
                    "RateLimit-Remaining": str(exc.remaining),
                    "RateLimit-Reset": reset_seconds,
                },
            )

        @self.app.exception_handler(DiscubotError)
        async def discubot_error_handler(request: Request, exc: DiscubotError):
            """Handle pipeline and webhook errors."""
            status_code = status_code_for(exc)
            if status_code >= 500:
                logger.error(f"Request to {request.url.path} failed: {exc.to_log_string()}")
            else:
                logger.warning(f"Request to {request.url.path} rejected: {exc.to_log_string()}")
            content = exc.to_dict()
            content["request_id"] = request.headers.get("X-Request-ID")
            return JSONResponse(status_code=status_code, content=content)

        @self.app.exception_handler(Exception)
        async def general_error_handler(request: Request, exc: Exception):
            """Handle unexpected errors."""
            logger.error(f"Unhandled error in webhook endpoint: {exc}", exc_info=True)
            return JSONResponse(
                status_code=500,
                content={
                    "error": "INTERNAL_SERVER_ERROR",
                    "message": "An unexpected error occurred",
                    "request_id": request.headers.get("X-Request-ID"),
                },
            )

    async def _run_cache_cleanup(self) -> None:
        """Periodically drop expired AI analysis cache entries."""
        analyzer = self.context.processor.analyzer
        while True:
            try:
                await asyncio.sleep(CACHE_CLEANUP_INTERVAL)
            except asyncio.CancelledError:
                break
            removed = analyzer.cleanup_expired_cache()
            if removed > 0:
                logger.info(f"AI cache cleanup: removed {removed} expired entries")

    async def start_server(self) -> None:
        """Start the webhook server.

        Starts the server in the background without blocking.
        """
        if self._server_task is not None:
            logger.warning("Webhook server already running")
            return

        host = self.config.webhook_config.host
        port = self.config.webhook_config.port

        logger.info(f"Starting webhook server on {host}:{port}")

        server_config = uvicorn.Config(
            app=self.app,
            host=host,
            port=port,
            log_level=self.config.log_level.value.lower(),
            access_log=True,
            loop="asyncio",
        )

        self.server = uvicorn.Server(server_config)
        self._server_task = asyncio.create_task(self.server.serve())

        logger.info(f"Webhook server started on http://{host}:{port}")
        logger.info(f"API docs available at http://{host}:{port}/docs")

    async def wait(self) -> None:
        """Block until the server task finishes."""
        if self._server_task is not None:
            await self._server_task

    async def stop_server(self) -> None:
        """Stop the webhook server gracefully."""
        if self.server is None:
            logger.warning("Webhook server not running")
            return

        logger.info("Stopping webhook server...")
        self.server.should_exit = True

        if self._server_task:
            try:
                await asyncio.wait_for(self._server_task, timeout=10.0)
            except asyncio.TimeoutError:
                logger.warning("Server shutdown timed out, cancelling task")
                self._server_task.cancel()
                try:
                    await self._server_task
                except asyncio.CancelledError:
                    pass

        self.server = None
        self._server_task = None

        logger.info("Webhook server stopped")

    def get_app(self) -> FastAPI:
        """Get the FastAPI application instance.

        Returns:
            FastAPI application
        """
        return self.app
