"""
Main application entry point for Discubot.

This module wires together:
- Configuration and the startup security check
- Repositories and the flow seed file
- Source adapters, the AI analyzer and the Notion task sink
- The webhook API server
"""

import asyncio
import logging
import signal
import sys
from typing import Optional

import httpx

from .config import ConfigValidator, DiscubotConfig, EnvironmentLoader, log_security_report, run_security_check
from .data import RepositoryFactory, initialize_repositories, load_seed_file
from .exceptions import ConfigurationError, handle_unexpected_error
from .webhook_service import AppContext, WebhookServer

HTTP_TIMEOUT = httpx.Timeout(30.0, connect=10.0)


class DiscubotApp:
    """Main application class for Discubot."""

    def __init__(self):
        self.config: Optional[DiscubotConfig] = None
        self.repository_factory: Optional[RepositoryFactory] = None
        self.http_client: Optional[httpx.AsyncClient] = None
        self.context: Optional[AppContext] = None
        self.webhook_server: Optional[WebhookServer] = None
        self.running = False

        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[logging.StreamHandler(sys.stdout)]
        )
        self.logger = logging.getLogger(__name__)

    async def initialize(self, config: Optional[DiscubotConfig] = None):
        """Initialize all application components.

        Args:
            config: Preloaded configuration; read from the environment when omitted
        """
        try:
            self.logger.info("Initializing Discubot...")

            self.config = config or EnvironmentLoader.load_config()
            logging.getLogger().setLevel(self.config.log_level.value)

            errors = ConfigValidator.validate_config(self.config)
            if errors:
                raise ConfigurationError(
                    f"Invalid configuration: {'; '.join(errors)}",
                    error_code="INVALID_CONFIGURATION",
                    context={"errors": errors},
                )
            self.logger.info("Configuration loaded successfully")

            log_security_report(run_security_check(self.config))

            await self._initialize_database()
            await self._initialize_services()
            await self._initialize_webhook_server()

            self.logger.info("All components initialized successfully")

        except Exception as e:
            error = handle_unexpected_error(e)
            self.logger.error(f"Failed to initialize application: {error.to_log_string()}")
            raise

    async def _initialize_database(self):
        """Create repositories and load the flows seed file."""
        db_config = self.config.database_config
        self.logger.info(f"Initializing {db_config.backend} storage...")

        self.repository_factory = initialize_repositories(
            backend=db_config.backend,
            db_path=db_config.db_path,
            pool_size=db_config.pool_size,
        )

        if self.config.seed_path:
            await load_seed_file(self.config.seed_path, self.repository_factory)
        else:
            self.logger.warning("FLOWS_CONFIG_PATH not set; no flows loaded unless already stored")

    async def _initialize_services(self):
        """Create the shared HTTP client and the processing context."""
        self.http_client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self.context = await AppContext.create(self.config, self.repository_factory, self.http_client)
        self.logger.info("Processing services initialized")

    async def _initialize_webhook_server(self):
        self.webhook_server = WebhookServer(self.config, self.context)
        await self.webhook_server.start_server()

    async def start(self):
        """Run until the server exits or a shutdown signal arrives."""
        if not self.webhook_server:
            raise RuntimeError("Application not initialized. Call initialize() first.")

        self.running = True
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(self._shutdown(s)))

        self.logger.info("Discubot is now online!")
        await self.webhook_server.wait()

    async def _shutdown(self, sig: signal.Signals):
        self.logger.info(f"Received {sig.name}, initiating graceful shutdown...")
        await self.stop()

    async def stop(self):
        """Stop the application gracefully, shutting down all services."""
        if not self.running:
            return
        self.running = False
        self.logger.info("Initiating graceful shutdown...")

        if self.webhook_server:
            await self.webhook_server.stop_server()
        if self.http_client:
            await self.http_client.aclose()
        if self.repository_factory:
            await self.repository_factory.close()

        self.logger.info("Discubot stopped cleanly")


async def main():
    """Main entry point for Discubot."""
    app = DiscubotApp()
    try:
        await app.initialize()
        await app.start()
    finally:
        await app.stop()
