"""
Environment variable handling for Discubot configuration.
"""

import os
from typing import List

from dotenv import load_dotenv

from .settings import (
    AIConfig, DatabaseConfig, DiscubotConfig, EmailConfig, LogLevel,
    SecretsConfig, WebhookConfig,
)
from .constants import DEFAULT_AI_MODEL


class EnvironmentLoader:
    """Loads configuration from environment variables."""

    @staticmethod
    def load_config(load_env_file: bool = True) -> DiscubotConfig:
        """Load configuration from environment variables."""
        if load_env_file:
            load_dotenv(override=True)

        webhook_config = WebhookConfig(
            host=os.getenv('WEBHOOK_HOST', '0.0.0.0'),
            port=int(os.getenv('WEBHOOK_PORT', '5000')),
            cors_origins=EnvironmentLoader._parse_list(os.getenv('WEBHOOK_CORS_ORIGINS', '')),
            background_processing=EnvironmentLoader._parse_bool(os.getenv('BACKGROUND_PROCESSING', 'false')),
        )

        secrets = SecretsConfig(
            mailgun_signing_key=os.getenv('MAILGUN_SIGNING_KEY') or None,
            resend_webhook_signing_secret=os.getenv('RESEND_WEBHOOK_SIGNING_SECRET') or None,
            resend_api_token=os.getenv('RESEND_API_TOKEN') or None,
            slack_signing_secret=os.getenv('SLACK_SIGNING_SECRET') or None,
            notion_webhook_secret=os.getenv('NOTION_WEBHOOK_SECRET') or None,
            anthropic_api_key=os.getenv('ANTHROPIC_API_KEY') or None,
            management_api_key=os.getenv('DISCUBOT_API_KEY') or None,
        )

        database_config = DatabaseConfig(
            backend=os.getenv('DATABASE_BACKEND', 'memory'),
            db_path=os.getenv('DISCUBOT_DB_PATH', 'data/discubot.db'),
            pool_size=int(os.getenv('DB_POOL_SIZE', '5')),
        )

        ai_config = AIConfig(
            model=os.getenv('AI_MODEL', DEFAULT_AI_MODEL),
            summary_max_tokens=int(os.getenv('AI_SUMMARY_MAX_TOKENS', '1024')),
            tasks_max_tokens=int(os.getenv('AI_TASKS_MAX_TOKENS', '2048')),
            cache_ttl=int(os.getenv('AI_CACHE_TTL', '3600')),
            timeout=float(os.getenv('AI_TIMEOUT', '30')),
        )

        email_config = EmailConfig(
            from_address=os.getenv('RESEND_FROM_ADDRESS', EmailConfig.from_address),
            base_url=os.getenv('BASE_URL', EmailConfig.base_url),
        )

        log_level = LogLevel.INFO
        try:
            log_level = LogLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
        except ValueError:
            pass  # Use default

        return DiscubotConfig(
            webhook_config=webhook_config,
            secrets=secrets,
            database_config=database_config,
            ai_config=ai_config,
            email_config=email_config,
            log_level=log_level,
            seed_path=os.getenv('FLOWS_CONFIG_PATH') or None,
            environment=os.getenv('DISCUBOT_ENV', 'development').lower(),
        )

    @staticmethod
    def _get_required_env(key: str) -> str:
        """Get a required environment variable or raise an error."""
        value = os.getenv(key)
        if not value:
            raise ValueError(f"Required environment variable {key} is not set")
        return value

    @staticmethod
    def _parse_list(value: str, delimiter: str = ',') -> List[str]:
        """Parse a comma-separated string into a list."""
        if not value:
            return []
        return [item.strip() for item in value.split(delimiter) if item.strip()]

    @staticmethod
    def _parse_bool(value: str) -> bool:
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
