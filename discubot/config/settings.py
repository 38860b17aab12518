"""
Configuration dataclasses for Discubot.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from .constants import AI_CACHE_TTL, DEFAULT_AI_MODEL


class LogLevel(Enum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class WebhookConfig:
    """HTTP server settings."""
    host: str = "0.0.0.0"
    port: int = 5000
    cors_origins: List[str] = field(default_factory=list)
    background_processing: bool = False


@dataclass
class SecretsConfig:
    """Signing secrets and API credentials.

    Any of these may be empty; the corresponding verification is skipped
    with a warning so a partially provisioned deployment still runs.
    """
    mailgun_signing_key: Optional[str] = None
    resend_webhook_signing_secret: Optional[str] = None
    resend_api_token: Optional[str] = None
    slack_signing_secret: Optional[str] = None
    notion_webhook_secret: Optional[str] = None
    anthropic_api_key: Optional[str] = None
    management_api_key: Optional[str] = None


@dataclass
class DatabaseConfig:
    backend: str = "memory"
    db_path: str = "data/discubot.db"
    pool_size: int = 5


@dataclass
class AIConfig:
    model: str = DEFAULT_AI_MODEL
    summary_max_tokens: int = 1024
    tasks_max_tokens: int = 2048
    cache_ttl: int = AI_CACHE_TTL
    timeout: float = 30.0


@dataclass
class EmailConfig:
    """Outgoing email settings used when forwarding inbox messages."""
    from_address: str = "Discubot <inbox@discubot.app>"
    base_url: str = "http://localhost:3000"


@dataclass
class DiscubotConfig:
    """Top-level application configuration."""
    webhook_config: WebhookConfig = field(default_factory=WebhookConfig)
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    database_config: DatabaseConfig = field(default_factory=DatabaseConfig)
    ai_config: AIConfig = field(default_factory=AIConfig)
    email_config: EmailConfig = field(default_factory=EmailConfig)
    log_level: LogLevel = LogLevel.INFO
    seed_path: Optional[str] = None
    environment: str = "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"
