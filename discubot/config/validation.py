"""
Configuration validation and startup security checks.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .constants import PLACEHOLDER_SECRETS
from .settings import DiscubotConfig

logger = logging.getLogger(__name__)


class ConfigValidator:
    """Validates configuration settings."""

    @staticmethod
    def validate_config(config: DiscubotConfig) -> List[str]:
        """Validate the entire configuration and return error strings."""
        errors = []
        errors.extend(ConfigValidator._validate_webhook_config(config))
        errors.extend(ConfigValidator._validate_database_config(config))
        errors.extend(ConfigValidator._validate_ai_config(config))
        return errors

    @staticmethod
    def _validate_webhook_config(config: DiscubotConfig) -> List[str]:
        errors = []
        webhook_config = config.webhook_config

        if not (1 <= webhook_config.port <= 65535):
            errors.append(f"Webhook port {webhook_config.port} is not in valid range (1-65535)")

        for origin in webhook_config.cors_origins:
            if not ConfigValidator._is_valid_url_or_wildcard(origin):
                errors.append(f"Invalid CORS origin: {origin}")

        return errors

    @staticmethod
    def _validate_database_config(config: DiscubotConfig) -> List[str]:
        errors = []
        db = config.database_config
        if db.backend not in ('memory', 'sqlite'):
            errors.append(f"Unsupported database backend: {db.backend}")
        if db.backend == 'sqlite' and not db.db_path:
            errors.append("SQLite backend requires DISCUBOT_DB_PATH")
        if db.pool_size <= 0:
            errors.append("Database pool size must be positive")
        return errors

    @staticmethod
    def _validate_ai_config(config: DiscubotConfig) -> List[str]:
        errors = []
        ai = config.ai_config
        if ai.summary_max_tokens <= 0 or ai.tasks_max_tokens <= 0:
            errors.append("AI max tokens must be positive")
        if ai.cache_ttl < 0:
            errors.append("AI cache TTL cannot be negative")
        if ai.timeout <= 0:
            errors.append("AI timeout must be positive")
        return errors

    @staticmethod
    def _is_valid_url_or_wildcard(value: str) -> bool:
        if value == "*":
            return True
        return re.match(r'^https?://[A-Za-z0-9.\-]+(:\d+)?$', value) is not None


@dataclass
class SecurityCheck:
    passed: bool
    level: str  # error, warning or info
    message: str
    recommendation: Optional[str] = None


@dataclass
class SecurityReport:
    checks: List[SecurityCheck] = field(default_factory=list)

    @property
    def errors(self) -> List[SecurityCheck]:
        return [c for c in self.checks if c.level == "error" and not c.passed]

    @property
    def warnings(self) -> List[SecurityCheck]:
        return [c for c in self.checks if c.level == "warning" and not c.passed]

    @property
    def passed(self) -> bool:
        return not self.errors

    @property
    def summary(self) -> str:
        if self.passed:
            return f"Security checks passed ({len(self.checks)} checks, {len(self.warnings)} warnings)"
        return f"Security checks failed ({len(self.errors)} errors, {len(self.warnings)} warnings)"


_SIGNING_SECRETS = (
    ("slack_signing_secret", "SLACK_SIGNING_SECRET", "Slack"),
    ("mailgun_signing_key", "MAILGUN_SIGNING_KEY", "Mailgun"),
    ("resend_webhook_signing_secret", "RESEND_WEBHOOK_SIGNING_SECRET", "Resend"),
    ("notion_webhook_secret", "NOTION_WEBHOOK_SECRET", "Notion"),
)


def run_security_check(config: DiscubotConfig) -> SecurityReport:
    """Check webhook signing secrets for absence and placeholder values.

    Missing secrets are warnings (verification is skipped); placeholder or
    short values are errors. In production, any missing signing secret is
    an error.
    """
    report = SecurityReport()

    for attr, env_name, label in _SIGNING_SECRETS:
        value = getattr(config.secrets, attr)
        if not value:
            report.checks.append(SecurityCheck(
                passed=False,
                level="error" if config.is_production else "warning",
                message=f"{env_name} not configured",
                recommendation=f"Set {env_name} to enable {label} webhook signature verification.",
            ))
        elif value in PLACEHOLDER_SECRETS or len(value) < 10:
            report.checks.append(SecurityCheck(
                passed=False,
                level="error",
                message=f"{label} signing secret appears to be a placeholder or weak value",
                recommendation=f"Update {env_name} with a proper secret value.",
            ))
        else:
            report.checks.append(SecurityCheck(
                passed=True, level="info", message=f"{label} webhook signature verification enabled",
            ))

    if not config.secrets.anthropic_api_key:
        report.checks.append(SecurityCheck(
            passed=False,
            level="warning",
            message="ANTHROPIC_API_KEY not configured",
            recommendation="AI analysis will fail until ANTHROPIC_API_KEY is set.",
        ))

    api_key = config.secrets.management_api_key
    if not api_key:
        report.checks.append(SecurityCheck(
            passed=False,
            level="warning",
            message="DISCUBOT_API_KEY not configured",
            recommendation="Management routes reject every request until DISCUBOT_API_KEY is set.",
        ))
    elif api_key in PLACEHOLDER_SECRETS or len(api_key) < 16:
        report.checks.append(SecurityCheck(
            passed=False,
            level="error",
            message="DISCUBOT_API_KEY appears to be a placeholder or weak value",
            recommendation="Use a random key of at least 16 characters.",
        ))
    else:
        report.checks.append(SecurityCheck(passed=True, level="info", message="Management API key configured"))

    return report


def log_security_report(report: SecurityReport) -> None:
    for check in report.errors:
        logger.error(f"Security check: {check.message}. {check.recommendation or ''}".strip())
    for check in report.warnings:
        logger.warning(f"Security check: {check.message}. {check.recommendation or ''}".strip())
    logger.info(report.summary)
