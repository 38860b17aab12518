"""
Configuration management for Discubot.
"""

from .settings import (
    DiscubotConfig, WebhookConfig, SecretsConfig, DatabaseConfig,
    AIConfig, EmailConfig, LogLevel,
)
from .environment import EnvironmentLoader
from .validation import ConfigValidator, run_security_check, log_security_report

__all__ = [
    'DiscubotConfig',
    'WebhookConfig',
    'SecretsConfig',
    'DatabaseConfig',
    'AIConfig',
    'EmailConfig',
    'LogLevel',
    'EnvironmentLoader',
    'ConfigValidator',
    'run_security_check',
    'log_security_report',
]
