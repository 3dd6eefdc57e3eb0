"""Application configuration helpers."""

from __future__ import annotations

from .env import env_flag, env_int, env_list, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .field_mapping import load_field_mapping, parse_field_mapping
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy
from .logging import configure_logging
from .mailerlite import MailerLiteConfig, get_mailerlite_config
from .storage import (
    DatabaseConfig,
    StorageConfig,
    get_database_config,
    get_database_uri,
    get_storage_config,
)
from .sync import SyncConfig, get_sync_config

__all__ = [
    "ConfigurationError",
    "DatabaseConfig",
    "MailerLiteConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "configure_logging",
    "env_flag",
    "env_int",
    "env_list",
    "get_database_config",
    "get_database_uri",
    "get_mailerlite_config",
    "get_storage_config",
    "get_sync_config",
    "load_field_mapping",
    "parse_field_mapping",
    "require_env_vars",
]
