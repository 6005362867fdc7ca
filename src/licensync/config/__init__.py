"""Application configuration helpers."""

from __future__ import annotations

from .env import env_float, env_int, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .http_resilience import HttpRetryPolicy, ResilienceConfig
from .partner import PartnerApiConfig, get_partner_config
from .resilience import RetryPolicy, get_retry_policy
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
    "HttpRetryPolicy",
    "MissingConfigurationError",
    "PartnerApiConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "StorageConfig",
    "SyncConfig",
    "env_float",
    "env_int",
    "get_database_config",
    "get_database_uri",
    "get_partner_config",
    "get_retry_policy",
    "get_storage_config",
    "get_sync_config",
    "require_env_var",
    "require_env_vars",
]
