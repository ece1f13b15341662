from __future__ import annotations

from .api_client import TwitterApiClient
from .config import config_sha256, load_config, resolve_community_id, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import (
    ApiClientError,
    ApiError,
    ConfigError,
    HttpError,
    RateLimited,
    StorageError,
)
from .storage import SQLiteSyncStore

__all__ = [
    "ApiClientError",
    "ApiError",
    "AppConfig",
    "ConfigError",
    "HttpError",
    "RateLimited",
    "SQLiteSyncStore",
    "StorageError",
    "TwitterApiClient",
    "config_sha256",
    "load_config",
    "resolve_community_id",
    "resolve_runtime_secrets",
]
