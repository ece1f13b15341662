from __future__ import annotations

import re
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def _validate_env_var_name(value: str) -> str:
    name = (value or "").strip()
    if not _ENV_NAME_RE.fullmatch(name):
        raise ValueError("must be a valid environment variable name")
    return name


PositiveInt = Annotated[int, Field(ge=1)]
NonNegativeInt = Annotated[int, Field(ge=0)]
NonNegativeFloat = Annotated[float, Field(ge=0.0)]


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    base_url: str = "https://api.twitterapi.io"
    api_key_env: str = "TWITTERAPI_IO_KEY"
    # Free tier allows roughly one request every 5 seconds.
    min_request_interval_seconds: NonNegativeFloat = 5.2
    max_rate_limit_retries: NonNegativeInt = 6
    rate_limit_backoff_step_seconds: NonNegativeFloat = 1.0
    timeout_seconds: float = Field(30.0, gt=0.0)

    @field_validator("api_key_env")
    @classmethod
    def _api_key_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("base_url")
    @classmethod
    def _base_url_must_be_http(cls, v: str) -> str:
        url = (v or "").strip().rstrip("/")
        if not url.startswith(("http://", "https://")):
            raise ValueError("must be an http(s) URL")
        return url


class CommunityConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    community_id: str | None = None
    community_id_env: str = "COMMUNITY_ID"

    @field_validator("community_id_env")
    @classmethod
    def _community_env_must_be_valid(cls, v: str) -> str:
        return _validate_env_var_name(v)

    @field_validator("community_id")
    @classmethod
    def _strip_community_id(cls, v: str | None) -> str | None:
        if v is None:
            return None
        return v.strip() or None


class StorageConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    database_path: str = "data/community_sync.sqlite"
    log_path: str = "data/community_sync.log"


class BackfillConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    pages_per_run: PositiveInt = 50
    cutoff_days: NonNegativeInt = 0  # 0 disables the cutoff


class IncrementalConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_pages: PositiveInt = 3


class MetricsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    recent_hours: PositiveInt = 48
    batch_size: int = Field(80, ge=1, le=100)
    stale_after_hours: NonNegativeFloat = 6.0
    max_rows: PositiveInt = 5000


class UsersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    active_hours: PositiveInt = 24


class MembersConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_pages: NonNegativeInt = 0  # 0 follows pagination to the end


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    api: ApiConfig = Field(default_factory=ApiConfig)
    community: CommunityConfig = Field(default_factory=CommunityConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    backfill: BackfillConfig = Field(default_factory=BackfillConfig)
    incremental: IncrementalConfig = Field(default_factory=IncrementalConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    users: UsersConfig = Field(default_factory=UsersConfig)
    members: MembersConfig = Field(default_factory=MembersConfig)
