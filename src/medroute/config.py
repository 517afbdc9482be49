"""Configuration models and loading.

Settings come from (lowest to highest precedence): model defaults, an
optional YAML file, then environment variables (a .env file is loaded
first via python-dotenv).
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

from medroute.sources.catalog import SOURCE_CATALOG


class SourceLimitConfig(BaseModel):
    """Token-bucket parameters for one source."""

    capacity: int = Field(ge=1)
    refill_period: float = Field(gt=0.0)
    strict: bool = False


class CacheConfig(BaseModel):
    redis_url: str | None = None
    max_memory_items: int = Field(default=1000, ge=1)
    default_ttl: int = Field(default=3600, ge=1)
    namespace: str = "medical_agent"


class OrchestratorConfig(BaseModel):
    """Per-request execution knobs."""

    cache_ttl_seconds: int = Field(default=3600, ge=1)
    source_timeout_seconds: float = Field(default=15.0, gt=0.0)
    max_concurrent_sources: int = Field(default=3, ge=1)
    batch_concurrency: int = Field(default=5, ge=1)
    health_timeout_seconds: float = Field(default=10.0, gt=0.0)


class SourceClientConfig(BaseModel):
    timeout_seconds: float = Field(default=30.0, gt=0.0)
    max_retries: int = Field(default=3, ge=1)
    max_results: int = Field(default=10, ge=1, le=100)
    ncbi_email: str | None = None
    ncbi_api_key: str | None = None
    openfda_api_key: str | None = None


def _default_limits() -> dict[str, SourceLimitConfig]:
    return {
        sid: SourceLimitConfig(capacity=info.capacity, refill_period=info.refill_period)
        for sid, info in SOURCE_CATALOG.items()
    }


class Settings(BaseModel):
    log_level: str = "INFO"
    cache: CacheConfig = Field(default_factory=CacheConfig)
    orchestrator: OrchestratorConfig = Field(default_factory=OrchestratorConfig)
    clients: SourceClientConfig = Field(default_factory=SourceClientConfig)
    rate_limits: dict[str, SourceLimitConfig] = Field(default_factory=_default_limits)


# env var -> (section, field)
_ENV_OVERRIDES: dict[str, tuple[str | None, str]] = {
    "REDIS_URL": ("cache", "redis_url"),
    "MEDROUTE_CACHE_TTL": ("orchestrator", "cache_ttl_seconds"),
    "MEDROUTE_SOURCE_TIMEOUT": ("orchestrator", "source_timeout_seconds"),
    "MEDROUTE_LOG_LEVEL": (None, "log_level"),
    "NCBI_EMAIL": ("clients", "ncbi_email"),
    "NCBI_API_KEY": ("clients", "ncbi_api_key"),
    "OPENFDA_API_KEY": ("clients", "openfda_api_key"),
}


def load_settings(path: str | Path | None = None, *, use_dotenv: bool = True) -> Settings:
    """Build Settings from an optional YAML file plus environment overrides."""
    if use_dotenv:
        load_dotenv()

    data: dict[str, Any] = {}
    if path is not None:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a mapping")

    for env_name, (section, field) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name, "").strip()
        if not raw:
            continue
        target = data if section is None else data.setdefault(section, {})
        target[field] = raw

    # Merge YAML rate limits over the catalog defaults instead of replacing them.
    limits = {sid: limit.model_dump() for sid, limit in _default_limits().items()}
    for sid, override in (data.pop("rate_limits", None) or {}).items():
        limits[sid] = {**limits.get(sid, {}), **override}
    data["rate_limits"] = limits

    return Settings.model_validate(data)
