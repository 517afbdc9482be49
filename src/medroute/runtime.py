"""Default wiring for the orchestrator.

Builds one RateLimiter per configured source, the cache (Redis tier only
when REDIS_URL is set), the decision agent and the httpx source clients,
then injects them into an Orchestrator.
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog

from medroute.cache.manager import CacheManager
from medroute.config import Settings, SourceClientConfig, SourceLimitConfig, load_settings
from medroute.orchestrator import Orchestrator
from medroute.ratelimit.limiter import RateLimiter
from medroute.routing.decision import DecisionAgent
from medroute.sources.base import SourceClient
from medroute.sources.ctgov_client import CTGovClient
from medroute.sources.openfda_client import OpenFDAClient
from medroute.sources.pubmed_client import PubMedClient

logger = structlog.get_logger()


def create_rate_limiters(limits: Mapping[str, SourceLimitConfig]) -> dict[str, RateLimiter]:
    return {
        sid: RateLimiter(sid, limit.capacity, limit.refill_period, strict=limit.strict)
        for sid, limit in limits.items()
    }


def create_source_clients(config: SourceClientConfig) -> dict[str, SourceClient]:
    common = {
        "timeout_seconds": config.timeout_seconds,
        "max_retries": config.max_retries,
        "max_results": config.max_results,
    }
    clients: list[SourceClient] = [
        CTGovClient(**common),
        PubMedClient(email=config.ncbi_email, api_key=config.ncbi_api_key, **common),
        OpenFDAClient(api_key=config.openfda_api_key, **common),
    ]
    return {c.name: c for c in clients}


def create_cache(settings: Settings) -> CacheManager:
    return CacheManager.from_url(
        settings.cache.redis_url,
        max_memory_items=settings.cache.max_memory_items,
        default_ttl=settings.cache.default_ttl,
        namespace=settings.cache.namespace,
    )


def build_orchestrator(
    settings: Settings | None = None,
    *,
    clients: Mapping[str, SourceClient] | None = None,
) -> Orchestrator:
    """Construct an Orchestrator with explicit dependencies.

    Pass clients to substitute the default HTTP clients (tests, offline runs).
    """
    settings = settings or load_settings()
    source_clients = dict(clients) if clients is not None else create_source_clients(settings.clients)

    missing = sorted(set(source_clients) - set(settings.rate_limits))
    if missing:
        logger.warning("runtime_sources_without_rate_limit", sources=missing)

    orchestrator = Orchestrator(
        decision_agent=DecisionAgent(),
        rate_limiters=create_rate_limiters(settings.rate_limits),
        cache=create_cache(settings),
        clients=source_clients,
        config=settings.orchestrator,
    )
    logger.info(
        "runtime_orchestrator_built",
        sources=sorted(source_clients),
        redis=orchestrator.cache.durable_enabled,
    )
    return orchestrator
