"""Multi-source query orchestration.

process_query() runs one query end to end:

  validate → DecisionAgent.decide → per source, concurrently:
      RateLimiter.acquire → CacheManager.get → [miss] client.fetch → CacheManager.set
  → synthesis → AggregateResult

Each per-source task has its own deadline. A task that overruns is
reported as a timeout; it is shielded rather than cancelled, so a late
result can still warm the cache but never enters the finished response.

Only InvalidQueryError escapes this module. Every other failure becomes
a SourceResult status.
"""

from __future__ import annotations

import asyncio
import hashlib
import time
from collections.abc import Iterable, Mapping
from typing import Any
from uuid import uuid4

import structlog
from pydantic import ValidationError

from medroute.cache.manager import CacheManager
from medroute.config import OrchestratorConfig
from medroute.errors import InvalidQueryError
from medroute.ratelimit.limiter import RateLimiter
from medroute.routing.decision import DecisionAgent, explain_decision
from medroute.schema import (
    AggregateMetadata,
    AggregateResult,
    BatchError,
    BatchResult,
    Decision,
    HealthReport,
    SourceHealth,
    SourceResult,
    SourceStatus,
)
from medroute.sources.base import SourceClient
from medroute.sources.catalog import SOURCE_CATALOG, display_name
from medroute.validators import detect_pii, validate_batch, validate_query

logger = structlog.get_logger()

MAX_TITLES_PER_SOURCE = 3


def canonicalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def request_fingerprint(source: str, query: str) -> str:
    """Fixed-width digest of (source, canonical query) used as cache-key input.

    Hashing first keeps the truncated base64 cache key from colliding on
    queries that merely share a prefix.
    """
    payload = f"{source}\n{canonicalize_query(query)}".encode("utf-8")
    return hashlib.sha256(payload).hexdigest()


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


class Orchestrator:
    """Composes routing, rate limiting, caching and source clients.

    All collaborators are injected; see medroute.runtime.build_orchestrator
    for the default wiring.
    """

    def __init__(
        self,
        decision_agent: DecisionAgent,
        rate_limiters: Mapping[str, RateLimiter],
        cache: CacheManager,
        clients: Mapping[str, SourceClient] | Iterable[SourceClient],
        *,
        config: OrchestratorConfig | None = None,
    ):
        self.decision_agent = decision_agent
        self.rate_limiters = dict(rate_limiters)
        self.cache = cache
        if isinstance(clients, Mapping):
            self.clients = dict(clients)
        else:
            self.clients = {c.name: c for c in clients}
        self.config = config or OrchestratorConfig()
        self._background: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Single query
    # ------------------------------------------------------------------

    async def process_query(
        self, query: str, context: Mapping[str, Any] | None = None
    ) -> AggregateResult:
        start = time.perf_counter()
        validate_query(query)
        context = dict(context or {})
        request_id = str(context.get("request_id") or f"req_{uuid4().hex[:12]}")

        decision = self.decision_agent.decide(query)
        logger.info(
            "orchestrator_query_routed",
            request_id=request_id,
            intent=decision.intent.value,
            sources=list(decision.sources),
            confidence=round(decision.confidence, 3),
        )

        semaphore = asyncio.Semaphore(self.config.max_concurrent_sources)
        outcomes = await asyncio.gather(
            *(self._run_source(source, query, semaphore, request_id) for source in decision.sources)
        )
        results = {r.source: r for r in outcomes}

        synthesis, confidence = synthesize(decision, results)
        processing_time_ms = _elapsed_ms(start)
        metadata = AggregateMetadata(
            processing_time_ms=processing_time_ms,
            confidence=confidence,
            sources_used=[s for s, r in results.items() if r.ok],
            sources_failed=[s for s, r in results.items() if not r.ok],
            pii_report=context.get("pii_report") or detect_pii(query),
        )

        logger.info(
            "orchestrator_query_complete",
            request_id=request_id,
            sources_used=metadata.sources_used,
            sources_failed=metadata.sources_failed,
            latency_ms=f"{processing_time_ms:.0f}",
        )
        return AggregateResult(
            request_id=request_id,
            query=query,
            decision=decision,
            results=results,
            synthesis=synthesis,
            metadata=metadata,
        )

    async def _run_source(
        self,
        source: str,
        query: str,
        semaphore: asyncio.Semaphore,
        request_id: str,
    ) -> SourceResult:
        """Run one source task under its deadline. Never raises."""
        start = time.perf_counter()
        task = asyncio.create_task(self._fetch_source(source, query, semaphore))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

        timeout = self.config.source_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.shield(task), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "orchestrator_source_timeout",
                request_id=request_id,
                source=source,
                timeout_seconds=timeout,
            )
            return SourceResult(
                source=source,
                status=SourceStatus.TIMEOUT,
                latency_ms=_elapsed_ms(start),
                error=f"Source exceeded {timeout:.1f}s deadline",
            )
        except Exception as exc:
            logger.error(
                "orchestrator_source_task_failed",
                request_id=request_id,
                source=source,
                error=str(exc)[:200],
            )
            return SourceResult(
                source=source,
                status=SourceStatus.ERROR,
                latency_ms=_elapsed_ms(start),
                error=f"{type(exc).__name__}: {exc}"[:200],
            )

    async def _fetch_source(
        self, source: str, query: str, semaphore: asyncio.Semaphore
    ) -> SourceResult:
        start = time.perf_counter()
        client = self.clients.get(source)
        if client is None:
            logger.warning("orchestrator_unknown_source", source=source)
            return SourceResult(
                source=source,
                status=SourceStatus.ERROR,
                error=f"No client registered for source '{source}'",
            )

        async with semaphore:
            limiter = self.rate_limiters.get(source)
            if limiter is not None:
                try:
                    await limiter.acquire()
                except Exception as exc:
                    logger.error("orchestrator_rate_limiter_failed", source=source, error=str(exc))
                    return SourceResult(
                        source=source,
                        status=SourceStatus.RATE_LIMITED,
                        latency_ms=_elapsed_ms(start),
                        error=f"Rate limiter failure: {exc}"[:200],
                    )

            key = self.cache.generate_key(request_fingerprint(source, query))
            cached = await self.cache.get(key)
            if cached is not None:
                try:
                    hit = SourceResult.model_validate(cached)
                except ValidationError:
                    logger.warning("orchestrator_cache_entry_invalid", source=source, key=key)
                else:
                    logger.debug("orchestrator_cache_hit", source=source, key=key)
                    return hit.model_copy(update={"cached": True, "latency_ms": _elapsed_ms(start)})

            try:
                records = await client.fetch(query)
            except Exception as exc:
                logger.warning(
                    "orchestrator_source_failed",
                    source=source,
                    error=f"{type(exc).__name__}: {exc}"[:200],
                )
                return SourceResult(
                    source=source,
                    status=SourceStatus.ERROR,
                    latency_ms=_elapsed_ms(start),
                    error=f"{type(exc).__name__}: {exc}"[:200],
                )

            result = SourceResult(
                source=source,
                status=SourceStatus.SUCCESS,
                records=list(records),
                latency_ms=_elapsed_ms(start),
            )
            await self.cache.set(key, result.model_dump(mode="json"), ttl=self.config.cache_ttl_seconds)
            return result

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def process_batch(
        self, queries: list[str], options: Mapping[str, Any] | None = None
    ) -> BatchResult:
        """Process 1-100 queries independently, preserving input order."""
        start = time.perf_counter()
        queries = validate_batch(queries)
        options = dict(options or {})
        concurrency = int(options.get("max_concurrency") or self.config.batch_concurrency)
        shared_context = dict(options.get("context") or {})
        semaphore = asyncio.Semaphore(max(concurrency, 1))

        async def _one(index: int, query: str) -> AggregateResult | Exception:
            async with semaphore:
                context = {**shared_context, "request_id": f"batch_{uuid4().hex[:8]}_{index}"}
                try:
                    return await self.process_query(query, context)
                except Exception as exc:
                    return exc

        outcomes = await asyncio.gather(*(_one(i, q) for i, q in enumerate(queries)))

        results: list[AggregateResult | None] = []
        errors: list[BatchError] = []
        for index, (query, outcome) in enumerate(zip(queries, outcomes, strict=True)):
            if isinstance(outcome, Exception):
                message = str(outcome) if isinstance(outcome, InvalidQueryError) else (
                    f"{type(outcome).__name__}: {outcome}"
                )
                logger.warning("orchestrator_batch_item_failed", index=index, error=message[:200])
                errors.append(BatchError(index=index, query=str(query)[:200], error=message[:200]))
                results.append(None)
            else:
                results.append(outcome)

        processing_time_ms = _elapsed_ms(start)
        logger.info(
            "orchestrator_batch_complete",
            total=len(queries),
            failed=len(errors),
            latency_ms=f"{processing_time_ms:.0f}",
        )
        return BatchResult(
            results=results,
            errors=errors,
            metadata={
                "total": len(queries),
                "succeeded": len(queries) - len(errors),
                "failed": len(errors),
                "processing_time_ms": processing_time_ms,
            },
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def explain(self, query: str) -> dict[str, Any]:
        validate_query(query)
        decision = self.decision_agent.decide(query)
        return explain_decision(decision, query, self.decision_agent.domain_rules)

    async def _check_source(self, source: str, client: SourceClient) -> tuple[str, SourceHealth]:
        """Run one client health check without raising."""
        start = time.perf_counter()
        try:
            ok = await asyncio.wait_for(
                client.health_check(), timeout=self.config.health_timeout_seconds
            )
            detail = "ok" if ok else "health check returned False"
            status = "healthy" if ok else "unhealthy"
        except Exception as exc:
            detail = f"{type(exc).__name__}: {exc}"[:200]
            status = "error"
        latency_ms = _elapsed_ms(start)
        log_fn = logger.info if status == "healthy" else logger.warning
        log_fn("orchestrator_source_health", source=source, status=status, detail=detail)
        return source, SourceHealth(status=status, latency_ms=latency_ms, detail=detail)

    async def health_check(self) -> HealthReport:
        """Snapshot of limiter tokens, cache tiers and source reachability."""
        checks = await asyncio.gather(
            *(self._check_source(sid, client) for sid, client in self.clients.items())
        )
        sources = dict(checks)
        cache_health = await self.cache.health_check()
        rate_limiters = {sid: limiter.remaining() for sid, limiter in self.rate_limiters.items()}

        degraded = (
            any(h.status != "healthy" for h in sources.values())
            or cache_health.get("redis") == "error"
        )
        return HealthReport(
            status="degraded" if degraded else "healthy",
            services={
                "cache": cache_health,
                "rate_limiters": rate_limiters,
                "external_apis": {
                    "sources": {sid: h.model_dump() for sid, h in sources.items()}
                },
            },
        )

    async def list_sources(self) -> list[dict[str, Any]]:
        """Catalog entries for registered sources, merged with live health."""
        report = await self.health_check()
        live = report.services["external_apis"]["sources"]
        entries: list[dict[str, Any]] = []
        for sid in self.clients:
            info = SOURCE_CATALOG.get(sid)
            entry = info.to_dict() if info else {"id": sid, "name": sid, "type": "external"}
            health = live.get(sid)
            if health:
                entry["status"] = health["status"]
                entry["last_checked"] = health["timestamp"]
            entries.append(entry)
        return entries

    async def aclose(self) -> None:
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)
        for client in self.clients.values():
            try:
                await client.aclose()
            except Exception:
                logger.warning("orchestrator_client_close_failed", source=client.name, exc_info=True)
        await self.cache.aclose()


def synthesize(decision: Decision, results: Mapping[str, SourceResult]) -> tuple[str, float]:
    """Combine successful SourceResults into answer text and a confidence.

    Confidence is the decision confidence scaled by the share of sources
    that succeeded; 0.0 when no source returned any record.
    """
    successful = [r for r in results.values() if r.ok]
    with_data = [r for r in successful if r.records]

    if not with_data:
        failures = ", ".join(
            f"{display_name(r.source)}: {r.status.value}" for r in results.values() if not r.ok
        )
        text = "No data found for this query in the selected sources."
        if failures:
            text += f" Unavailable: {failures}."
        return text, 0.0

    lines = [
        f"Results for a {decision.intent.value.replace('_', ' ')} query "
        f"from {len(with_data)} of {len(results)} source(s):"
    ]
    for result in with_data:
        count = len(result.records)
        titles = [str(r.get("title")) for r in result.records[:MAX_TITLES_PER_SOURCE] if r.get("title")]
        noun = "record" if count == 1 else "records"
        line = f"- {display_name(result.source)} ({count} {noun})"
        if titles:
            line += ": " + "; ".join(titles)
        lines.append(line)

    confidence = decision.confidence * (len(successful) / len(results)) if results else 0.0
    return "\n".join(lines), round(min(max(confidence, 0.0), 1.0), 4)
