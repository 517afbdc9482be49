"""CLI commands: query, batch, explain, sources, health.

Every command prints JSON to stdout; structlog output goes to stderr.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any

import click
import structlog
import yaml

from medroute.config import Settings
from medroute.errors import InvalidQueryError
from medroute.orchestrator import Orchestrator
from medroute.runtime import build_orchestrator

logger = structlog.get_logger()


def _echo_json(payload: Any) -> None:
    if hasattr(payload, "model_dump"):
        payload = payload.model_dump(mode="json")
    click.echo(json.dumps(payload, indent=2, default=str))


def _run(settings: Settings, action: Callable[[Orchestrator], Awaitable[Any]]) -> Any:
    """Build an orchestrator, run one action, always close it."""

    async def _main() -> Any:
        orchestrator = build_orchestrator(settings)
        await orchestrator.cache.connect()
        try:
            return await action(orchestrator)
        finally:
            await orchestrator.aclose()

    try:
        return asyncio.run(_main())
    except InvalidQueryError as exc:
        raise click.ClickException(str(exc)) from exc


def load_batch_file(path: Path) -> list[str]:
    """Read queries from YAML/JSON (a list, or {"queries": [...]}) or plain text lines."""
    text = path.read_text()
    if path.suffix.lower() in {".yaml", ".yml", ".json"}:
        data = yaml.safe_load(text) or []
        if isinstance(data, dict):
            data = data.get("queries", [])
        if not isinstance(data, list):
            raise click.ClickException(f"{path} must contain a list of queries")
        return data
    return [line.strip() for line in text.splitlines() if line.strip()]


@click.command("query")
@click.argument("text")
@click.pass_obj
def query_cmd(settings: Settings, text: str):
    """Route one query to its sources and print the aggregate result."""
    result = _run(settings, lambda orch: orch.process_query(text, {"caller": "cli"}))
    _echo_json(result)


@click.command("batch")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--concurrency", type=int, default=None, help="Max queries in flight.")
@click.pass_obj
def batch_cmd(settings: Settings, path: Path, concurrency: int | None):
    """Process up to 100 queries from a file (YAML/JSON list or one per line)."""
    queries = load_batch_file(path)
    options = {"max_concurrency": concurrency} if concurrency else {}
    result = _run(settings, lambda orch: orch.process_batch(queries, options))
    _echo_json(result)


@click.command("explain")
@click.argument("text")
@click.pass_obj
def explain_cmd(settings: Settings, text: str):
    """Show how a query would be routed, without calling any source."""

    async def _explain(orch: Orchestrator) -> dict:
        return orch.explain(text)

    _echo_json(_run(settings, _explain))


@click.command("sources")
@click.pass_obj
def sources_cmd(settings: Settings):
    """List configured sources with live status."""

    async def _sources(orch: Orchestrator) -> dict:
        sources = await orch.list_sources()
        return {"sources": sources, "total_sources": len(sources)}

    _echo_json(_run(settings, _sources))


@click.command("health")
@click.pass_obj
def health_cmd(settings: Settings):
    """Report rate limiter tokens, cache tiers and source reachability."""
    report = _run(settings, lambda orch: orch.health_check())
    _echo_json(report)
    if report.status != "healthy":
        logger.warning("health_degraded", status=report.status)
