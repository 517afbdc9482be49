"""Base classes for external source clients.

The orchestrator only relies on SourceClient: fetch() returns a list of
flat record dicts or raises, health_check() returns a bool. Rate limiting
is done by the orchestrator, not here.
"""

from __future__ import annotations

import abc
import asyncio
from typing import Any

import httpx
import structlog

from medroute.errors import SourceUnavailableError

logger = structlog.get_logger()


class SourceClient(abc.ABC):
    """Abstract base for external biomedical data sources."""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Source id used for routing, rate limiting and cache keys."""

    @abc.abstractmethod
    async def fetch(self, query: str) -> list[dict[str, Any]]:
        """Return records relevant to the free-text query."""

    @abc.abstractmethod
    async def health_check(self) -> bool:
        """Return True if the source endpoint is reachable."""

    async def aclose(self) -> None:
        return None


class HttpSourceClient(SourceClient):
    """httpx-backed client with retry on 429 / 5xx / network errors."""

    base_url: str = ""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        max_retries: int = 3,
        max_results: int = 10,
        http: httpx.AsyncClient | None = None,
    ):
        self._http = http or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout_seconds,
            headers={"Accept": "application/json"},
        )
        self._max_retries = max_retries
        self.max_results = max_results

    async def _get(self, path: str, params: dict, *, allow_not_found: bool = False) -> dict:
        """GET with retry on 429 / 5xx. Raises SourceUnavailableError."""
        for attempt in range(self._max_retries):
            try:
                resp = await self._http.get(path, params=params)
                if resp.status_code == 429 or resp.status_code >= 500:
                    wait = 2.0**attempt
                    logger.warning(
                        "source_transient_status",
                        source=self.name,
                        status=resp.status_code,
                        wait=wait,
                        attempt=attempt,
                    )
                    if attempt < self._max_retries - 1:
                        await asyncio.sleep(wait)
                        continue
                    raise SourceUnavailableError(
                        self.name, f"HTTP {resp.status_code} after {self._max_retries} attempts"
                    )
                if resp.status_code == 404 and allow_not_found:
                    return {}
                if resp.status_code == 400:
                    body = resp.text
                    logger.error("source_bad_request", source=self.name, path=path, body=body[:200])
                    raise SourceUnavailableError(self.name, f"400 Bad Request: {body[:200]}")
                resp.raise_for_status()
                return resp.json()
            except (httpx.TimeoutException, httpx.NetworkError) as exc:
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(1.5**attempt)
                    continue
                msg = f"unavailable after {self._max_retries} retries: {exc}"
                raise SourceUnavailableError(self.name, msg) from exc
            except httpx.HTTPStatusError as exc:
                raise SourceUnavailableError(self.name, str(exc)) from exc

        raise SourceUnavailableError(self.name, "max retries exceeded")

    async def aclose(self) -> None:
        await self._http.aclose()
