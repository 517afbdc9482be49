"""openFDA drug label client (https://api.fda.gov/drug/label.json).

openFDA answers 404 when a search has no hits; that is an empty result,
not a failure.
"""

from __future__ import annotations

import os
import re
from typing import Any

import structlog

from medroute.sources.base import HttpSourceClient

logger = structlog.get_logger()

OPENFDA_BASE = "https://api.fda.gov"
MAX_SECTION_CHARS = 500

_APPLICATION_RE = re.compile(r"\b(NDA|ANDA|BLA)\s*(\d+)\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[a-z][a-z0-9\-]{2,}")
_STOPWORDS = frozenset(
    {
        "what", "which", "when", "where", "does", "the", "are", "and", "for", "with",
        "how", "why", "can", "should", "about", "from", "that", "this", "there", "have",
        "side", "effects", "effect", "adverse", "events", "safety", "warnings", "warning",
        "drug", "drugs", "dosage", "dose", "information", "info", "label", "of", "is",
        "medication", "medications", "taking", "take", "risk", "risks", "any", "use",
    }
)


class OpenFDAClient(HttpSourceClient):
    """Async client for openFDA drug labels."""

    base_url = OPENFDA_BASE

    def __init__(self, *args: Any, api_key: str | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.api_key = api_key or os.getenv("OPENFDA_API_KEY")

    @property
    def name(self) -> str:
        return "openfda"

    async def search_labels(self, search: str, limit: int | None = None) -> dict:
        params: dict = {"search": search, "limit": min(limit or self.max_results, 100)}
        if self.api_key:
            params["api_key"] = self.api_key
        logger.debug("openfda_search", search=search)
        return await self._get("/drug/label.json", params, allow_not_found=True)

    async def fetch(self, query: str) -> list[dict[str, Any]]:
        search = build_search_expression(query)
        if not search:
            logger.info("openfda_no_search_terms")
            return []
        raw = await self.search_labels(search)
        records = [parse_label(r) for r in raw.get("results", [])]
        logger.info("openfda_fetch_complete", count=len(records))
        return records

    async def health_check(self) -> bool:
        raw = await self.search_labels("_exists_:openfda.brand_name", limit=1)
        return bool(raw.get("results"))


def build_search_expression(query: str) -> str:
    """Map free text to an openFDA search expression.

    An application number targets openfda.application_number; otherwise
    the remaining content words are matched against brand and generic names.
    """
    match = _APPLICATION_RE.search(query)
    if match:
        return f'openfda.application_number:"{match.group(1).upper()}{match.group(2)}"'

    terms = [w for w in _WORD_RE.findall(query.lower()) if w not in _STOPWORDS]
    if not terms:
        return ""
    clauses = [f"openfda.brand_name:{t}+openfda.generic_name:{t}" for t in dict.fromkeys(terms)]
    return "+".join(clauses)


def _first(section: Any) -> str:
    if isinstance(section, list):
        section = section[0] if section else ""
    text = str(section or "")
    return text if len(text) <= MAX_SECTION_CHARS else text[:MAX_SECTION_CHARS] + "..."


def parse_label(label: dict) -> dict:
    """Flatten one drug label result."""
    meta = label.get("openfda", {})
    brand = meta.get("brand_name", [])
    generic = meta.get("generic_name", [])
    return {
        "id": label.get("id", ""),
        "title": (brand or generic or ["Unnamed label"])[0],
        "brand_name": brand,
        "generic_name": generic,
        "manufacturer": (meta.get("manufacturer_name") or [""])[0],
        "application_number": meta.get("application_number", []),
        "indications": _first(label.get("indications_and_usage")),
        "warnings": _first(label.get("warnings") or label.get("boxed_warning")),
        "adverse_reactions": _first(label.get("adverse_reactions")),
        "effective_time": label.get("effective_time", ""),
    }
