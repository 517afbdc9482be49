"""PubMed client using NCBI E-utilities (esearch + esummary, JSON mode).

NCBI allows 3 requests/second without an API key, 10 with one.
"""

from __future__ import annotations

import os
import re
from typing import Any

import structlog

from medroute.sources.base import HttpSourceClient

logger = structlog.get_logger()

EUTILS_BASE = "https://eutils.ncbi.nlm.nih.gov/entrez/eutils"

_PMID_RE = re.compile(r"\bPMID:?\s*(\d+)\b", re.IGNORECASE)


class PubMedClient(HttpSourceClient):
    """Minimal async PubMed search/summary client."""

    base_url = EUTILS_BASE

    def __init__(
        self,
        *args: Any,
        email: str | None = None,
        api_key: str | None = None,
        tool: str = "medroute",
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.email = email or os.getenv("NCBI_EMAIL")
        self.api_key = api_key or os.getenv("NCBI_API_KEY")
        self.tool = tool

    @property
    def name(self) -> str:
        return "pubmed"

    def _params(self, **params: Any) -> dict:
        params = {"db": "pubmed", "retmode": "json", "tool": self.tool, **params}
        if self.email:
            params["email"] = self.email
        if self.api_key:
            params["api_key"] = self.api_key
        return params

    async def search(self, term: str, max_results: int | None = None) -> list[str]:
        payload = await self._get(
            "/esearch.fcgi",
            self._params(term=term, retmax=max_results or self.max_results, sort="relevance"),
        )
        return parse_search_ids(payload)

    async def summaries(self, pmids: list[str]) -> list[dict[str, Any]]:
        if not pmids:
            return []
        payload = await self._get("/esummary.fcgi", self._params(id=",".join(pmids)))
        return parse_summaries(payload)

    async def fetch(self, query: str) -> list[dict[str, Any]]:
        match = _PMID_RE.search(query)
        pmids = [match.group(1)] if match else await self.search(query)
        records = await self.summaries(pmids)
        logger.info("pubmed_fetch_complete", count=len(records))
        return records

    async def health_check(self) -> bool:
        payload = await self._get("/einfo.fcgi", {"db": "pubmed", "retmode": "json"})
        return "einforesult" in payload


def parse_search_ids(payload: dict[str, Any]) -> list[str]:
    return payload.get("esearchresult", {}).get("idlist", [])


def parse_summaries(payload: dict[str, Any]) -> list[dict[str, Any]]:
    """Flatten an esummary response, preserving the uid order."""
    result = payload.get("result", {})
    records: list[dict[str, Any]] = []
    for uid in result.get("uids", []):
        doc = result.get(uid, {})
        if not doc or "error" in doc:
            continue
        records.append(
            {
                "pmid": uid,
                "title": (doc.get("title") or "Untitled").strip(),
                "journal": doc.get("fulljournalname") or doc.get("source", ""),
                "pub_date": doc.get("pubdate", ""),
                "authors": [a.get("name", "") for a in doc.get("authors", [])][:5],
                "url": f"https://pubmed.ncbi.nlm.nih.gov/{uid}/",
            }
        )
    return records
