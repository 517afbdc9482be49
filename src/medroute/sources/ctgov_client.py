"""Async ClinicalTrials.gov API v2 client.

Wraps the public REST API at https://clinicaltrials.gov/api/v2/. A query
carrying an NCT id is resolved with a direct study fetch; anything else
goes through /studies full-text search.

Outbound rate is bounded by the orchestrator's RateLimiter (published
limit ~50 req/min), so this client only retries transient errors.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from medroute.sources.base import HttpSourceClient

logger = structlog.get_logger()

CTGOV_BASE = "https://clinicaltrials.gov/api/v2"

_NCT_RE = re.compile(r"\b(NCT\d{8})\b", re.IGNORECASE)


class CTGovClient(HttpSourceClient):
    """Async HTTP client for ClinicalTrials.gov API v2."""

    base_url = CTGOV_BASE

    def __init__(self, *args: Any, default_status: list[str] | None = None, **kwargs: Any):
        super().__init__(*args, **kwargs)
        self._default_status = default_status  # None = no status filter

    @property
    def name(self) -> str:
        return "clinicaltrials"

    async def search(
        self,
        *,
        term: str | None = None,
        condition: str | None = None,
        intervention: str | None = None,
        status: list[str] | None = None,
        page_size: int = 20,
        page_token: str | None = None,
    ) -> dict:
        """Search for studies. Returns raw API response dict."""
        params: dict = {"pageSize": min(page_size, 100), "format": "json"}

        if term:
            params["query.term"] = term
        if condition:
            params["query.cond"] = condition
        if intervention:
            params["query.intr"] = intervention
        if status:
            params["filter.overallStatus"] = ",".join(status)
        if page_token:
            params["pageToken"] = page_token

        logger.debug("ctgov_search", params={k: v for k, v in params.items() if k != "format"})
        return await self._get("/studies", params)

    async def get_details(self, nct_id: str) -> dict:
        """Fetch full study record for a single NCT ID."""
        logger.debug("ctgov_get_details", nct_id=nct_id)
        return await self._get(f"/studies/{nct_id.upper()}", {"format": "json"}, allow_not_found=True)

    async def fetch(self, query: str) -> list[dict[str, Any]]:
        match = _NCT_RE.search(query)
        if match:
            raw = await self.get_details(match.group(1))
            return [parse_study_summary(raw)] if raw else []

        raw = await self.search(
            term=query,
            status=self._default_status,
            page_size=self.max_results,
        )
        records = [parse_study_summary(s) for s in parse_search_results(raw)]
        logger.info("ctgov_search_complete", count=len(records))
        return records

    async def health_check(self) -> bool:
        raw = await self.search(condition="cancer", page_size=1)
        return isinstance(raw, dict) and "studies" in raw


def parse_search_results(raw: dict) -> list[dict]:
    """Extract the list of study summaries from a search API response."""
    return raw.get("studies", [])


def parse_study_summary(study: dict) -> dict:
    """Flatten a study search result into a simple dict."""
    proto = study.get("protocolSection", {})
    id_mod = proto.get("identificationModule", {})
    status_mod = proto.get("statusModule", {})
    desc_mod = proto.get("descriptionModule", {})
    cond_mod = proto.get("conditionsModule", {})
    arms_mod = proto.get("armsInterventionsModule", {})
    design_mod = proto.get("designModule", {})
    sponsor_mod = proto.get("sponsorCollaboratorsModule", {})

    nct_id = id_mod.get("nctId", "")
    return {
        "nct_id": nct_id,
        "title": id_mod.get("briefTitle", id_mod.get("officialTitle", "")),
        "status": status_mod.get("overallStatus", ""),
        "phase": design_mod.get("phases", []),
        "conditions": cond_mod.get("conditions", []),
        "interventions": [i.get("name", "") for i in arms_mod.get("interventions", [])],
        "sponsor": sponsor_mod.get("leadSponsor", {}).get("name", ""),
        "enrollment": design_mod.get("enrollmentInfo", {}).get("count"),
        "start_date": status_mod.get("startDateStruct", {}).get("date"),
        "study_type": design_mod.get("studyType", ""),
        "brief_summary": desc_mod.get("briefSummary", ""),
        "url": f"https://clinicaltrials.gov/study/{nct_id}" if nct_id else None,
    }
