"""Domain models shared by the routing, cache and orchestration layers.

Decision is frozen: it is built once per query by the DecisionAgent and
never mutated afterwards. SourceResult is the unit the cache stores, so
it must round-trip through model_dump(mode="json").
"""

from __future__ import annotations

import enum
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


class Intent(enum.StrEnum):
    """Classified purpose of a query."""

    CLINICAL_TRIAL_LOOKUP = "clinical_trial_lookup"
    LITERATURE_LOOKUP = "literature_lookup"
    DRUG_LABEL_LOOKUP = "drug_label_lookup"
    CLINICAL_TRIAL = "clinical_trial"
    DRUG_SAFETY = "drug_safety"
    DRUG_INFO = "drug_info"
    LITERATURE_REVIEW = "literature_review"
    GENERAL_MEDICAL = "general_medical"


class SourceStatus(enum.StrEnum):
    """Outcome of one per-source task."""

    SUCCESS = "success"
    ERROR = "error"
    RATE_LIMITED = "rate_limited"
    TIMEOUT = "timeout"


class Decision(BaseModel):
    """Routing decision for one query."""

    model_config = ConfigDict(frozen=True)

    intent: Intent
    confidence: float
    sources: tuple[str, ...]
    reasoning: str
    use_external: bool = True
    use_documents: bool = False
    matched_identifier: str | None = None
    processing_time_ms: float = 0.0

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)

    @field_validator("sources")
    @classmethod
    def _dedupe_sources(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(dict.fromkeys(value))

    @model_validator(mode="after")
    def _external_needs_sources(self) -> Decision:
        if self.use_external and not self.sources:
            raise ValueError("Decision with use_external=True must name at least one source")
        return self


class SourceResult(BaseModel):
    """Outcome of querying one external source for one query."""

    source: str
    status: SourceStatus
    records: list[dict[str, Any]] = Field(default_factory=list)
    latency_ms: float = 0.0
    timestamp: str = Field(default_factory=utc_now_iso)
    error: str | None = None
    cached: bool = False

    @property
    def ok(self) -> bool:
        return self.status == SourceStatus.SUCCESS


class AggregateMetadata(BaseModel):
    processing_time_ms: float
    confidence: float
    sources_used: list[str] = Field(default_factory=list)
    sources_failed: list[str] = Field(default_factory=list)
    pii_report: dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)


class AggregateResult(BaseModel):
    """Complete orchestrator output for one query."""

    request_id: str
    query: str
    decision: Decision
    results: dict[str, SourceResult]
    synthesis: str
    metadata: AggregateMetadata


class BatchError(BaseModel):
    index: int
    query: str
    error: str


class BatchResult(BaseModel):
    """Ordered per-query outcomes. A failed query leaves a None placeholder."""

    results: list[AggregateResult | None]
    errors: list[BatchError] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class SourceHealth(BaseModel):
    status: str  # "healthy" | "unhealthy" | "error"
    timestamp: str = Field(default_factory=utc_now_iso)
    latency_ms: float = 0.0
    detail: str = ""


class HealthReport(BaseModel):
    status: str  # "healthy" | "degraded"
    timestamp: str = Field(default_factory=utc_now_iso)
    services: dict[str, Any]
