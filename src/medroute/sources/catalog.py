"""Static catalog of supported external sources and their published limits."""

from __future__ import annotations

from dataclasses import asdict, dataclass


@dataclass(frozen=True, slots=True)
class SourceInfo:
    """Description of one external source.

    capacity / refill_period are the token-bucket parameters derived from
    the provider's published rate limit.
    """

    id: str
    name: str
    description: str
    rate_limit: str
    capacity: int
    refill_period: float
    type: str = "external"

    def to_dict(self) -> dict:
        return asdict(self)


SOURCE_CATALOG: dict[str, SourceInfo] = {
    "clinicaltrials": SourceInfo(
        id="clinicaltrials",
        name="ClinicalTrials.gov",
        description="Clinical trial registry with 400,000+ studies",
        rate_limit="50 requests/minute",
        capacity=50,
        refill_period=60.0,
    ),
    "pubmed": SourceInfo(
        id="pubmed",
        name="PubMed",
        description="Biomedical literature database with 35M+ citations",
        rate_limit="3 requests/second",
        capacity=3,
        refill_period=1.0,
    ),
    "openfda": SourceInfo(
        id="openfda",
        name="OpenFDA",
        description="FDA drug labels and safety information",
        rate_limit="240 requests/minute",
        capacity=240,
        refill_period=60.0,
    ),
}


def display_name(source_id: str) -> str:
    info = SOURCE_CATALOG.get(source_id)
    return info.name if info else source_id
