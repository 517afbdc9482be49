"""Unit tests for default orchestrator wiring."""

from __future__ import annotations

from unittest.mock import MagicMock

from medroute.config import Settings, SourceClientConfig, SourceLimitConfig
from medroute.runtime import build_orchestrator, create_rate_limiters, create_source_clients


def test_rate_limiters_built_per_source():
    limiters = create_rate_limiters(
        {
            "pubmed": SourceLimitConfig(capacity=3, refill_period=1.0),
            "openfda": SourceLimitConfig(capacity=240, refill_period=60.0, strict=True),
        }
    )
    assert limiters["pubmed"].capacity == 3
    assert limiters["openfda"].strict is True
    assert limiters["openfda"].name == "openfda"


def test_default_clients_cover_catalog():
    clients = create_source_clients(SourceClientConfig(ncbi_email="dev@example.org", max_results=7))
    assert set(clients) == {"clinicaltrials", "pubmed", "openfda"}
    assert clients["pubmed"].email == "dev@example.org"
    assert clients["openfda"].max_results == 7


def test_build_orchestrator_with_injected_clients():
    fake = MagicMock()
    fake.name = "pubmed"
    settings = Settings()

    orch = build_orchestrator(settings, clients={"pubmed": fake})

    assert orch.clients == {"pubmed": fake}
    assert set(orch.rate_limiters) == {"clinicaltrials", "pubmed", "openfda"}
    assert orch.cache.durable_enabled is False
    assert orch.config.source_timeout_seconds == settings.orchestrator.source_timeout_seconds
