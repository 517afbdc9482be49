"""medroute: route medical queries across biomedical data sources.

Public API:
  build_orchestrator(): default wiring (rate limiters, cache, clients)
  Orchestrator:         process_query / process_batch / health_check
  DecisionAgent:        query → intent, confidence, sources
"""

from medroute.orchestrator import Orchestrator
from medroute.routing.decision import DecisionAgent
from medroute.runtime import build_orchestrator
from medroute.schema import AggregateResult, BatchResult, Decision, HealthReport, SourceResult

__all__ = [
    "AggregateResult",
    "BatchResult",
    "Decision",
    "DecisionAgent",
    "HealthReport",
    "Orchestrator",
    "SourceResult",
    "build_orchestrator",
]

__version__ = "0.1.0"
