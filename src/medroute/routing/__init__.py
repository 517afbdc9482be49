"""Query routing: intent classification and source selection.

Public API:
  DecisionAgent.decide(): query text → Decision
  explain_decision():     structured breakdown of a Decision
"""

from medroute.routing.decision import (
    DOMAIN_RULES,
    IDENTIFIER_RULES,
    DecisionAgent,
    DomainRule,
    IdentifierRule,
    explain_decision,
)

__all__ = [
    "DOMAIN_RULES",
    "IDENTIFIER_RULES",
    "DecisionAgent",
    "DomainRule",
    "IdentifierRule",
    "explain_decision",
]
