"""Rule-table query router.

Maps a free-text medical query to an Intent, a confidence score and an
ordered list of source ids. Three stages, first match wins:

  1. Specific identifiers (NCT id, PMID/PMC, DOI, FDA application number)
     short-circuit at confidence 0.95.
  2. Domain classification over DOMAIN_RULES. Each matching pattern adds
     PATTERN_WEIGHT to the domain's raw score (capped at 1.0). The winner
     maximises raw_score * base_confidence; ties keep the earlier rule.
  3. Fallback to a general literature search at confidence 0.6.

Everything here is pure and synchronous; no I/O.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Any

import structlog

from medroute.schema import Decision, Intent

logger = structlog.get_logger()

CLINICALTRIALS = "clinicaltrials"
PUBMED = "pubmed"
OPENFDA = "openfda"

IDENTIFIER_CONFIDENCE = 0.95
FALLBACK_CONFIDENCE = 0.6
PATTERN_WEIGHT = 0.4
MIN_DOMAIN_SCORE = 0.3


@dataclass(frozen=True, slots=True)
class IdentifierRule:
    """High-precision identifier pattern and the sources it routes to."""

    name: str
    pattern: re.Pattern[str]
    intent: Intent
    sources: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class DomainRule:
    """One row of the domain table: patterns, sources, base confidence."""

    name: str
    intent: Intent
    patterns: tuple[re.Pattern[str], ...]
    sources: tuple[str, ...]
    base_confidence: float


@dataclass(frozen=True, slots=True)
class DomainScore:
    rule: DomainRule
    raw_score: float
    matched_patterns: tuple[str, ...]

    @property
    def combined(self) -> float:
        return self.raw_score * self.rule.base_confidence


def _p(pattern: str) -> re.Pattern[str]:
    return re.compile(pattern, re.IGNORECASE)


IDENTIFIER_RULES: tuple[IdentifierRule, ...] = (
    IdentifierRule(
        name="nct",
        pattern=_p(r"\b(NCT\d{8})\b"),
        intent=Intent.CLINICAL_TRIAL_LOOKUP,
        sources=(CLINICALTRIALS, PUBMED),
    ),
    IdentifierRule(
        name="pmid",
        pattern=_p(r"\b(PMID:?\s*\d+|PMC\d+)\b"),
        intent=Intent.LITERATURE_LOOKUP,
        sources=(PUBMED,),
    ),
    IdentifierRule(
        name="doi",
        pattern=_p(r"\b(10\.\d{4,}/\S+)"),
        intent=Intent.LITERATURE_LOOKUP,
        sources=(PUBMED,),
    ),
    IdentifierRule(
        name="fda_application",
        pattern=_p(r"\b((?:NDA|ANDA|BLA)\s*\d+)\b"),
        intent=Intent.DRUG_LABEL_LOOKUP,
        sources=(OPENFDA,),
    ),
)

# Order matters: on equal combined scores the earlier rule wins.
DOMAIN_RULES: tuple[DomainRule, ...] = (
    DomainRule(
        name="clinical_trial",
        intent=Intent.CLINICAL_TRIAL,
        patterns=(
            _p(r"\b(clinical trials?|study protocols?|NCT\d{8})\b"),
            _p(r"\b(phase\s*(?:I{1,3}|[123])|recruit(?:ment|ing)|enrol(?:l)?ment)\b"),
            _p(r"\b(randomi[sz]ed|controlled|placebo|double.blind)\b"),
        ),
        sources=(CLINICALTRIALS, PUBMED),
        base_confidence=0.85,
    ),
    DomainRule(
        name="drug_safety",
        intent=Intent.DRUG_SAFETY,
        patterns=(
            _p(r"\b(side effects?|adverse (?:events?|reactions?)|safety|toxicity)\b"),
            _p(r"\b(FDA\s*(?:approval|warning|recall)s?)\b"),
            _p(r"\b(contraindications?|black box|warnings?)\b"),
        ),
        sources=(OPENFDA, PUBMED),
        base_confidence=0.9,
    ),
    DomainRule(
        name="drug_info",
        intent=Intent.DRUG_INFO,
        patterns=(
            _p(r"\b(drugs?|medications?|pharmaceuticals?|therapeutics?)\b"),
            _p(r"\b(dosage|dosing|administration|indications?|mechanism)\b"),
            _p(r"\b(prescriptions?|over.the.counter|OTC)\b"),
        ),
        sources=(OPENFDA, PUBMED, CLINICALTRIALS),
        base_confidence=0.8,
    ),
    DomainRule(
        name="literature_review",
        intent=Intent.LITERATURE_REVIEW,
        patterns=(
            _p(r"\b(meta.analys[ie]s|systematic reviews?|literature)\b"),
            _p(r"\b(research|stud(?:y|ies)|investigations?|analys[ie]s)\b"),
            _p(r"\b(evidence|findings|results|outcomes)\b"),
        ),
        sources=(PUBMED,),
        base_confidence=0.75,
    ),
)


def score_domains(query: str, rules: tuple[DomainRule, ...] = DOMAIN_RULES) -> list[DomainScore]:
    """Score every domain rule against the lowercased query, in table order."""
    text = query.lower()
    scores: list[DomainScore] = []
    for rule in rules:
        matched = tuple(p.pattern for p in rule.patterns if p.search(text))
        raw = min(PATTERN_WEIGHT * len(matched), 1.0)
        scores.append(DomainScore(rule=rule, raw_score=raw, matched_patterns=matched))
    return scores


def pick_domain(scores: list[DomainScore]) -> DomainScore | None:
    """Highest combined score above MIN_DOMAIN_SCORE; earliest wins ties."""
    best: DomainScore | None = None
    for score in scores:
        if score.raw_score <= MIN_DOMAIN_SCORE:
            continue
        if best is None or score.combined > best.combined:
            best = score
    return best


def match_identifier(
    query: str, rules: tuple[IdentifierRule, ...] = IDENTIFIER_RULES
) -> tuple[IdentifierRule, str] | None:
    for rule in rules:
        match = rule.pattern.search(query)
        if match:
            return rule, match.group(1)
    return None


class DecisionAgent:
    """Deterministic query router backed by identifier and domain tables.

    The tables are injectable so new domains are added as data rows.
    """

    def __init__(
        self,
        domain_rules: tuple[DomainRule, ...] = DOMAIN_RULES,
        identifier_rules: tuple[IdentifierRule, ...] = IDENTIFIER_RULES,
    ):
        self._domain_rules = domain_rules
        self._identifier_rules = identifier_rules

    @property
    def domain_rules(self) -> tuple[DomainRule, ...]:
        return self._domain_rules

    def decide(self, query: str) -> Decision:
        start = time.perf_counter()
        try:
            decision = self._classify(query, start)
        except Exception:
            # Fail closed into the fallback branch.
            logger.warning("decision_classification_failed", exc_info=True)
            decision = _fallback(start)

        logger.debug(
            "decision_made",
            intent=decision.intent.value,
            confidence=round(decision.confidence, 3),
            sources=list(decision.sources),
        )
        return decision

    def _classify(self, query: str, start: float) -> Decision:
        identifier = match_identifier(query, self._identifier_rules)
        if identifier is not None:
            rule, value = identifier
            return Decision(
                intent=rule.intent,
                confidence=IDENTIFIER_CONFIDENCE,
                sources=rule.sources,
                reasoning=f"Specific identifier detected ({rule.name}): {value}",
                matched_identifier=value,
                processing_time_ms=_elapsed_ms(start),
            )

        best = pick_domain(score_domains(query, self._domain_rules))
        if best is not None:
            return Decision(
                intent=best.rule.intent,
                confidence=best.combined,
                sources=best.rule.sources,
                reasoning=(
                    f"Classified as {best.rule.name} query "
                    f"({len(best.matched_patterns)} pattern(s) matched, "
                    f"score {best.raw_score:.2f} x {best.rule.base_confidence:.2f})"
                ),
                processing_time_ms=_elapsed_ms(start),
            )

        return _fallback(start)


def _fallback(start: float) -> Decision:
    return Decision(
        intent=Intent.GENERAL_MEDICAL,
        confidence=FALLBACK_CONFIDENCE,
        sources=(PUBMED,),
        reasoning="General medical query, defaulting to literature search",
        processing_time_ms=_elapsed_ms(start),
    )


def _elapsed_ms(start: float) -> float:
    return (time.perf_counter() - start) * 1000


def explain_decision(
    decision: Decision,
    query: str,
    domain_rules: tuple[DomainRule, ...] = DOMAIN_RULES,
) -> dict[str, Any]:
    """Structured explanation of why a query was routed the way it was.

    Re-scores the domain table so callers can see near misses, not just
    the winner.
    """
    scores = score_domains(query, domain_rules)
    winner = pick_domain(scores)
    if decision.matched_identifier is not None:
        rule = "specific_identifier"
    elif winner is not None and winner.rule.intent == decision.intent:
        rule = "domain_classification"
    else:
        rule = "fallback"

    return {
        "query": query,
        "intent": decision.intent.value,
        "confidence": round(decision.confidence, 4),
        "sources": list(decision.sources),
        "rule": rule,
        "reasoning": decision.reasoning,
        "matched_identifier": decision.matched_identifier,
        "domain_scores": [
            {
                "domain": s.rule.name,
                "raw_score": round(s.raw_score, 4),
                "base_confidence": s.rule.base_confidence,
                "combined_score": round(s.combined, 4),
                "matched_patterns": list(s.matched_patterns),
                "eligible": s.raw_score > MIN_DOMAIN_SCORE,
            }
            for s in scores
        ],
    }
