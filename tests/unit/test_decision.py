"""Unit tests for the rule-table query router."""

from __future__ import annotations

import re

import pytest

from medroute.routing.decision import (
    DOMAIN_RULES,
    DecisionAgent,
    DomainRule,
    explain_decision,
    pick_domain,
    score_domains,
)
from medroute.schema import Decision, Intent


@pytest.fixture
def agent() -> DecisionAgent:
    return DecisionAgent()


class TestSpecificIdentifiers:
    @pytest.mark.parametrize(
        "query",
        [
            "NCT01234567 status",
            "What is the enrollment for nct01234567?",
            "Side effects reported in NCT01234567 versus placebo drug trials",
        ],
    )
    def test_nct_id_short_circuits(self, agent, query):
        decision = agent.decide(query)
        assert decision.intent == Intent.CLINICAL_TRIAL_LOOKUP
        assert decision.confidence == 0.95
        assert decision.sources == ("clinicaltrials", "pubmed")
        assert decision.matched_identifier.upper() == "NCT01234567"

    def test_nine_digit_nct_is_not_an_identifier(self, agent):
        decision = agent.decide("NCT012345678 status")
        assert decision.intent != Intent.CLINICAL_TRIAL_LOOKUP

    @pytest.mark.parametrize("query", ["PMID: 31452104 abstract", "summary of PMC6412345"])
    def test_literature_ids(self, agent, query):
        decision = agent.decide(query)
        assert decision.intent == Intent.LITERATURE_LOOKUP
        assert decision.confidence == 0.95
        assert decision.sources == ("pubmed",)

    def test_doi(self, agent):
        decision = agent.decide("Find 10.1056/NEJMoa2034577 please")
        assert decision.intent == Intent.LITERATURE_LOOKUP
        assert decision.sources == ("pubmed",)
        assert decision.matched_identifier.startswith("10.1056/")

    def test_fda_application_number(self, agent):
        decision = agent.decide("label for NDA 021234")
        assert decision.intent == Intent.DRUG_LABEL_LOOKUP
        assert decision.sources == ("openfda",)
        assert "fda_application" in decision.reasoning


class TestDomainClassification:
    def test_ibuprofen_side_effects_is_drug_safety(self, agent):
        decision = agent.decide("What are the side effects of ibuprofen?")
        assert decision.intent == Intent.DRUG_SAFETY
        assert decision.sources == ("openfda", "pubmed")
        assert decision.confidence == pytest.approx(0.9 * 0.4)
        assert "drug_safety" in decision.reasoning

    def test_multiple_patterns_accumulate(self, agent):
        decision = agent.decide("randomized placebo clinical trial recruiting for phase 2")
        assert decision.intent == Intent.CLINICAL_TRIAL
        # three patterns matched: 1.2 capped at 1.0
        assert decision.confidence == pytest.approx(0.85)

    def test_highest_combined_score_wins(self, agent):
        # drug_info: 2 patterns (0.8 * 0.8 = 0.64); drug_safety: 1 pattern (0.4 * 0.9 = 0.36)
        decision = agent.decide("drug dosage and toxicity")
        assert decision.intent == Intent.DRUG_INFO
        assert decision.sources == ("openfda", "pubmed", "clinicaltrials")
        assert decision.confidence == pytest.approx(0.64)

    def test_tie_goes_to_earlier_rule(self):
        rules = (
            DomainRule("first", Intent.CLINICAL_TRIAL, (re.compile("alpha"),), ("a",), 0.5),
            DomainRule("second", Intent.DRUG_INFO, (re.compile("alpha"),), ("b",), 0.5),
        )
        decision = DecisionAgent(domain_rules=rules).decide("alpha query")
        assert decision.intent == Intent.CLINICAL_TRIAL
        assert decision.sources == ("a",)

    def test_scores_follow_table_order(self):
        scores = score_domains("nothing relevant here")
        assert [s.rule.name for s in scores] == [r.name for r in DOMAIN_RULES]
        assert all(s.raw_score == 0 for s in scores)
        assert pick_domain(scores) is None


class TestFallback:
    @pytest.mark.parametrize(
        "query",
        ["How does the heart pump blood?", "xyz", "what causes migraines in teenagers"],
    )
    def test_unmatched_query_falls_back_to_literature(self, agent, query):
        decision = agent.decide(query)
        assert decision.intent == Intent.GENERAL_MEDICAL
        assert decision.confidence == 0.6
        assert decision.sources == ("pubmed",)
        assert decision.use_external is True

    def test_internal_failure_fails_closed(self):
        class Exploding:
            def search(self, _text):
                raise RuntimeError("boom")

            pattern = "boom"

        rules = (DomainRule("bad", Intent.DRUG_INFO, (Exploding(),), ("x",), 0.9),)
        decision = DecisionAgent(domain_rules=rules, identifier_rules=()).decide("anything")
        assert decision.intent == Intent.GENERAL_MEDICAL
        assert decision.sources == ("pubmed",)


class TestDecisionModel:
    def test_confidence_is_clamped(self):
        d = Decision(intent=Intent.DRUG_INFO, confidence=1.7, sources=["openfda"], reasoning="r")
        assert d.confidence == 1.0
        d = Decision(intent=Intent.DRUG_INFO, confidence=-0.2, sources=["openfda"], reasoning="r")
        assert d.confidence == 0.0

    def test_sources_are_deduplicated_in_order(self):
        d = Decision(
            intent=Intent.DRUG_INFO,
            confidence=0.5,
            sources=["openfda", "pubmed", "openfda"],
            reasoning="r",
        )
        assert d.sources == ("openfda", "pubmed")

    def test_external_requires_a_source(self):
        with pytest.raises(ValueError):
            Decision(intent=Intent.GENERAL_MEDICAL, confidence=0.5, sources=[], reasoning="r")

    def test_decision_is_frozen(self, agent):
        decision = agent.decide("NCT01234567")
        with pytest.raises(ValueError):
            decision.confidence = 0.1


class TestExplainDecision:
    def test_domain_explanation_lists_matches(self, agent):
        query = "What are the side effects of ibuprofen?"
        explanation = explain_decision(agent.decide(query), query)

        assert explanation["rule"] == "domain_classification"
        assert explanation["intent"] == "drug_safety"
        by_domain = {d["domain"]: d for d in explanation["domain_scores"]}
        assert by_domain["drug_safety"]["eligible"] is True
        assert len(by_domain["drug_safety"]["matched_patterns"]) == 1
        assert by_domain["clinical_trial"]["eligible"] is False

    def test_identifier_and_fallback_rules(self, agent):
        assert explain_decision(agent.decide("NCT01234567"), "NCT01234567")["rule"] == (
            "specific_identifier"
        )
        q = "how does the heart pump blood"
        assert explain_decision(agent.decide(q), q)["rule"] == "fallback"
