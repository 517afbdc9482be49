"""Unit tests for query validation and PII reporting."""

from __future__ import annotations

import pytest

from medroute.errors import InvalidQueryError
from medroute.validators import detect_pii, validate_batch, validate_query


@pytest.mark.parametrize("query", ["abc", "x" * 1000, "What are the side effects of ibuprofen?"])
def test_valid_queries_pass_through(query):
    assert validate_query(query) == query


@pytest.mark.parametrize(
    ("query", "message"),
    [
        (None, "required"),
        ("", "required"),
        (42, "string"),
        ("ab", "at least 3"),
        ("x" * 1001, "too long"),
    ],
)
def test_invalid_queries_raise(query, message):
    with pytest.raises(InvalidQueryError, match=message):
        validate_query(query)


def test_invalid_query_error_is_a_value_error():
    with pytest.raises(ValueError):
        validate_query("no")


def test_batch_bounds():
    assert validate_batch(["abc"]) == ["abc"]
    assert len(validate_batch(["abc"] * 100)) == 100
    with pytest.raises(InvalidQueryError, match="required"):
        validate_batch([])
    with pytest.raises(InvalidQueryError, match="Maximum 100"):
        validate_batch(["abc"] * 101)
    with pytest.raises(InvalidQueryError):
        validate_batch("not a list")


def test_detect_pii_reports_types_and_counts():
    report = detect_pii("Contact jane.doe@example.com or bob@example.org about my results")
    assert report["detected"] is True
    assert report["types"] == ["email"]
    assert report["count"] == 2
    assert report["details"][0]["examples"] == ["jane.doe@example.com", "bob@example.org"]


def test_detect_pii_keeps_at_most_two_examples():
    report = detect_pii("a@x.io b@x.io c@x.io")
    assert report["count"] == 3
    assert len(report["details"][0]["examples"]) == 2


def test_detect_pii_clean_query():
    report = detect_pii("What are the side effects of ibuprofen?")
    assert report == {"detected": False, "types": [], "count": 0, "details": []}


def test_detect_pii_ssn_and_card():
    report = detect_pii("ssn 123-45-6789 card 4111 1111 1111 1111")
    assert "ssn" in report["types"]
    assert "credit_card" in report["types"]
