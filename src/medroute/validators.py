"""Query shape validation and PII detection.

PII is reported, never removed: the report travels with the request and
is passed through into AggregateResult metadata.
"""

from __future__ import annotations

import re
from typing import Any

import structlog

from medroute.errors import InvalidQueryError

logger = structlog.get_logger()

MIN_QUERY_LENGTH = 3
MAX_QUERY_LENGTH = 1000
MAX_BATCH_SIZE = 100

_PII_PATTERNS: dict[str, re.Pattern[str]] = {
    "email": re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
    "ssn": re.compile(r"\b\d{3}-?\d{2}-?\d{4}\b"),
    "phone": re.compile(r"\b\d{3}-?\d{3}-?\d{4}\b"),
    "credit_card": re.compile(r"\b\d{4}[\s-]?\d{4}[\s-]?\d{4}[\s-]?\d{4}\b"),
}


def validate_query(query: Any) -> str:
    """Return the query unchanged or raise InvalidQueryError."""
    if query is None or query == "":
        raise InvalidQueryError("Query is required")
    if not isinstance(query, str):
        raise InvalidQueryError("Query must be a string")
    if len(query) < MIN_QUERY_LENGTH:
        raise InvalidQueryError(f"Query must be at least {MIN_QUERY_LENGTH} characters")
    if len(query) > MAX_QUERY_LENGTH:
        raise InvalidQueryError(f"Query too long (max {MAX_QUERY_LENGTH} characters)")
    return query


def validate_batch(queries: Any) -> list[Any]:
    """Check batch size only; individual queries are validated per item."""
    if not isinstance(queries, (list, tuple)) or len(queries) == 0:
        raise InvalidQueryError("Queries array is required")
    if len(queries) > MAX_BATCH_SIZE:
        raise InvalidQueryError(f"Maximum {MAX_BATCH_SIZE} queries per batch")
    return list(queries)


def detect_pii(text: str) -> dict[str, Any]:
    """Report PII-like substrings by type, with at most two examples each."""
    details: list[dict[str, Any]] = []
    total = 0
    for pii_type, pattern in _PII_PATTERNS.items():
        matches = pattern.findall(text)
        if matches:
            details.append({"type": pii_type, "count": len(matches), "examples": matches[:2]})
            total += len(matches)

    report = {
        "detected": bool(details),
        "types": [d["type"] for d in details],
        "count": total,
        "details": details,
    }
    if report["detected"]:
        # Types and counts only; the matched values stay out of the log.
        logger.warning("pii_detected", pii_types=report["types"], pii_count=total)
    return report
