"""Exception hierarchy for medroute.

Only InvalidQueryError crosses the orchestrator boundary. Source failures
are absorbed into SourceResult status fields; Redis failures are logged
by the cache and never raised.
"""

from __future__ import annotations


class MedrouteError(Exception):
    """Base class for all medroute errors."""


class InvalidQueryError(MedrouteError, ValueError):
    """Query shape violation (type, length, batch size). Always surfaced."""


class SourceUnavailableError(MedrouteError):
    """A single external source failed after retries."""

    def __init__(self, source: str, message: str):
        super().__init__(f"{source}: {message}")
        self.source = source
