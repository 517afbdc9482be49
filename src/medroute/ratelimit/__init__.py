"""Per-source token-bucket rate limiting."""

from medroute.ratelimit.limiter import RateLimiter

__all__ = ["RateLimiter"]
