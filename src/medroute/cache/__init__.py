"""Tiered (Redis + in-process) response cache."""

from medroute.cache.manager import CacheManager, generate_key

__all__ = ["CacheManager", "generate_key"]
