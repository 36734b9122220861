"""Versioned on-disk response cache."""

from offline_agent.cache.models import CachedEntry, GenerationHandle, GenerationState
from offline_agent.cache.store import CacheStore

__all__ = ["CacheStore", "CachedEntry", "GenerationHandle", "GenerationState"]
