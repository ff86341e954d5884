"""
Pathway response cache.

- Key format: `cache:{version}:{profile:<hash>|global}:/api/pathway:{params-json}`
- TTL: 1 hour
- Invalidation: tag sets ("pathway", "search") via POST /cache/invalidate

The key includes the last two conversation turns, so a follow-up like "show
me more" is not answered from another conversation's entry.
"""
import json
import time
from typing import Any, Dict, Iterable, Optional, Sequence

from pathways.core.cache import CacheClient, hash_text
from pathways.core.config import CacheSettings
from pathways.core.logging import get_logger
from pathways.core.metrics import record_cache_hit, record_cache_miss
from pathways.services.ai.schema import ConversationTurn, UserProfile

logger = get_logger(__name__)

PATHWAY_ENDPOINT = "/api/pathway"
CONTEXT_TURNS = 2
CONTEXT_CHARS = 100


def generate_cache_key(
    endpoint: str,
    params: Dict[str, Any],
    profile_summary: Optional[str] = None,
    version: str = "v1",
) -> str:
    """Deterministic key: sorted params, values lowercased and trimmed, None dropped."""
    normalized = {}
    for key in sorted(params):
        value = params[key]
        if value is None:
            continue
        if isinstance(value, (dict, list, tuple)):
            normalized[key] = json.dumps(value, separators=(",", ":"))
        else:
            normalized[key] = str(value).lower().strip()

    base_key = f"{endpoint}:{json.dumps(normalized, separators=(',', ':'))}"
    if profile_summary:
        return f"cache:{version}:profile:{hash_text(profile_summary)[:8]}:{base_key}"
    return f"cache:{version}:global:{base_key}"


def pathway_cache_params(
    message: str,
    history: Sequence[ConversationTurn],
    profile: Optional[UserProfile],
) -> Dict[str, Any]:
    recent = " | ".join(turn.content[:CONTEXT_CHARS] for turn in list(history)[-CONTEXT_TURNS:])
    return {
        "message": message.lower().strip(),
        "recentContext": recent.lower().strip(),
        "profileInterests": ",".join(profile.interests) if profile else "",
        "profileEducation": (profile.education_level if profile else None) or "",
        "profileCareerGoals": ",".join(profile.career_goals) if profile else "",
    }


class PathwayCache:
    """Tagged, versioned cache entries for pathway responses."""

    def __init__(self, client: CacheClient, settings: Optional[CacheSettings] = None):
        self.client = client
        self.settings = settings or CacheSettings()

    @property
    def enabled(self) -> bool:
        return self.settings.enabled and self.client.available

    def key_for(
        self,
        message: str,
        history: Sequence[ConversationTurn],
        profile: Optional[UserProfile],
    ) -> str:
        return generate_cache_key(
            PATHWAY_ENDPOINT,
            pathway_cache_params(message, history, profile),
            profile.summary if profile else None,
            self.settings.version,
        )

    async def get(self, key: str) -> Optional[Any]:
        """
        Cached response data for key.

        Returns:
            The stored data if found and of the current version, None otherwise
        """
        if not self.enabled:
            return None

        entry = await self.client.get(key)
        if not isinstance(entry, dict) or entry.get("version") != self.settings.version:
            record_cache_miss("pathway")
            logger.debug("cache_miss", cache_type="pathway", key=key)
            return None

        record_cache_hit("pathway")
        logger.debug("cache_hit", cache_type="pathway", key=key)
        return entry.get("data")

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        tags: Optional[Iterable[str]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> bool:
        if not self.enabled:
            return False

        tags = list(self.settings.tags if tags is None else tags)
        entry = {
            "data": value,
            "timestamp": int(time.time() * 1000),
            "tags": tags,
            "version": self.settings.version,
            "metadata": metadata or {},
        }
        success = await self.client.set(key, entry, ttl or self.settings.ttl_seconds, tags)
        if not success:
            logger.warning("cache_set_failed", cache_type="pathway", key=key)
        return success

    async def invalidate_tags(self, tags: Iterable[str]) -> int:
        return await self.client.invalidate_tags(tags)
