"""
Search Result Cache

Short-lived redis storage for ranked result sets so paginated requests do
not re-run the query, plus the per-requester search_start counter.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

import redis

from forum_search.core.config import settings
from forum_search.core.exceptions import SearchDisabled

logger = logging.getLogger(__name__)

RESULTS_KEY_PREFIX = "search:results:"
LAST_KEY_PREFIX = "search:last:"
SEARCH_START_PREFIX = "search_start:"
SEARCH_START_TTL = 90


def get_redis() -> redis.Redis:
    return redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)


@dataclass
class CachedResults:
    """A ranked result set restored from the cache."""

    entries: list[tuple[int, int, float]]  # (message id, topic id, relevance)
    total: int

    @property
    def message_ids(self) -> list[int]:
        return [entry[0] for entry in self.entries]


class ResultCache:
    """
    Redis-backed result cache keyed by requester identity and query signature.

    Args:
        r: Redis client
        ttl: Seconds a cached result set lives
    """

    def __init__(self, r: redis.Redis, ttl: int = 300):
        self.r = r
        self.ttl = ttl

    @staticmethod
    def key_for(requester: str, signature: str) -> str:
        return f"{RESULTS_KEY_PREFIX}{requester}:{signature}"

    def load(self, requester: str, signature: str) -> Optional[CachedResults]:
        """Return the cached result set, or None when absent or unreadable."""
        raw = self.r.get(self.key_for(requester, signature))
        if not raw:
            return None
        try:
            data = json.loads(raw)
            entries = [(int(m), int(t), float(s)) for m, t, s in data["entries"]]
            return CachedResults(entries=entries, total=int(data["total"]))
        except (ValueError, KeyError, TypeError):
            logger.warning(f"Discarding malformed cached results for {requester}")
            self.r.delete(self.key_for(requester, signature))
            return None

    def store(
        self,
        requester: str,
        signature: str,
        entries: list[tuple[int, int, float]],
        total: int,
    ) -> bool:
        """
        Cache a ranked result set.

        Only the first writer for a key succeeds; returns False when another
        request already stored this result set.
        """
        payload = json.dumps({"entries": [list(e) for e in entries], "total": total})
        written = self.r.set(
            self.key_for(requester, signature), payload, nx=True, ex=self.ttl
        )
        return bool(written)

    def invalidate_previous(self, requester: str, signature: str) -> None:
        """Drop the requester's previous result set once a new search completes."""
        current = self.key_for(requester, signature)
        last_key = f"{LAST_KEY_PREFIX}{requester}"
        previous = self.r.get(last_key)
        if previous and previous != current:
            self.r.delete(previous)
        self.r.set(last_key, current, ex=self.ttl)

    def remove(self, key: str) -> None:
        self.r.delete(key)

    def begin_search(self, requester: str, max_concurrent: int) -> int:
        """
        Count a running search for the requester.

        Raises:
            SearchDisabled: If the requester already has too many searches running
        """
        key = f"{SEARCH_START_PREFIX}{requester}"
        pipe = self.r.pipeline()
        pipe.incr(key)
        pipe.expire(key, SEARCH_START_TTL)
        running, _ = pipe.execute()
        if max_concurrent > 0 and int(running) > max_concurrent:
            logger.warning(f"Too many concurrent searches for {requester}: {running}")
            raise SearchDisabled(code="search_already_running")
        return int(running)

    def finish_search(self, requester: str) -> None:
        """Consider the search complete."""
        self.remove(f"{SEARCH_START_PREFIX}{requester}")
