"""Cache-aside storage of completed generations.

The controller never sits in the token path by itself: the pipeline asks it
for a fresh entry, and on a miss calls `record()` only after the engine has
signalled a successful completion. Stale entries are ignored rather than
evicted; the next successful generation for the same key overwrites them.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Sequence

from .store import JsonCollection
from .types import CacheEntry

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class CacheAsideController:
    def __init__(
        self,
        collection: JsonCollection,
        *,
        ttl_ms: int,
        now_fn: Callable[[], int] | None = None,
    ) -> None:
        self._collection = collection
        self._ttl_ms = int(ttl_ms)
        self._now = now_fn or _now_ms

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms

    def is_fresh(self, entry: CacheEntry) -> bool:
        return self._now() - entry.created_at < self._ttl_ms

    async def lookup(self, key: str) -> CacheEntry | None:
        """Return the entry for `key` if present and fresh."""
        doc = await self._collection.read()
        raw = doc["entries"].get(key)
        if not isinstance(raw, dict):
            return None
        entry = CacheEntry.from_dict(key, raw)
        if not self.is_fresh(entry):
            logger.debug("cache entry %s… is stale (age=%dms)", key[:12], self._now() - entry.created_at)
            return None
        return entry

    async def record(self, key: str, tokens: Sequence[str]) -> CacheEntry:
        """Store a completed token sequence, overwriting any prior entry for `key`."""
        entry = CacheEntry(key=key, tokens=tuple(tokens), created_at=self._now())

        def _put(doc: dict[str, Any]) -> None:
            doc["entries"][key] = entry.to_dict()

        await self._collection.update(_put)
        return entry

    async def list_keys(self) -> list[str]:
        doc = await self._collection.read()
        return list(doc["entries"].keys())

    async def clear(self) -> None:
        await self._collection.write({"entries": {}})
