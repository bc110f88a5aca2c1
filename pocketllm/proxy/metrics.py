"""Process-wide proxy counters.

One `ProxyMetrics` instance is created per app and shared by every request
handler. Counters only go up; they are never persisted and start from zero
on every process start.
"""

from __future__ import annotations

import threading
import time
from typing import Any

COUNTERS = (
    "requests",
    "cache_hits",
    "cache_misses",
    "tokens_streamed",
    "errors",
    "malformed_fragments",
    "rate_limited",
)

_WIRE_NAMES = {
    "requests": "requests",
    "cache_hits": "cacheHits",
    "cache_misses": "cacheMisses",
    "tokens_streamed": "tokensStreamed",
    "errors": "errors",
    "malformed_fragments": "malformedFragments",
    "rate_limited": "rateLimited",
}


class ProxyMetrics:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: dict[str, int] = {name: 0 for name in COUNTERS}
        self.start_ts = int(time.time() * 1000)
        self._started_monotonic = time.monotonic()

    def incr(self, name: str, n: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown counter: {name!r}")
        if n < 0:
            raise ValueError("Counters never decrease")
        with self._lock:
            self._counts[name] += n

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            counts = dict(self._counts)
        out: dict[str, Any] = {_WIRE_NAMES[k]: v for k, v in counts.items()}
        out["startTs"] = self.start_ts
        out["uptimeS"] = round(time.monotonic() - self._started_monotonic, 3)
        return out
