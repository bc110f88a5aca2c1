"""Per-identity admission control.

Each identity gets a fixed window that opens on its first request and lasts
`window_s` seconds. Within a window at most `limit` requests are admitted;
further requests are rejected until the window expires, at which point the
next request opens a fresh window. Rejected requests do not extend or
otherwise change the window.

The limiter can be disabled by setting limit=0 or window_s=0, in which case
every request is admitted.

Example:
    governor = RequestGovernor(limit=60, window_s=60)

    admission = governor.admit(governor.identity(api_key, client_host))
    if not admission.allowed:
        reject(retry_after=admission.reset_in_s)
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable

TimeFn = Callable[[], float]

ANONYMOUS = "anonymous"


@dataclass(frozen=True)
class Admission:
    allowed: bool
    limit: int
    remaining: int
    reset_in_s: float

    @property
    def retry_after_s(self) -> int:
        """Whole seconds a rejected caller should wait (at least 1)."""
        return max(1, math.ceil(self.reset_in_s))


@dataclass
class _Window:
    started_at: float
    count: int = 0


class RequestGovernor:
    """Fixed-window request counter keyed by caller identity.

    Attributes:
        limit: Maximum admitted requests per identity per window.
        window_s: Window duration in seconds.
    """

    # Sweep expired windows once the table grows past this many identities.
    _SWEEP_THRESHOLD = 1024

    def __init__(
        self,
        *,
        limit: int = 60,
        window_s: float = 60.0,
        now_fn: TimeFn | None = None,
    ) -> None:
        self.limit = max(0, int(limit))
        self.window_s = max(0.0, float(window_s))
        self._now = now_fn or time.monotonic
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self._enabled = self.limit > 0 and self.window_s > 0

    @property
    def enabled(self) -> bool:
        return self._enabled

    @staticmethod
    def identity(api_key: str | None, client_host: str | None) -> str:
        return f"{api_key or ANONYMOUS}::{client_host or ''}"

    def admit(self, identity: str) -> Admission:
        """Record a request for `identity` and decide whether it may proceed."""
        if not self._enabled:
            return Admission(allowed=True, limit=self.limit, remaining=self.limit, reset_in_s=0.0)

        with self._lock:
            now = self._now()
            if len(self._windows) > self._SWEEP_THRESHOLD:
                self._sweep(now)

            window = self._windows.get(identity)
            if window is None or now - window.started_at >= self.window_s:
                window = _Window(started_at=now)
                self._windows[identity] = window

            reset_in_s = max(0.0, window.started_at + self.window_s - now)
            if window.count >= self.limit:
                return Admission(allowed=False, limit=self.limit, remaining=0, reset_in_s=reset_in_s)

            window.count += 1
            return Admission(
                allowed=True,
                limit=self.limit,
                remaining=self.limit - window.count,
                reset_in_s=reset_in_s,
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _sweep(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if now - w.started_at >= self.window_s]
        for k in expired:
            del self._windows[k]
