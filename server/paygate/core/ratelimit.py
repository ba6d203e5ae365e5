"""Sliding-window rate limiter keyed by device_id.

Windows live in a fixed number of shards, each a dict guarded by its own
lock, so two requests for the same key serialize while unrelated keys
rarely contend. The check itself never awaits: once it starts it runs to
completion, so a cancelled request either has its admission recorded or
never touched the window.
"""

from __future__ import annotations

import asyncio
import math
import threading
import time
import zlib
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

import structlog

log = structlog.get_logger()


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


@dataclass(frozen=True)
class RateDecision:
    admitted: bool
    remaining: int
    retry_after: int = 0  # seconds, only meaningful when not admitted


@dataclass
class _Shard:
    lock: threading.Lock = field(default_factory=threading.Lock)
    windows: dict[str, deque[int]] = field(default_factory=dict)


class SlidingWindowRateLimiter:
    """At most ``max_requests`` admissions per key in any trailing window."""

    def __init__(
        self,
        max_requests: int = 30,
        window_seconds: float = 60.0,
        idle_eviction_seconds: float = 300.0,
        shards: int = 16,
        clock: Callable[[], int] = monotonic_ms,
    ) -> None:
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        self.max_requests = max_requests
        self.window_ms = int(window_seconds * 1000)
        self.idle_ms = int(idle_eviction_seconds * 1000)
        self._clock = clock
        self._shards = [_Shard() for _ in range(max(1, shards))]

    def _shard_for(self, key: str) -> _Shard:
        return self._shards[zlib.crc32(key.encode("utf-8")) % len(self._shards)]

    def check(self, key: str, now_ms: int | None = None) -> RateDecision:
        """Prune, compare and record one request for ``key`` atomically."""
        now = self._clock() if now_ms is None else now_ms
        window_start = now - self.window_ms
        shard = self._shard_for(key)

        with shard.lock:
            window = shard.windows.get(key)
            if window is None:
                window = shard.windows[key] = deque()
            while window and window[0] <= window_start:
                window.popleft()

            if len(window) >= self.max_requests:
                retry_ms = window[0] + self.window_ms - now
                retry_after = min(max(math.ceil(retry_ms / 1000), 1),
                                  math.ceil(self.window_ms / 1000))
                return RateDecision(admitted=False, remaining=0, retry_after=retry_after)

            window.append(now)
            return RateDecision(admitted=True, remaining=self.max_requests - len(window))

    def evict_idle(self, now_ms: int | None = None) -> int:
        """Drop windows with no request in the last ``idle_eviction_seconds``.

        The shard lock is taken once per candidate entry, never for a whole
        sweep.
        """
        now = self._clock() if now_ms is None else now_ms
        cutoff = now - self.idle_ms
        evicted = 0
        for shard in self._shards:
            with shard.lock:
                keys = list(shard.windows)
            for key in keys:
                with shard.lock:
                    window = shard.windows.get(key)
                    if window is not None and (not window or window[-1] <= cutoff):
                        del shard.windows[key]
                        evicted += 1
        return evicted

    def tracked_keys(self) -> int:
        total = 0
        for shard in self._shards:
            with shard.lock:
                total += len(shard.windows)
        return total

    async def run_eviction(self, interval_seconds: float) -> None:
        """Evict idle windows periodically. Runs as a background task."""
        log.info("rate_limit_eviction_started", interval=interval_seconds)
        while True:
            await asyncio.sleep(interval_seconds)
            evicted = self.evict_idle()
            if evicted:
                log.debug("rate_limit_windows_evicted", count=evicted,
                          remaining=self.tracked_keys())
