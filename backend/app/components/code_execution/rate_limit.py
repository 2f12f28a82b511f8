"""Rolling-window rate limiting for code runs and submissions.

Every execution is recorded as a timestamped hit under a key for
(kind, candidate, attempt, question). A request is rejected once the hits in
the trailing window exceed the limit. Redis is the production store so limits
hold across API instances; the in-process store covers single-instance
deployments and tests.
"""

from __future__ import annotations

import logging
import math
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Callable, Protocol

import redis

from ...platform.config import settings
from ...platform.errors import RateLimitedError

logger = logging.getLogger(__name__)


class RateLimitStoreUnavailable(RuntimeError):
    pass


class RateLimitStore(Protocol):
    def record(self, key: str, member: str, now: float, window_seconds: int) -> tuple[int, float]:
        """Drop hits older than the window, add ``member`` at ``now``.

        Returns the number of hits now inside the window and the timestamp of
        the oldest one.
        """

    def discard(self, key: str, member: str) -> None:
        """Remove a hit recorded by ``record`` (used for rejected requests)."""


class RedisRateLimitStore:
    """Sorted set per key, scored by hit time."""

    def __init__(self, client: redis.Redis):
        self.client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitStore":
        return cls(redis.Redis.from_url(url, socket_connect_timeout=1, socket_timeout=1))

    def record(self, key: str, member: str, now: float, window_seconds: int) -> tuple[int, float]:
        try:
            pipe = self.client.pipeline()
            pipe.zremrangebyscore(key, "-inf", now - window_seconds)
            pipe.zadd(key, {member: now})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, window_seconds)
            _, _, count, oldest, _ = pipe.execute()
        except (redis.RedisError, OSError) as exc:
            raise RateLimitStoreUnavailable(str(exc)) from exc
        oldest_at = float(oldest[0][1]) if oldest else now
        return int(count), oldest_at

    def discard(self, key: str, member: str) -> None:
        try:
            self.client.zrem(key, member)
        except (redis.RedisError, OSError) as exc:
            raise RateLimitStoreUnavailable(str(exc)) from exc


class InMemoryRateLimitStore:
    def __init__(self):
        self._lock = threading.Lock()
        # key -> (window seconds, hits ordered by time)
        self._hits: dict[str, tuple[int, deque[tuple[float, str]]]] = {}

    def record(self, key: str, member: str, now: float, window_seconds: int) -> tuple[int, float]:
        with self._lock:
            # drop idle keys so the map stays bounded
            for stale in [k for k, (w, hits) in self._hits.items() if not hits or hits[-1][0] <= now - w]:
                del self._hits[stale]
            _, hits = self._hits.setdefault(key, (window_seconds, deque()))
            while hits and hits[0][0] <= now - window_seconds:
                hits.popleft()
            hits.append((now, member))
            return len(hits), hits[0][0]

    def discard(self, key: str, member: str) -> None:
        with self._lock:
            entry = self._hits.get(key)
            if entry is None:
                return
            _, hits = entry
            for hit in hits:
                if hit[1] == member:
                    hits.remove(hit)
                    break

    def clear(self) -> None:
        with self._lock:
            self._hits.clear()


@dataclass(frozen=True)
class RateLimitRule:
    max_requests: int
    window_seconds: int


class ExecutionRateLimiter:
    def __init__(
        self,
        store: RateLimitStore,
        run_rule: RateLimitRule,
        submit_rule: RateLimitRule,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.run_rule = run_rule
        self.submit_rule = submit_rule
        self._clock = clock

    def check(self, candidate_id: int, attempt_id: int, question_id: int, is_submission: bool) -> None:
        """Count one execution and raise RateLimitedError once the window is full.

        Rejected requests are not counted, so a candidate who keeps retrying
        is let through as soon as the oldest hit leaves the window.
        """
        rule = self.submit_rule if is_submission else self.run_rule
        kind = "submit" if is_submission else "run"
        now = self._clock()
        window = max(1, int(rule.window_seconds))
        key = f"code-exec:{kind}:{candidate_id}:{attempt_id}:{question_id}"
        member = f"{now:.6f}:{uuid.uuid4().hex}"

        try:
            count, oldest_at = self.store.record(key, member, now, window)
            if count > rule.max_requests:
                self.store.discard(key, member)
        except RateLimitStoreUnavailable as exc:
            logger.warning("Rate limit store unavailable, skipping check: %s", exc)
            return

        if count > rule.max_requests:
            retry_after = max(1, math.ceil(oldest_at + window - now))
            action = "submissions" if is_submission else "runs"
            logger.info(
                "Code execution rate limited candidate_id=%s attempt_id=%s question_id=%s kind=%s",
                candidate_id, attempt_id, question_id, kind,
            )
            raise RateLimitedError(
                f"Too many {action}. Please wait {retry_after} seconds before trying again.",
                retry_after=retry_after,
            )


def build_rate_limit_store(backend: str | None = None) -> RateLimitStore:
    backend = (backend or settings.RATE_LIMIT_BACKEND or "redis").strip().lower()
    if backend == "memory":
        return InMemoryRateLimitStore()
    if backend == "redis":
        return RedisRateLimitStore.from_url(settings.REDIS_URL)
    raise ValueError(f"Unknown RATE_LIMIT_BACKEND: {backend}")


_limiter: ExecutionRateLimiter | None = None
_limiter_lock = threading.Lock()


def get_rate_limiter() -> ExecutionRateLimiter:
    """FastAPI dependency returning the process-wide limiter."""
    global _limiter
    if _limiter is None:
        with _limiter_lock:
            if _limiter is None:
                _limiter = ExecutionRateLimiter(
                    store=build_rate_limit_store(),
                    run_rule=RateLimitRule(settings.RATE_LIMIT_RUN_MAX, settings.RATE_LIMIT_RUN_WINDOW_SECONDS),
                    submit_rule=RateLimitRule(settings.RATE_LIMIT_SUBMIT_MAX, settings.RATE_LIMIT_SUBMIT_WINDOW_SECONDS),
                )
    return _limiter
