"""Límite de peticiones por ventana fija, indexado por (scope, identidad)."""

from __future__ import annotations

import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from hashlib import sha256

from fastapi import Request

from embudo.core.middleware import client_ip_from

MAX_BUCKETS = 20_000


@dataclass(slots=True)
class RateLimitResult:
    ok: bool
    remaining: int
    retry_after_seconds: int


@dataclass(slots=True)
class _Bucket:
    count: int
    reset_at: float


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


class RateLimiter:
    """Contador en memoria por ventana; cada clave (scope, identidad) es independiente."""

    def __init__(self, *, clock: Callable[[], float] | None = None) -> None:
        self._clock = clock or time.time
        self._buckets: dict[str, _Bucket] = {}

    def _key(self, scope: str, identity: str, window_seconds: int, now: float) -> tuple[str, float]:
        digest = sha256(identity.encode("utf-8")).hexdigest()[:32]
        bucket_index = int(now // window_seconds)
        reset_at = (bucket_index + 1) * window_seconds
        return f"{scope}:{digest}:{bucket_index}", reset_at

    def _prune(self, now: float) -> None:
        if len(self._buckets) <= MAX_BUCKETS:
            return
        for key in [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]:
            del self._buckets[key]

    def hit(self, scope: str, identity: str, window_seconds: int, limit: int) -> RateLimitResult:
        """Registra una petición y devuelve si aún está dentro del límite."""
        window = _clamp(window_seconds, 1, 3600)
        max_hits = _clamp(limit, 1, 100_000)
        now = self._clock()
        key, reset_at = self._key(scope, identity or "unknown", window, now)

        bucket = self._buckets.get(key)
        if bucket is None:
            bucket = _Bucket(count=0, reset_at=reset_at)
            self._buckets[key] = bucket
            self._prune(now)
        bucket.count += 1

        retry_after = max(1, math.ceil(bucket.reset_at - now))
        if bucket.count > max_hits:
            return RateLimitResult(ok=False, remaining=0, retry_after_seconds=retry_after)
        return RateLimitResult(
            ok=True, remaining=max_hits - bucket.count, retry_after_seconds=retry_after
        )

    def reset(self) -> None:
        self._buckets.clear()


def request_identity(request: Request) -> str:
    """Identidad del llamante: IP resuelta más user-agent recortado."""
    ip = client_ip_from(request) or "unknown"
    user_agent = (request.headers.get("user-agent") or "")[:200]
    return f"{ip}|{user_agent}"


rate_limiter = RateLimiter()
