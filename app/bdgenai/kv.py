"""
Key/value store used for the comment cache and per-user rate limits.

Two backends:
- memory: process-local dict with expiry (dev/tests, single worker)
- redis: shared across workers (production)
"""
from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any

from flask import Flask, current_app

logger = logging.getLogger(__name__)

COMMENTS_CACHE_TTL = 300  # seconds
COMMENTS_CACHE_MIN_TOTAL = 20

# bucket -> (limit, window seconds)
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "comment": (10, 60),
    "reply": (20, 60),
    "reaction": (60, 60),
    "post": (5, 60),
    "upload": (20, 60),
    "default": (30, 60),
}


class KVStore:
    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def setex(self, key: str, ttl: int, value: str) -> None:
        raise NotImplementedError

    def delete(self, *keys: str) -> int:
        raise NotImplementedError

    def keys(self, pattern: str) -> list[str]:
        raise NotImplementedError

    def incr_window(self, key: str, window: int) -> tuple[int, int]:
        """Increment a fixed-window counter; returns (count, seconds until the window resets)."""
        raise NotImplementedError


class MemoryKV(KVStore):
    def __init__(self) -> None:
        self._data: dict[str, tuple[str, float | None]] = {}
        self._lock = threading.Lock()

    def _live(self, key: str, now: float) -> tuple[str, float | None] | None:
        item = self._data.get(key)
        if item is None:
            return None
        if item[1] is not None and item[1] <= now:
            del self._data[key]
            return None
        return item

    def get(self, key: str) -> str | None:
        with self._lock:
            item = self._live(key, time.time())
            return item[0] if item else None

    def setex(self, key: str, ttl: int, value: str) -> None:
        with self._lock:
            self._data[key] = (value, time.time() + ttl)

    def delete(self, *keys: str) -> int:
        removed = 0
        with self._lock:
            for key in keys:
                if self._data.pop(key, None) is not None:
                    removed += 1
        return removed

    def keys(self, pattern: str) -> list[str]:
        now = time.time()
        with self._lock:
            return [k for k in list(self._data) if self._live(k, now) and fnmatch.fnmatchcase(k, pattern)]

    def incr_window(self, key: str, window: int) -> tuple[int, int]:
        now = time.time()
        with self._lock:
            item = self._live(key, now)
            if item is None:
                expires_at = now + window
                count = 1
            else:
                count = int(item[0]) + 1
                expires_at = item[1] or now + window
            self._data[key] = (str(count), expires_at)
            return count, max(0, int(round(expires_at - now)))


class RedisKV(KVStore):
    def __init__(self, url: str) -> None:
        import redis

        self.client = redis.Redis.from_url(url, decode_responses=True)

    def get(self, key: str) -> str | None:
        return self.client.get(key)

    def setex(self, key: str, ttl: int, value: str) -> None:
        self.client.setex(key, ttl, value)

    def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(self.client.delete(*keys))

    def keys(self, pattern: str) -> list[str]:
        return list(self.client.scan_iter(match=pattern))

    def incr_window(self, key: str, window: int) -> tuple[int, int]:
        count = int(self.client.incr(key))
        if count == 1:
            self.client.expire(key, window)
        ttl = int(self.client.ttl(key))
        if ttl < 0:
            # key lost its expiry (e.g. a crash between INCR and EXPIRE)
            self.client.expire(key, window)
            ttl = window
        return count, ttl


def kv_from_config(config: dict) -> KVStore:
    backend = (config.get("KV_BACKEND") or "memory").strip().lower()
    if backend == "redis":
        url = (config.get("REDIS_URL") or "").strip()
        if not url:
            raise RuntimeError("KV_BACKEND=redis requires REDIS_URL.")
        return RedisKV(url)
    return MemoryKV()


def init_kv(app: Flask) -> None:
    app.extensions["kv"] = kv_from_config(app.config)


def get_kv() -> KVStore:
    return current_app.extensions["kv"]


# ---------- Cache helpers ----------
def cache_get_json(kv: KVStore, key: str) -> Any | None:
    try:
        raw = kv.get(key)
    except Exception as e:
        logger.warning("Cache read failed for %s: %s", key, e)
        return None
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        kv.delete(key)
        return None


def cache_set_json(kv: KVStore, key: str, value: Any, ttl: int) -> None:
    try:
        kv.setex(key, ttl, json.dumps(value, default=str))
    except Exception as e:
        logger.warning("Cache write failed for %s: %s", key, e)


def invalidate_pattern(kv: KVStore, pattern: str) -> int:
    try:
        keys = kv.keys(pattern)
        return kv.delete(*keys) if keys else 0
    except Exception as e:
        logger.warning("Cache invalidation failed for %s: %s", pattern, e)
        return 0


def comments_cache_key(post_id: int, page: int, sort_by: str) -> str:
    return f"comments:{post_id}:{page}:{sort_by}"


def should_cache_post(total_count: int) -> bool:
    """Only busy threads are worth caching; small ones change too often to matter."""
    return total_count >= COMMENTS_CACHE_MIN_TOTAL


# ---------- Rate limiting ----------
@dataclass(frozen=True)
class RateLimitResult:
    limited: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds

    def to_dict(self) -> dict:
        return {"limited": self.limited, "limit": self.limit, "remaining": self.remaining, "reset": self.reset}


def rate_limit_bucket(action: str) -> str:
    return action if action in RATE_LIMITS else "default"


def rate_limit_key(action: str, user_id: int | str) -> str:
    return f"ratelimit:{rate_limit_bucket(action)}:{user_id}"


def check_rate_limit(kv: KVStore, action: str, user_id: int | str) -> RateLimitResult:
    limit, window = RATE_LIMITS[rate_limit_bucket(action)]
    count, ttl = kv.incr_window(rate_limit_key(action, user_id), window)
    limited = count > limit
    if limited:
        logger.warning("Rate limit hit: bucket=%s user_id=%s count=%s", rate_limit_bucket(action), user_id, count)
    return RateLimitResult(
        limited=limited,
        limit=limit,
        remaining=max(0, limit - count),
        reset=int(time.time()) + ttl,
    )
