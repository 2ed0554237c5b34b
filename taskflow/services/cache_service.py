"""
Query Cache Service.

Provides a thin TTL cache object with:
  - Role lookup cache (user id → role)
  - Report fallback cache
  - Manual and prefix invalidation

Uses Redis when REDIS_URL is a redis:// URL, falls back to a simple
in-memory dict for development/testing. One ``QueryCache`` is built in
``create_app()`` and stored on ``app.extensions["query_cache"]``.
"""

import json
import logging
import threading
import time

import redis

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300   # 5 minutes


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def __init__(self):
        self._store = {}  # key → (value_json, expire_ts)
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            val, expires = entry
            if expires and time.time() > expires:
                self._store.pop(key, None)
                return None
            return val

    def setex(self, key, ttl_seconds, value):
        with self._lock:
            self._store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        with self._lock:
            for k in keys:
                self._store.pop(k, None)

    def keys(self, pattern):
        """Simple glob matching for 'prefix*' patterns."""
        with self._lock:
            if pattern.endswith("*"):
                prefix = pattern[:-1]
                return [k for k in self._store if k.startswith(prefix)]
            return [k for k in self._store if k == pattern]

    def flushdb(self):
        with self._lock:
            self._store.clear()

    def ping(self):
        return True


def _build_backend(redis_url):
    if redis_url and redis_url.startswith(("redis://", "rediss://")):
        try:
            backend = redis.from_url(redis_url, decode_responses=True)
            backend.ping()
            logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
            return backend
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
    return _MemoryBackend()


class QueryCache:
    """TTL cache with JSON-serialised values.

    Keys are namespaced by ``prefix`` so one Redis database can be shared.
    """

    def __init__(self, redis_url=None, *, default_ttl=DEFAULT_TTL, prefix="taskflow:", backend=None):
        self.default_ttl = default_ttl
        self.prefix = prefix
        self._backend = backend if backend is not None else _build_backend(redis_url)

    @classmethod
    def from_config(cls, config):
        return cls(config.get("REDIS_URL"), default_ttl=config.get("QUERY_CACHE_TTL", DEFAULT_TTL))

    @property
    def backend_type(self):
        return "memory" if isinstance(self._backend, _MemoryBackend) else "redis"

    def _key(self, key):
        return f"{self.prefix}{key}"

    def get(self, key, loader=None, ttl=None):
        """Return the cached value, or None on miss.

        If *loader* is provided, it's called on miss and the result is cached.
        """
        raw = self._backend.get(self._key(key))
        if raw is not None:
            try:
                return json.loads(raw)
            except (json.JSONDecodeError, TypeError):
                pass
        if loader is None:
            return None
        value = loader()
        if value is not None:
            self.set(key, value, ttl=ttl)
        return value

    def set(self, key, value, ttl=None):
        self._backend.setex(self._key(key), ttl or self.default_ttl, json.dumps(value, default=str))

    def invalidate(self, *keys):
        if keys:
            self._backend.delete(*(self._key(k) for k in keys))

    def invalidate_prefix(self, prefix):
        """Remove every key that starts with *prefix* (e.g. ``"report:"``)."""
        keys = self._backend.keys(f"{self._key(prefix)}*")
        if keys:
            self._backend.delete(*keys)
        return len(keys)

    def clear(self):
        """Drop every key in this cache's namespace."""
        return self.invalidate_prefix("")

    def health_check(self):
        """Return cache backend status."""
        try:
            self._backend.ping()
            return {"status": "ok", "backend": self.backend_type}
        except redis.RedisError as exc:
            return {"status": "error", "detail": str(exc)}
