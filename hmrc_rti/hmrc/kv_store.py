"""
Scoped key-value stores.

Used for the persisted fraud-prevention device identifier, one-time OAuth
state values and encrypted token records. Redis backs them in deployed
environments; the in-memory store serves tests and single-process use.
"""

import threading
import time
from typing import Dict, Optional, Tuple

import redis

from hmrc_rti.config import Config
from hmrc_rti.simple_logger import get_logger

logger = get_logger("kv_store")


class KeyValueStore:
    """Minimal string key-value interface"""

    def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        raise NotImplementedError

    def set_if_absent(self, key: str, value: str) -> str:
        """Store value unless key exists; return whichever value is stored."""
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def pop(self, key: str) -> Optional[str]:
        value = self.get(key)
        if value is not None:
            self.delete(key)
        return value


class InMemoryStore(KeyValueStore):
    """Thread-safe dict store with optional per-key TTL"""

    def __init__(self, prefix: str = ''):
        self.prefix = prefix
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()

    def _key(self, key):
        return f"{self.prefix}{key}"

    def _live(self, key):
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and time.time() >= expires_at:
            del self._data[key]
            return None
        return value

    def get(self, key):
        with self._lock:
            return self._live(self._key(key))

    def _sweep(self, now):
        expired = [k for k, (_, expires_at) in self._data.items() if expires_at is not None and now >= expires_at]
        for k in expired:
            del self._data[k]

    def set(self, key, value, ttl=None):
        now = time.time()
        expires_at = now + ttl if ttl else None
        with self._lock:
            self._data[self._key(key)] = (value, expires_at)
            # Clean up expired entries
            self._sweep(now)

    def set_if_absent(self, key, value):
        with self._lock:
            existing = self._live(self._key(key))
            if existing is not None:
                return existing
            self._data[self._key(key)] = (value, None)
            return value

    def delete(self, key):
        with self._lock:
            return self._data.pop(self._key(key), None) is not None

    def pop(self, key):
        with self._lock:
            value = self._live(self._key(key))
            self._data.pop(self._key(key), None)
            return value


class RedisStore(KeyValueStore):
    """Redis-backed store; keys are namespaced by prefix"""

    def __init__(self, client, prefix: str = 'hmrc:'):
        self.client = client
        self.prefix = prefix

    def _key(self, key):
        return f"{self.prefix}{key}"

    def get(self, key):
        return self.client.get(self._key(key))

    def set(self, key, value, ttl=None):
        if ttl:
            self.client.setex(self._key(key), ttl, value)
        else:
            self.client.set(self._key(key), value)

    def set_if_absent(self, key, value):
        # SET NX keeps the first writer's value when two callers race
        if self.client.set(self._key(key), value, nx=True):
            return value
        return self.client.get(self._key(key))

    def delete(self, key):
        return bool(self.client.delete(self._key(key)))

    def pop(self, key):
        full_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.get(full_key)
        pipe.delete(full_key)
        value, _ = pipe.execute()
        return value


def create_store(prefix: str = 'hmrc:', config=Config) -> KeyValueStore:
    """Redis store when configured and reachable, otherwise in-memory."""
    if config.DISABLE_REDIS or not config.REDIS_URL:
        logger.info("Redis not configured, using in-memory store for '%s'", prefix)
        return InMemoryStore(prefix=prefix)

    try:
        client = redis.from_url(config.REDIS_URL, decode_responses=True)
        client.ping()
        logger.info("Redis connected for store '%s'", prefix)
        return RedisStore(client, prefix=prefix)
    except redis.RedisError as e:
        logger.warning(f"Redis not available for store '{prefix}', using in-memory fallback: {e}")
        return InMemoryStore(prefix=prefix)
