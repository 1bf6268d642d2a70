"""
TTL key-value cache used for profiles, neighbour lists, trend snapshots and
experiment assignments
"""
import pickle
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional, Tuple

import redis
import structlog

logger = structlog.get_logger(__name__)


class Cache(ABC):
    """Abstract TTL key-value store"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        """Return the cached value or None when missing or expired"""

    @abstractmethod
    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        """Store a value, overwriting any previous one"""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key if present"""


class InMemoryCache(Cache):
    """Process-local cache with per-key expiry"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._data: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at is not None and self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)


class RedisCache(Cache):
    """Redis-backed cache. Values are pickled so dataclasses round-trip."""

    def __init__(self, client: redis.Redis, key_prefix: str = "recommender:"):
        self.client = client
        self.key_prefix = key_prefix

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> 'RedisCache':
        client = redis.Redis(
            host=config['host'],
            port=config['port'],
            db=config.get('db', 0),
            password=config.get('password'),
            socket_timeout=config.get('socket_timeout'),
        )
        return cls(client, key_prefix=config.get('key_prefix', 'recommender:'))

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        raw = self.client.get(self._key(key))
        if raw is None:
            return None
        return pickle.loads(raw)

    def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = pickle.dumps(value)
        if ttl:
            self.client.setex(self._key(key), int(ttl), payload)
        else:
            self.client.set(self._key(key), payload)

    def delete(self, key: str) -> None:
        self.client.delete(self._key(key))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.warning("Redis ping failed", error=str(e))
            return False
