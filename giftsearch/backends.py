"""Storage backends: Redis primary with in-memory/file fallbacks.

Two narrow contracts live here:

* :class:`KeyValueStore` - durable ``load``/``save`` of opaque bytes, used by
  the usage learner.
* :class:`SharedTier` - the optional shared layer of the tiered cache
  (``get``/``set_with_ttl``/``ping``).

Redis errors are logged and turned into misses or no-ops; nothing here raises
into the search path.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol

import redis

from .config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


class KeyValueStore(Protocol):
    def load(self, key: str) -> Optional[bytes]: ...

    def save(self, key: str, value: bytes) -> None: ...


class SharedTier(Protocol):
    def get(self, key: str) -> Optional[bytes]: ...

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None: ...

    def ping(self) -> bool: ...


@dataclass
class RedisKeyValueStore:
    client: redis.Redis

    def load(self, key: str) -> Optional[bytes]:
        try:
            data = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis load failed for %s: %s", key, exc)
            return None
        return data or None

    def save(self, key: str, value: bytes) -> None:
        try:
            self.client.set(key, value)
        except redis.RedisError as exc:
            logger.warning("Redis save failed for %s: %s", key, exc)


@dataclass
class RedisSharedTier:
    client: redis.Redis

    def get(self, key: str) -> Optional[bytes]:
        try:
            data = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("Redis get failed: %s", exc)
            return None
        return data or None

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        try:
            self.client.setex(key, ttl_seconds, value)
        except redis.RedisError as exc:
            logger.warning("Redis set failed: %s", exc)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError:
            return False


class InMemoryKeyValueStore:
    def __init__(self) -> None:
        self._store: Dict[str, bytes] = {}
        self._lock = threading.Lock()
        self.saves = 0

    def load(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._store.get(key)

    def save(self, key: str, value: bytes) -> None:
        with self._lock:
            self._store[key] = value
            self.saves += 1


class InMemorySharedTier:
    """Process-local stand-in for a shared tier, honouring TTLs."""

    def __init__(self) -> None:
        self._store: Dict[str, tuple[float, bytes]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            value = self._store.get(key)
            if not value:
                return None
            expires_at, payload = value
            if expires_at < time.time():
                self._store.pop(key, None)
                return None
            return payload

    def set_with_ttl(self, key: str, value: bytes, ttl_seconds: int) -> None:
        with self._lock:
            self._store[key] = (time.time() + ttl_seconds, value)

    def ping(self) -> bool:
        return True


class FileKeyValueStore:
    """One file per key under ``directory``; survives restarts without Redis."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()

    def _path(self, key: str) -> Path:
        safe = "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in key)
        return self.directory / f"{safe}.json"

    def load(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        with self._lock:
            try:
                return path.read_bytes()
            except FileNotFoundError:
                return None
            except OSError as exc:
                logger.warning("Failed to read %s: %s", path, exc)
                return None

    def save(self, key: str, value: bytes) -> None:
        path = self._path(key)
        with self._lock:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                tmp = path.with_suffix(".tmp")
                tmp.write_bytes(value)
                tmp.replace(path)
            except OSError as exc:
                logger.warning("Failed to write %s: %s", path, exc)


def connect_redis(config: Settings = default_settings) -> Optional[redis.Redis]:
    """Return a live Redis client, or ``None`` when Redis is disabled or down."""

    if not config.redis_enabled:
        logger.info("Redis disabled by configuration")
        return None
    try:
        client = redis.Redis(host=config.redis_host, port=config.redis_port, decode_responses=False)
        client.ping()
    except redis.RedisError:
        logger.warning("Redis not available at %s:%s, using local storage", config.redis_host, config.redis_port)
        return None
    logger.info("Using Redis at %s:%s", config.redis_host, config.redis_port)
    return client


def build_key_value_store(client: Optional[redis.Redis], config: Settings = default_settings) -> KeyValueStore:
    if client is not None:
        return RedisKeyValueStore(client)
    if config.usage_store_path:
        logger.info("Persisting usage statistics under %s", config.usage_store_path)
        return FileKeyValueStore(config.usage_store_path)
    logger.warning("No durable store configured; usage statistics will not survive restarts")
    return InMemoryKeyValueStore()


def build_shared_tier(client: Optional[redis.Redis]) -> Optional[SharedTier]:
    return RedisSharedTier(client) if client is not None else None
