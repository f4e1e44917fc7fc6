"""Prompt Analytics Cache - Redis-backed and in-memory cache with TTL and pattern invalidation."""
from __future__ import annotations

import asyncio
import fnmatch
import json
import re
import time
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, TypeVar

import redis.asyncio as redis
import structlog
from pydantic import Field, SecretStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import CacheError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class Cache(ABC):
    """Key/value cache port. Values must be JSON-serialisable."""

    @abstractmethod
    async def connect(self) -> None: ...
    @abstractmethod
    async def disconnect(self) -> None: ...
    @abstractmethod
    async def get(self, key: str) -> Any | None: ...
    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...
    @abstractmethod
    async def delete(self, *keys: str) -> int: ...
    @abstractmethod
    async def keys(self, pattern: str) -> list[str]: ...

    def escape(self, value: str) -> str:
        """Quote glob metacharacters so value matches only itself in a pattern."""
        return re.sub(r"([*?\[])", r"[\1]", value)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a glob pattern."""
        matched = await self.keys(pattern)
        if not matched:
            return 0
        deleted = await self.delete(*matched)
        logger.debug("cache_pattern_invalidated", pattern=pattern, deleted=deleted)
        return deleted


class RedisSettings(BaseSettings):
    """Redis connection settings from environment."""
    host: str = Field(default="localhost")
    port: int = Field(default=6379, ge=1, le=65535)
    password: SecretStr | None = Field(default=None)
    db: int = Field(default=0, ge=0, le=15)
    ssl: bool = Field(default=False)
    max_connections: int = Field(default=50, ge=1, le=1000)
    socket_timeout: float = Field(default=5.0, gt=0)
    socket_connect_timeout: float = Field(default=5.0, gt=0)
    retry_on_timeout: bool = Field(default=True)
    decode_responses: bool = Field(default=True)
    key_prefix: str = Field(default="prompt-analytics:")
    connect_retries: int = Field(default=3, ge=1, le=10)
    connect_base_delay: float = Field(default=1.0, ge=0.0)
    model_config = SettingsConfigDict(env_prefix="REDIS_", env_file=".env", extra="ignore")


class RedisCache(Cache):
    """Async Redis cache with key namespacing and JSON values."""

    def __init__(
        self, settings: RedisSettings | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._settings = settings or RedisSettings()
        self._client: redis.Redis | None = None
        self._sleep = sleep

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def _make_key(self, key: str) -> str:
        """Apply key prefix for namespace isolation."""
        if key.startswith(self._settings.key_prefix):
            return key
        return f"{self._settings.key_prefix}{key}"

    def _strip_prefix(self, key: str) -> str:
        return key[len(self._settings.key_prefix):] if key.startswith(self._settings.key_prefix) else key

    async def connect(self) -> None:
        """Open the connection, retrying transient failures with exponential backoff."""
        if self._client is not None:
            return
        retries = self._settings.connect_retries
        last_error: Exception | None = None
        for attempt in range(retries):
            try:
                self._client = redis.Redis(
                    host=self._settings.host, port=self._settings.port,
                    password=self._settings.password.get_secret_value() if self._settings.password else None,
                    db=self._settings.db, ssl=self._settings.ssl,
                    decode_responses=self._settings.decode_responses,
                    socket_timeout=self._settings.socket_timeout,
                    socket_connect_timeout=self._settings.socket_connect_timeout,
                    retry_on_timeout=self._settings.retry_on_timeout,
                    max_connections=self._settings.max_connections,
                )
                await self._client.ping()
                logger.info("redis_connected", host=self._settings.host, db=self._settings.db)
                return
            except (TimeoutError, redis.RedisError, OSError) as e:
                last_error = e
                self._client = None
                if attempt < retries - 1:
                    delay = self._settings.connect_base_delay * (2 ** attempt)
                    logger.warning("redis_connect_retry", attempt=attempt + 1,
                                   max_retries=retries, delay=delay, error=str(e))
                    await self._sleep(delay)
        raise CacheError(
            f"Failed to connect to Redis after {retries} attempts: {last_error}",
            operation="cache.connect", cause=last_error,
        )

    async def disconnect(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
            logger.info("redis_disconnected")

    def _ensure_connected(self) -> redis.Redis:
        if not self._client:
            raise CacheError("Redis client not connected", operation="cache")
        return self._client

    async def get(self, key: str) -> Any | None:
        client = self._ensure_connected()
        try:
            value = await client.get(self._make_key(key))
        except redis.RedisError as e:
            logger.warning("redis_get_error", key=key, error=str(e))
            raise CacheError(f"Failed to get key: {e}", operation="cache.get", cause=e) from e
        if value is None:
            return None
        try:
            return self._deserialize(value)
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning("redis_value_undecodable", key=key, error=str(e))
            raise CacheError(f"Undecodable value for key: {e}", operation="cache.get", cause=e) from e

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        client = self._ensure_connected()
        try:
            await client.set(self._make_key(key), self._serialize(value), ex=ttl)
        except redis.RedisError as e:
            logger.warning("redis_set_error", key=key, error=str(e))
            raise CacheError(f"Failed to set key: {e}", operation="cache.set", cause=e) from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        client = self._ensure_connected()
        try:
            return await client.delete(*(self._make_key(k) for k in keys))
        except redis.RedisError as e:
            raise CacheError(f"Failed to delete keys: {e}", operation="cache.delete", cause=e) from e

    async def keys(self, pattern: str) -> list[str]:
        client = self._ensure_connected()
        try:
            return [self._strip_prefix(k) async for k in client.scan_iter(match=self._make_key(pattern))]
        except redis.RedisError as e:
            raise CacheError(f"Failed to scan keys: {e}", operation="cache.keys", cause=e) from e

    def escape(self, value: str) -> str:
        return re.sub(r"([*?\[\]\\])", r"\\\1", value)

    def _serialize(self, value: Any) -> str:
        return json.dumps(value, default=str)

    def _deserialize(self, value: str | bytes) -> Any:
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return json.loads(value)


class CacheAside:
    """Read-through helper over a Cache.

    Cache failures are logged and treated as misses so a degraded cache never
    fails a read or a write path.
    """

    def __init__(self, cache: Cache, default_ttl: int = 3600) -> None:
        self._cache = cache
        self._default_ttl = default_ttl

    async def get_or_load(
        self, key: str, adapter: TypeAdapter[T], loader: Callable[[], Awaitable[T]],
        ttl: int | None = None,
    ) -> T:
        cached = await self._safe_get(key)
        if cached is not None:
            try:
                value = adapter.validate_python(cached)
                logger.debug("cache_hit", key=key)
                return value
            except PydanticValidationError:
                logger.warning("cache_entry_invalid", key=key)
        logger.debug("cache_miss", key=key)
        value = await loader()
        await self.put(key, adapter, value, ttl)
        return value

    async def put(self, key: str, adapter: TypeAdapter[T], value: T, ttl: int | None = None) -> None:
        try:
            await self._cache.set(key, adapter.dump_python(value, mode="json"), ttl or self._default_ttl)
        except CacheError as e:
            logger.warning("cache_set_failed", key=key, error=str(e))

    async def drop(self, *keys: str) -> None:
        try:
            await self._cache.delete(*keys)
        except CacheError as e:
            logger.warning("cache_delete_failed", keys=list(keys), error=str(e))

    async def invalidate(self, *patterns: str) -> None:
        for pattern in patterns:
            try:
                await self._cache.delete_pattern(pattern)
            except CacheError as e:
                logger.warning("cache_invalidation_failed", pattern=pattern, error=str(e))

    async def invalidate_prefix(self, *prefixes: str) -> None:
        """Invalidate every key starting with one of the literal prefixes."""
        await self.invalidate(*(f"{self._cache.escape(prefix)}*" for prefix in prefixes))

    async def _safe_get(self, key: str) -> Any | None:
        try:
            return await self._cache.get(key)
        except CacheError as e:
            logger.warning("cache_get_failed", key=key, error=str(e))
            return None


class InMemoryCache(Cache):
    """Process-local cache for development and tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, tuple[Any, float | None]] = {}
        self._clock = clock

    async def connect(self) -> None:
        logger.info("inmemory_cache_connected")

    async def disconnect(self) -> None:
        self._entries.clear()

    def _live(self, key: str) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return False
        expires_at = entry[1]
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return False
        return True

    async def get(self, key: str) -> Any | None:
        if not self._live(key):
            return None
        try:
            return json.loads(self._entries[key][0])
        except ValueError as e:
            raise CacheError(f"Undecodable value for key: {e}", operation="cache.get", cause=e) from e

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        self._entries[key] = (json.dumps(value, default=str), expires_at)

    async def delete(self, *keys: str) -> int:
        deleted = 0
        for key in keys:
            if self._live(key):
                del self._entries[key]
                deleted += 1
        return deleted

    async def keys(self, pattern: str) -> list[str]:
        return [k for k in list(self._entries) if fnmatch.fnmatchcase(k, pattern) and self._live(k)]
