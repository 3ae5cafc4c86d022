"""
Redis-backed geo cache.

Values are JSON strings written with a native TTL, so expiry is handled by
Redis and purge_expired has nothing to do.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any

import redis

logger = logging.getLogger(__name__)


class RedisGeoCache:
    """GeoCachePort implementation over a shared Redis instance."""

    def __init__(self, client: redis.Redis, prefix: str = "clickguard:") -> None:
        self._client = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "clickguard:") -> RedisGeoCache:
        client = redis.Redis.from_url(url, decode_responses=True)
        logger.info("Geo cache connected to Redis at %s", url)
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> dict[str, Any] | None:
        raw = self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding undecodable geo cache entry %s", key)
            self._client.delete(self._key(key))
            return None

    def set(self, key: str, value: dict[str, Any], ttl_seconds: int) -> None:
        self._client.set(self._key(key), json.dumps(value, default=str), ex=max(1, ttl_seconds))

    def purge_expired(self, now: datetime) -> int:
        return 0
