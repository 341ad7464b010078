from __future__ import annotations

import logging
from typing import Optional

import redis
from redis import Redis

logger = logging.getLogger("reporting.redis")

_clients: dict[str, Redis] = {}


def get_redis(url: str) -> Optional[Redis]:
    """Return a shared Redis client for ``url`` (or None if not reachable)."""
    client = _clients.get(url)
    if client is not None:
        return client
    try:
        client = redis.Redis.from_url(
            url, decode_responses=True, socket_connect_timeout=2, socket_timeout=2
        )
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis unavailable: %s", exc)
        return None
    _clients[url] = client
    return client
