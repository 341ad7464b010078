from __future__ import annotations

import logging

from redis import Redis, RedisError
from sqlalchemy.orm import Session

from reporting.db.models.notification import Notification

logger = logging.getLogger("reporting.badges")

DEFAULT_BADGE_TTL_SECONDS = 15  # small TTL to reduce DB load while keeping near-realtime UX


def _key(user_id: str) -> str:
    return f"badge:{user_id}"


def get_badge_count(
    db: Session,
    user_id: str,
    r: Redis | None = None,
    ttl_seconds: int = DEFAULT_BADGE_TTL_SECONDS,
) -> int:
    """Unread notification count (cached with Redis TTL if available)."""
    if r is not None:
        try:
            v = r.get(_key(user_id))
            if v is not None:
                return int(v)
        except RedisError as exc:
            logger.debug("badge cache read failed for %s: %s", user_id, exc)

    cnt = db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read.is_(False)).count()

    if r is not None:
        try:
            r.setex(_key(user_id), ttl_seconds, int(cnt))
        except RedisError as exc:
            logger.debug("badge cache write failed for %s: %s", user_id, exc)
    return int(cnt)


def invalidate_badge(user_id: str, r: Redis | None = None) -> None:
    if r is None:
        return
    try:
        r.delete(_key(user_id))
    except RedisError as exc:
        logger.debug("badge cache invalidation failed for %s: %s", user_id, exc)
