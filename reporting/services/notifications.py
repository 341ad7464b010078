"""Notification fan-out for workflow events.

The engine hands every event to a dispatcher after its transaction commits and
never looks at the outcome. Delivery over email/SMS/push/Slack/Teams is done by
separate channel workers reading the Redis queue; in-app notifications are
written straight to the database.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from typing import Protocol

from redis import Redis
from sqlalchemy.orm import Session, sessionmaker

from reporting.core.config import Settings
from reporting.core.redis import get_redis
from reporting.db.base import utc_now
from reporting.db.models.user import Department, Role, User
from reporting.db.session import session_scope
from reporting.services.store import ReportStore
from reporting.utils.badges import invalidate_badge
from reporting.utils.notify import notify

logger = logging.getLogger("reporting.notifications")

REPORT_SUBMITTED = "report_submitted"
APPROVAL_REQUIRED = "approval_required"
REPORT_APPROVED = "report_approved"
REPORT_REJECTED = "report_rejected"

GM_POOL = "gm_pool"


def department_managers(department: Department) -> str:
    return f"department_managers:{department.value}"


def user_selector(user_id: str) -> str:
    return f"user:{user_id}"


@dataclass(frozen=True)
class NotificationEvent:
    type: str
    report_id: str
    recipient_selector: str
    payload: dict = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: utc_now().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationDispatcher(Protocol):
    def enqueue(self, event: NotificationEvent) -> None: ...


def resolve_recipients(store: ReportStore, selector: str) -> list[User]:
    """Turn a recipient selector into the active users it names."""
    kind, _, arg = selector.partition(":")
    if kind == "user":
        user = store.db.get(User, arg)
        return [user] if user is not None and user.is_active else []
    if kind == "department_managers":
        return store.users_by_role(Role.LINE_MANAGER, Department(arg))
    if kind == GM_POOL:
        return store.users_by_role(Role.GM)
    logger.warning("Unknown recipient selector %r", selector)
    return []


def _message(event: NotificationEvent) -> str:
    p = event.payload
    ref = p.get("report_number") or event.report_id
    title = p.get("title") or ""
    if event.type == REPORT_SUBMITTED:
        return f"Report {ref} ({title}) was submitted for your review."
    if event.type == APPROVAL_REQUIRED:
        return f"Report {ref} ({title}) is waiting for your approval."
    if event.type == REPORT_APPROVED:
        return f"Report {ref} ({title}) was approved."
    if event.type == REPORT_REJECTED:
        reason = p.get("reason")
        if reason:
            return f"Report {ref} ({title}) was rejected: {reason}"
        return f"Report {ref} ({title}) was rejected."
    return f"Report {ref} was updated."


class RedisQueueDispatcher:
    """Push events onto a Redis list consumed by the channel workers."""

    def __init__(self, settings: Settings, client: Redis | None = None):
        self._settings = settings
        self._client = client

    def _redis(self) -> Redis | None:
        return self._client if self._client is not None else get_redis(self._settings.REDIS_URL)

    def enqueue(self, event: NotificationEvent) -> None:
        r = self._redis()
        if r is None:
            logger.warning("Notification %s for report %s dropped: queue unavailable", event.type, event.report_id)
            return
        message = event.to_dict()
        message["channels"] = self._settings.notification_channels()
        r.rpush(self._settings.NOTIFICATION_QUEUE_KEY, json.dumps(message, ensure_ascii=False, default=str))


class InAppNotificationDispatcher:
    """Write unread in-app notifications for every resolved recipient."""

    def __init__(self, session_factory: sessionmaker[Session], settings: Settings, client: Redis | None = None):
        self._session_factory = session_factory
        self._settings = settings
        self._client = client

    def enqueue(self, event: NotificationEvent) -> None:
        with session_scope(self._session_factory) as db:
            recipients = resolve_recipients(ReportStore(db), event.recipient_selector)
            message = _message(event)
            for u in recipients:
                notify(db, u.id, message, report_id=event.report_id, type=event.type)
            db.commit()
            user_ids = [u.id for u in recipients]

        r = self._client if self._client is not None else get_redis(self._settings.REDIS_URL)
        for uid in user_ids:
            invalidate_badge(uid, r)


class FanoutDispatcher:
    """Hand each event to every dispatcher; one failing channel does not stop the others."""

    def __init__(self, *dispatchers: NotificationDispatcher):
        self.dispatchers = list(dispatchers)

    def enqueue(self, event: NotificationEvent) -> None:
        for d in self.dispatchers:
            try:
                d.enqueue(event)
            except Exception:
                logger.exception("Dispatcher %s failed for %s on report %s", type(d).__name__, event.type, event.report_id)


def build_dispatcher(settings: Settings, session_factory: sessionmaker[Session]) -> FanoutDispatcher:
    dispatchers: list[NotificationDispatcher] = [RedisQueueDispatcher(settings)]
    if settings.IN_APP_NOTIFICATIONS:
        dispatchers.append(InAppNotificationDispatcher(session_factory, settings))
    return FanoutDispatcher(*dispatchers)
