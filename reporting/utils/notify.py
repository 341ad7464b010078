from __future__ import annotations

from redis import Redis
from sqlalchemy.orm import Session

from reporting.db.models.notification import Notification
from reporting.utils.badges import invalidate_badge


def notify(db: Session, user_id: str, message: str, report_id: str | None = None, type: str = "info") -> Notification:
    """Create an in-app notification (unread).

    Note: Caller should commit the DB session and then invalidate the badge.
    """
    n = Notification(user_id=user_id, report_id=report_id, type=type, message=message[:500], is_read=False)
    db.add(n)
    return n


def list_notifications(db: Session, user_id: str, unread_only: bool = False, limit: int = 50) -> list[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit).all()


def mark_read(db: Session, user_id: str, report_id: str | None = None, r: Redis | None = None) -> int:
    """Mark a user's notifications (optionally only those of one report) as read."""
    q = db.query(Notification).filter(Notification.user_id == user_id, Notification.is_read.is_(False))
    if report_id is not None:
        q = q.filter(Notification.report_id == report_id)
    updated = q.update({"is_read": True}, synchronize_session=False)
    db.commit()
    if updated:
        invalidate_badge(user_id, r)
    return int(updated)
