import enum
from datetime import datetime

from sqlalchemy import Integer, String, Text, DateTime, Enum
from sqlalchemy.orm import Mapped, mapped_column

from reporting.db.base import Base, utc_now


class AuditAction(str, enum.Enum):
    CREATED = "created"
    UPDATED = "updated"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    SIGNED = "signed"
    DOWNLOADED = "downloaded"
    UPLOADED = "uploaded"
    DELETED = "deleted"


class AuditLog(Base):
    """Append-only record of every state-changing action on a report.

    Written in the same transaction as the change it describes, so a report is
    never left in a state the log does not account for.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[AuditAction] = mapped_column(Enum(AuditAction), index=True)
    user_id: Mapped[str] = mapped_column(String(36), index=True)
    report_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)

    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    details: Mapped[str] = mapped_column(Text, default="")

    from_status: Mapped[str] = mapped_column(String(50), default="")
    to_status: Mapped[str] = mapped_column(String(50), default="")
