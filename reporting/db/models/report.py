import enum
import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Text, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from reporting.db.base import Base, utc_now
from reporting.db.models.user import Department


class ReportStatus(str, enum.Enum):
    DRAFT = "draft"
    SUBMITTED = "submitted"
    MANAGER_REVIEW = "manager_review"
    MANAGER_APPROVED = "manager_approved"
    GM_REVIEW = "gm_review"
    COMPLETED = "completed"
    # Legacy rejection kept for rows written by older releases. Never a transition target.
    REJECTED = "rejected"
    MANAGER_REJECTED = "manager_rejected"
    GM_REJECTED = "gm_rejected"


class ReportPriority(str, enum.Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


STATUS_LABELS = {
    ReportStatus.DRAFT: "Draft",
    ReportStatus.SUBMITTED: "Submitted",
    ReportStatus.MANAGER_REVIEW: "Awaiting line manager",
    ReportStatus.MANAGER_APPROVED: "Approved by line manager",
    ReportStatus.GM_REVIEW: "Awaiting general manager",
    ReportStatus.COMPLETED: "Completed",
    ReportStatus.REJECTED: "Rejected",
    ReportStatus.MANAGER_REJECTED: "Rejected by line manager",
    ReportStatus.GM_REJECTED: "Rejected by general manager",
}


class Report(Base):
    __tablename__ = "reports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    report_number: Mapped[str | None] = mapped_column(String(50), nullable=True, unique=True, index=True)

    creator_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    department: Mapped[Department] = mapped_column(Enum(Department), index=True)
    status: Mapped[ReportStatus] = mapped_column(Enum(ReportStatus), index=True, default=ReportStatus.DRAFT)

    title: Mapped[str] = mapped_column(String(200))
    content: Mapped[str] = mapped_column(Text, default="")
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[str] = mapped_column(String(20), default=ReportPriority.MEDIUM.value)
    due_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    last_modified_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    manager_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    gm_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    rejection_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    rejected_by: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Optimistic concurrency token: a stale UPDATE raises StaleDataError on flush.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @property
    def status_label(self) -> str:
        return STATUS_LABELS.get(self.status, getattr(self.status, "value", str(self.status)))
