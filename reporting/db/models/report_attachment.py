import enum
import uuid
from datetime import datetime

from sqlalchemy import Integer, String, Boolean, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from reporting.db.base import Base, utc_now


class ApprovalStage(str, enum.Enum):
    INITIAL = "initial"  # uploaded by the creator while drafting
    MANAGER_REVIEW = "manager_review"
    GM_REVIEW = "gm_review"


class ReportAttachment(Base):
    __tablename__ = "report_attachments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    uploaded_by: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)

    file_name: Mapped[str] = mapped_column(String(255))
    stored_name: Mapped[str] = mapped_column(String(255))
    content_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    size: Mapped[int] = mapped_column(Integer, default=0)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    approval_stage: Mapped[ApprovalStage] = mapped_column(Enum(ApprovalStage), default=ApprovalStage.INITIAL)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)

    # Attachments are soft-deactivated, never hard-deleted.
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
