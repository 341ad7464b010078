import enum
import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from reporting.db.base import Base, utc_now


class SignatureType(str, enum.Enum):
    MANAGER = "manager_signature"
    GM = "gm_signature"


class ReportSignature(Base):
    """Proof of one approval. Append-only: rows are never updated or deleted."""

    __tablename__ = "report_signatures"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    report_id: Mapped[str] = mapped_column(ForeignKey("reports.id"), index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)

    signature_type: Mapped[SignatureType] = mapped_column(Enum(SignatureType))
    signed_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now, index=True)
    comments: Mapped[str | None] = mapped_column(String(1000), nullable=True)
