import enum
import uuid

from sqlalchemy import String, Boolean, Enum
from sqlalchemy.orm import Mapped, mapped_column

from reporting.db.base import Base


class Role(str, enum.Enum):
    GENERAL_STAFF = "general_staff"
    LINE_MANAGER = "line_manager"
    GM = "gm"


class Department(str, enum.Enum):
    PROJECT_SUPPORT = "project_support"
    DOC_MANAGEMENT = "doc_management"
    QS = "qs"
    CONTRACTS_MANAGEMENT = "contracts_management"
    BUSINESS_ASSURANCE = "business_assurance"


ROLE_LABELS = {
    Role.GENERAL_STAFF: "General Staff",
    Role.LINE_MANAGER: "Line Manager",
    Role.GM: "General Manager",
}

DEPARTMENT_LABELS = {
    Department.PROJECT_SUPPORT: "Project Support",
    Department.DOC_MANAGEMENT: "Document Management",
    Department.QS: "Quantity Surveying",
    Department.CONTRACTS_MANAGEMENT: "Contracts Management",
    Department.BUSINESS_ASSURANCE: "Business Assurance",
}

# Prefix used in report numbers, e.g. PS-2026-0001
DEPARTMENT_CODES = {
    Department.PROJECT_SUPPORT: "PS",
    Department.DOC_MANAGEMENT: "DM",
    Department.QS: "QS",
    Department.CONTRACTS_MANAGEMENT: "CM",
    Department.BUSINESS_ASSURANCE: "BA",
}


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username: Mapped[str] = mapped_column(String(80), unique=True, index=True)
    full_name: Mapped[str] = mapped_column(String(120), default="")
    email: Mapped[str] = mapped_column(String(255), default="")
    phone: Mapped[str] = mapped_column(String(40), default="")

    role: Mapped[Role] = mapped_column(Enum(Role), index=True, default=Role.GENERAL_STAFF)
    department: Mapped[Department] = mapped_column(Enum(Department), index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    @property
    def role_label(self) -> str:
        return ROLE_LABELS.get(self.role, self.role.value)

    @property
    def display_name(self) -> str:
        return self.full_name or self.username or self.id
