"""baseline: users, reports, signatures, attachments, audit and workflow logs, notifications

Revision ID: 20261019090000
Revises:
Create Date: 2026-10-19T09:00:00Z
"""

from alembic import op
import sqlalchemy as sa  # noqa: F401

# revision identifiers, used by Alembic.
revision = "20261019090000"
down_revision = None
branch_labels = None
depends_on = None

TABLES = (
    "notifications",
    "workflow_logs",
    "audit_logs",
    "report_attachments",
    "report_signatures",
    "reports",
    "users",
)


def upgrade() -> None:
    # reporting.db.models imports every model file, so metadata is complete.
    # create_all also creates shared enum types (e.g. department) only once.
    from reporting.db.base import Base
    import reporting.db.models  # noqa: F401

    bind = op.get_bind()
    Base.metadata.create_all(bind=bind)


def downgrade() -> None:
    for name in TABLES:
        op.drop_table(name)
