# Import all models so SQLAlchemy metadata is fully populated on startup.
from reporting.db.models.user import User
from reporting.db.models.report import Report
from reporting.db.models.report_signature import ReportSignature
from reporting.db.models.report_attachment import ReportAttachment
from reporting.db.models.audit_log import AuditLog
from reporting.db.models.workflow_log import WorkflowLog
from reporting.db.models.notification import Notification


__all__ = [
    "User",
    "Report",
    "ReportSignature",
    "ReportAttachment",
    "AuditLog",
    "WorkflowLog",
    "Notification",
]
