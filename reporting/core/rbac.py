from __future__ import annotations

from reporting.core.workflow import UPLOAD_STAGES
from reporting.db.models.report import Report, ReportStatus
from reporting.db.models.report_attachment import ApprovalStage, ReportAttachment
from reporting.db.models.user import Role, User


def is_gm(user: User) -> bool:
    return user.role == Role.GM


def is_line_manager(user: User) -> bool:
    return user.role == Role.LINE_MANAGER


def is_department_manager(user: User, report: Report) -> bool:
    return is_line_manager(user) and user.department == report.department


def can_view_report(user: User, report: Report) -> bool:
    """Creator, any GM, or a line manager of the report's department."""
    if not user.is_active:
        return False
    if report.creator_id == user.id:
        return True
    if is_gm(user):
        return True
    return is_department_manager(user, report)


def can_upload(user: User, report: Report) -> bool:
    """Whoever holds the report at its current stage may attach files to it."""
    stage = UPLOAD_STAGES.get(report.status)
    if stage is None or not user.is_active:
        return False
    if stage == ApprovalStage.INITIAL:
        return report.creator_id == user.id
    if stage == ApprovalStage.MANAGER_REVIEW:
        return is_department_manager(user, report)
    return is_gm(user)


def can_remove_attachment(user: User, report: Report, attachment: ReportAttachment) -> bool:
    # Only the uploader, and only while the report is still in the stage the file was added in.
    if attachment.uploaded_by != user.id:
        return False
    return UPLOAD_STAGES.get(report.status) == attachment.approval_stage


def pending_status_for(user: User) -> ReportStatus | None:
    """The review status whose reports wait on ``user``."""
    if is_line_manager(user):
        return ReportStatus.MANAGER_REVIEW
    if is_gm(user):
        return ReportStatus.GM_REVIEW
    return None
