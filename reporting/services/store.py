from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from reporting.core.errors import ConcurrencyConflictError, NotFoundError
from reporting.db.models.audit_log import AuditLog
from reporting.db.models.report import Report, ReportStatus
from reporting.db.models.report_attachment import ApprovalStage, ReportAttachment
from reporting.db.models.report_signature import ReportSignature, SignatureType
from reporting.db.models.user import DEPARTMENT_CODES, Department, Role, User
from reporting.db.models.workflow_log import WorkflowLog

logger = logging.getLogger("reporting.store")


class ReportStore:
    """Loads and persists reports and their append-only records.

    Entities reference each other by id; related rows are loaded explicitly.
    One store wraps one session, i.e. one unit of work.
    """

    def __init__(self, db: Session):
        self.db = db

    # ---- Loading ----

    def get_report(self, report_id: str) -> Report:
        r = self.db.get(Report, report_id)
        if r is None:
            raise NotFoundError("report not found", report_id=report_id)
        return r

    def get_user(self, user_id: str) -> User:
        u = self.db.get(User, user_id)
        if u is None:
            raise NotFoundError("user not found", user_id=user_id)
        return u

    def users_by_role(self, role: Role, department: Department | None = None) -> list[User]:
        q = self.db.query(User).filter(User.role == role, User.is_active.is_(True))
        if department is not None:
            q = q.filter(User.department == department)
        return q.order_by(User.username).all()

    def get_attachment(self, report_id: str, attachment_id: str) -> ReportAttachment:
        a = (
            self.db.query(ReportAttachment)
            .filter(ReportAttachment.id == attachment_id, ReportAttachment.report_id == report_id)
            .first()
        )
        if a is None or not a.is_active:
            raise NotFoundError("attachment not found", report_id=report_id, attachment_id=attachment_id)
        return a

    def signatures_for(self, report_id: str) -> list[ReportSignature]:
        return (
            self.db.query(ReportSignature)
            .filter(ReportSignature.report_id == report_id)
            .order_by(ReportSignature.signed_at.asc())
            .all()
        )

    def latest_signature(self, report_id: str, signature_type: SignatureType) -> ReportSignature | None:
        return (
            self.db.query(ReportSignature)
            .filter(ReportSignature.report_id == report_id, ReportSignature.signature_type == signature_type)
            .order_by(ReportSignature.signed_at.desc())
            .first()
        )

    def attachments_for(
        self,
        report_id: str,
        include_inactive: bool = False,
        stage: ApprovalStage | None = None,
    ) -> list[ReportAttachment]:
        q = self.db.query(ReportAttachment).filter(ReportAttachment.report_id == report_id)
        if stage is not None:
            q = q.filter(ReportAttachment.approval_stage == stage)
        if not include_inactive:
            q = q.filter(ReportAttachment.is_active.is_(True))
        return q.order_by(ReportAttachment.uploaded_at.asc()).all()

    def audit_for(self, report_id: str) -> list[AuditLog]:
        return (
            self.db.query(AuditLog)
            .filter(AuditLog.report_id == report_id)
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
            .all()
        )

    def latest_audit_at(self, report_id: str) -> datetime | None:
        # pending report changes must not be flushed ahead of the version-checked commit
        with self.db.no_autoflush:
            return self.db.query(func.max(AuditLog.timestamp)).filter(AuditLog.report_id == report_id).scalar()

    def status_history(self, report_id: str) -> list[WorkflowLog]:
        return (
            self.db.query(WorkflowLog)
            .filter(WorkflowLog.report_id == report_id)
            .order_by(WorkflowLog.id.asc())
            .all()
        )

    def pending_for_manager(self, department: Department) -> list[Report]:
        return (
            self.db.query(Report)
            .filter(Report.status == ReportStatus.MANAGER_REVIEW, Report.department == department)
            .order_by(Report.submitted_at.desc())
            .all()
        )

    def pending_for_gm(self) -> list[Report]:
        return (
            self.db.query(Report)
            .filter(Report.status == ReportStatus.GM_REVIEW)
            .order_by(Report.manager_approved_at.desc())
            .all()
        )

    def reports_by_creator(self, user_id: str) -> list[Report]:
        return (
            self.db.query(Report)
            .filter(Report.creator_id == user_id)
            .order_by(Report.last_modified_at.desc())
            .all()
        )

    def reports_by_department(self, department: Department) -> list[Report]:
        return (
            self.db.query(Report)
            .filter(Report.department == department)
            .order_by(Report.last_modified_at.desc())
            .all()
        )

    def all_reports(self) -> list[Report]:
        return self.db.query(Report).order_by(Report.last_modified_at.desc()).all()

    def search_reports(
        self,
        *,
        term: str | None = None,
        status: ReportStatus | None = None,
        department: Department | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[Report]:
        """Reports matching every given filter, newest change first.

        ``term`` is a case-insensitive substring of the title, content,
        description or report number. ``since``/``until`` bound the creation time.
        """
        q = self.db.query(Report)
        if term:
            pattern = f"%{term}%"
            q = q.filter(
                or_(
                    Report.title.ilike(pattern),
                    Report.content.ilike(pattern),
                    Report.description.ilike(pattern),
                    Report.report_number.ilike(pattern),
                )
            )
        if status is not None:
            q = q.filter(Report.status == status)
        if department is not None:
            q = q.filter(Report.department == department)
        if since is not None:
            q = q.filter(Report.created_at >= since)
        if until is not None:
            q = q.filter(Report.created_at <= until)
        return q.order_by(Report.last_modified_at.desc()).all()

    def next_report_number(self, department: Department, year: int) -> str:
        prefix = f"{DEPARTMENT_CODES[department]}-{year}-"
        count = self.db.query(Report).filter(Report.report_number.like(f"{prefix}%")).count()
        return f"{prefix}{count + 1:04d}"

    # ---- Writing ----

    def add_report(self, report: Report, audit: AuditLog) -> Report:
        self.db.add(report)
        self.db.add(audit)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Two creators raced for the same report number.
            self.db.rollback()
            raise ConcurrencyConflictError("report number already taken, retry", report_number=report.report_number) from exc
        return report

    def save_transactional(
        self,
        report: Report,
        audit: AuditLog,
        *,
        signature: ReportSignature | None = None,
        workflow_logs: Iterable[WorkflowLog] = (),
        attachment: ReportAttachment | None = None,
    ) -> Report:
        """Commit the report change together with its audit entry, or nothing at all.

        The report's row version is checked in the same UPDATE; losing a race
        surfaces as ConcurrencyConflictError.
        """
        if signature is not None:
            self.db.add(signature)
        if attachment is not None:
            self.db.add(attachment)
        for log in workflow_logs:
            self.db.add(log)
        self.db.add(audit)
        try:
            self.db.commit()
        except StaleDataError as exc:
            self.db.rollback()
            logger.warning("Concurrent update lost for report %s", report.id)
            raise ConcurrencyConflictError(
                "report was changed by someone else; reload and retry", report_id=report.id
            ) from exc
        return report

    def save_audit(self, audit: AuditLog) -> AuditLog:
        """Append an audit entry that is not tied to a report change (e.g. downloads)."""
        self.db.add(audit)
        self.db.commit()
        return audit
