"""ReportWorkflowEngine: the only writer of report status.

Every mutating operation runs in one unit of work:
load -> check (pure rules from ``reporting.core.workflow``) -> mutate ->
commit the change together with its audit entry. Notification events are
collected during the unit of work and dispatched only after the commit; a
failing dispatcher is logged and otherwise ignored.
"""

from __future__ import annotations

import logging
import os
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, BinaryIO, Callable, Iterator

from sqlalchemy.orm import Session, sessionmaker

from reporting.core import rbac
from reporting.core import workflow as wf
from reporting.core.config import Settings
from reporting.core.errors import (
    AuthorizationError,
    EditNotAllowedError,
    ValidationError,
    WorkflowError,
    require,
)
from reporting.db.base import utc_now
from reporting.db.models.audit_log import AuditAction, AuditLog
from reporting.db.models.report import Report, ReportPriority, ReportStatus
from reporting.db.models.report_attachment import ApprovalStage, ReportAttachment
from reporting.db.models.report_signature import ReportSignature, SignatureType
from reporting.db.models.user import Department, User
from reporting.db.models.workflow_log import WorkflowLog
from reporting.db.session import session_scope
from reporting.services import notifications as nt
from reporting.services.attachments import AttachmentStore
from reporting.services.store import ReportStore
from reporting.utils import views

logger = logging.getLogger("reporting.engine")

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500
MAX_TYPE_LENGTH = 100
MAX_COMMENT_LENGTH = 1000
MAX_REASON_LENGTH = 1000
MAX_FILE_NAME_LENGTH = 255

EDITABLE_FIELDS = ("title", "content", "description", "type", "priority", "due_date")
PRIORITIES = {p.value for p in ReportPriority}

SYSTEM_ADVANCE_ACTION = "auto_advance"


# ---- Field validation ----


def _optional_text(name: str, value: Any, max_len: int) -> str | None:
    if value is None:
        return None
    require(isinstance(value, str), ValidationError(f"{name} must be text", field=name))
    value = value.strip()
    require(len(value) <= max_len, ValidationError(f"{name} is too long (max {max_len})", field=name))
    return value or None


def _due_date(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value)
        except ValueError:
            pass
    raise ValidationError("due_date must be a date", field="due_date")


def clean_report_fields(fields: dict[str, Any], *, creating: bool = False) -> dict[str, Any]:
    """Validate editable report fields, returning normalized values."""
    unknown = sorted(set(fields) - set(EDITABLE_FIELDS))
    require(not unknown, ValidationError(f"fields cannot be edited: {', '.join(unknown)}", fields=unknown))
    require(bool(fields), ValidationError("nothing to update"))

    out: dict[str, Any] = {}
    if "title" in fields or creating:
        title = _optional_text("title", fields.get("title"), MAX_TITLE_LENGTH)
        require(bool(title), ValidationError("title is required", field="title"))
        out["title"] = title
    if "content" in fields or creating:
        content = fields.get("content")
        require(
            isinstance(content, str) and bool(content.strip()),
            ValidationError("content is required", field="content"),
        )
        out["content"] = content
    if "description" in fields:
        out["description"] = _optional_text("description", fields["description"], MAX_DESCRIPTION_LENGTH)
    if "type" in fields:
        out["type"] = _optional_text("type", fields["type"], MAX_TYPE_LENGTH)
    if "priority" in fields:
        priority = fields["priority"]
        require(
            priority in PRIORITIES,
            ValidationError(f"priority must be one of {', '.join(sorted(PRIORITIES))}", field="priority"),
        )
        out["priority"] = priority
    if "due_date" in fields:
        out["due_date"] = _due_date(fields["due_date"])
    return out


class ReportWorkflowEngine:
    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        dispatcher: nt.NotificationDispatcher | None = None,
        attachments: AttachmentStore | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_factory = session_factory
        self._settings = settings
        self._dispatcher = dispatcher
        self._attachments = attachments or AttachmentStore(settings.UPLOAD_DIR, settings.max_upload_bytes)
        self._clock = clock

    @contextmanager
    def _unit_of_work(self) -> Iterator[ReportStore]:
        with session_scope(self._session_factory) as db:
            yield ReportStore(db)

    def _now(self, report: Report | None = None, store: ReportStore | None = None) -> datetime:
        now = self._clock()
        if report is None:
            return now
        # keep a report's timestamps and its audit trail non-decreasing even if the clock steps back
        floor = report.last_modified_at
        if store is not None:
            latest = store.latest_audit_at(report.id)
            if latest is not None and (floor is None or latest > floor):
                floor = latest
        if floor is not None and now < floor:
            return floor
        return now

    def _dispatch(self, events: list[nt.NotificationEvent]) -> None:
        if self._dispatcher is None:
            return
        for event in events:
            try:
                self._dispatcher.enqueue(event)
            except Exception:
                logger.exception("Notification %s for report %s could not be enqueued", event.type, event.report_id)

    # ---- Creating and editing ----

    def create_report(self, actor_id: str, **fields: Any) -> dict:
        values = clean_report_fields(fields, creating=True)
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            require(actor.is_active, AuthorizationError("user is inactive", user_id=actor_id))
            now = self._now()
            report = Report(
                id=str(uuid.uuid4()),
                creator_id=actor.id,
                department=actor.department,
                status=ReportStatus.DRAFT,
                created_at=now,
                last_modified_at=now,
                report_number=store.next_report_number(actor.department, now.year),
                **values,
            )
            audit = AuditLog(
                action=AuditAction.CREATED,
                user_id=actor.id,
                report_id=report.id,
                timestamp=now,
                details=f"Report created: {report.title}",
                to_status=report.status.value,
            )
            store.add_report(report, audit)
            logger.info("Report %s (%s) created by %s", report.id, report.report_number, actor.id)
            return views.report_view(report)

    def edit(self, report_id: str, actor_id: str, fields: dict[str, Any]) -> dict:
        """Change report content. Only the creator, only while the report is a draft."""
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            require(
                wf.can_be_edited(report.status),
                EditNotAllowedError(
                    f"report cannot be edited in status {report.status.value}",
                    report_id=report.id,
                    status=report.status.value,
                ),
            )
            require(
                actor.is_active and actor.id == report.creator_id,
                AuthorizationError("only the report creator can edit it", user_id=actor_id),
            )
            values = clean_report_fields(fields)

            changed = sorted(k for k, v in values.items() if getattr(report, k) != v)
            for k, v in values.items():
                setattr(report, k, v)
            now = self._now(report, store)
            report.last_modified_at = now
            audit = AuditLog(
                action=AuditAction.UPDATED,
                user_id=actor.id,
                report_id=report.id,
                timestamp=now,
                details=f"Updated fields: {', '.join(changed) or 'none'}",
                from_status=report.status.value,
                to_status=report.status.value,
            )
            store.save_transactional(report, audit)
            return views.report_view(report)

    # ---- Transitions ----

    def submit(self, report_id: str, actor_id: str, comments: str | None = None) -> dict:
        comments = _optional_text("comments", comments, MAX_COMMENT_LENGTH)
        return self._transition(report_id, actor_id, wf.SUBMIT, comments=comments)

    def approve(self, report_id: str, actor_id: str, comments: str | None = None) -> dict:
        comments = _optional_text("comments", comments, MAX_COMMENT_LENGTH)
        return self._transition(report_id, actor_id, wf.APPROVE, comments=comments)

    def reject(self, report_id: str, actor_id: str, reason: str) -> dict:
        reason = _optional_text("reason", reason, MAX_REASON_LENGTH)
        require(bool(reason), ValidationError("a rejection reason is required", field="reason"))
        return self._transition(report_id, actor_id, wf.REJECT, reason=reason)

    def _transition(
        self,
        report_id: str,
        actor_id: str,
        action: wf.Action,
        comments: str | None = None,
        reason: str | None = None,
    ) -> dict:
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            try:
                t = wf.check_transition(actor, report, action)
            except WorkflowError as exc:
                logger.warning("Refused %s on report %s by %s: %s", action, report_id, actor_id, exc.message)
                raise

            # Looked up before the commit so nothing after it can fail on storage.
            signing_manager_id = None
            if wf.NOTIFY_SIGNING_MANAGER in t.notify:
                sig = store.latest_signature(report.id, SignatureType.MANAGER)
                signing_manager_id = sig.user_id if sig is not None else None

            now = self._now(report, store)
            from_status = report.status
            note = reason if action == wf.REJECT else comments
            logs = [
                WorkflowLog(
                    report_id=report.id,
                    actor_id=actor.id,
                    from_status=from_status.value,
                    to_status=t.to_status.value,
                    action=action,
                    comment=note or "",
                    created_at=now,
                )
            ]

            report.status = t.to_status
            if t.to_status == ReportStatus.SUBMITTED:
                report.submitted_at = now
            elif t.to_status == ReportStatus.MANAGER_APPROVED:
                report.manager_approved_at = now
            elif t.to_status == ReportStatus.COMPLETED:
                report.gm_approved_at = now
                report.completed_at = now
            elif wf.is_rejected(t.to_status):
                report.rejection_reason = reason
                report.rejected_by = actor.id
                report.rejected_at = now

            for step_from, step_to in wf.system_advances(t.to_status):
                logs.append(
                    WorkflowLog(
                        report_id=report.id,
                        actor_id=None,
                        from_status=step_from.value,
                        to_status=step_to.value,
                        action=SYSTEM_ADVANCE_ACTION,
                        created_at=now,
                    )
                )
                report.status = step_to
            report.last_modified_at = now

            signature = None
            if t.signature is not None:
                signature = ReportSignature(
                    report_id=report.id,
                    user_id=actor.id,
                    signature_type=t.signature,
                    signed_at=now,
                    comments=comments,
                )

            audit = AuditLog(
                action=t.audit_action,
                user_id=actor.id,
                report_id=report.id,
                timestamp=now,
                details=_audit_details(t, report, note),
                from_status=from_status.value,
                to_status=report.status.value,
            )
            store.save_transactional(report, audit, signature=signature, workflow_logs=logs)
            logger.info(
                "Report %s: %s by %s (%s -> %s)",
                report.id,
                action,
                actor.id,
                from_status.value,
                report.status.value,
            )
            events = _events_for(t, report, actor, note, signing_manager_id)
            view = views.report_view(report)

        self._dispatch(events)
        return view

    # ---- Attachments ----

    def upload_attachment(
        self,
        report_id: str,
        actor_id: str,
        file_name: str,
        data: bytes | BinaryIO,
        content_type: str | None = None,
        description: str | None = None,
    ) -> dict:
        file_name = os.path.basename((file_name or "").strip())
        require(bool(file_name), ValidationError("file name is required", field="file_name"))
        require(
            len(file_name) <= MAX_FILE_NAME_LENGTH,
            ValidationError("file name is too long", field="file_name"),
        )
        description = _optional_text("description", description, MAX_DESCRIPTION_LENGTH)

        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            stage = wf.UPLOAD_STAGES.get(report.status)
            require(
                stage is not None,
                EditNotAllowedError(
                    f"attachments cannot be added in status {report.status.value}",
                    report_id=report.id,
                    status=report.status.value,
                ),
            )
            require(
                rbac.can_upload(actor, report),
                AuthorizationError("you cannot add attachments at this stage", user_id=actor_id),
            )

            stored_name, size = self._attachments.save(report.id, file_name, data)
            now = self._now(report, store)
            attachment = ReportAttachment(
                report_id=report.id,
                uploaded_by=actor.id,
                file_name=file_name,
                stored_name=stored_name,
                content_type=content_type,
                size=size,
                description=description,
                approval_stage=stage,
                uploaded_at=now,
                is_active=True,
            )
            report.last_modified_at = now
            audit = AuditLog(
                action=AuditAction.UPLOADED,
                user_id=actor.id,
                report_id=report.id,
                timestamp=now,
                details=f"Uploaded {file_name} ({size} bytes) at stage {stage.value}",
                from_status=report.status.value,
                to_status=report.status.value,
            )
            try:
                store.save_transactional(report, audit, attachment=attachment)
            except BaseException:
                self._attachments.delete(report.id, stored_name)
                raise
            return views.attachment_view(attachment)

    def download_attachment(self, report_id: str, attachment_id: str, actor_id: str) -> tuple[dict, bytes]:
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            require(
                rbac.can_view_report(actor, report),
                AuthorizationError("you don't have access to this report's attachments", user_id=actor_id),
            )
            attachment = store.get_attachment(report.id, attachment_id)
            data = self._attachments.read(report.id, attachment.stored_name)
            store.save_audit(
                AuditLog(
                    action=AuditAction.DOWNLOADED,
                    user_id=actor.id,
                    report_id=report.id,
                    timestamp=self._now(report, store),
                    details=f"Downloaded {attachment.file_name}",
                    from_status=report.status.value,
                    to_status=report.status.value,
                )
            )
            return views.attachment_view(attachment), data

    def remove_attachment(self, report_id: str, attachment_id: str, actor_id: str) -> dict:
        """Soft-deactivate an attachment; the file and its row are kept."""
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            attachment = store.get_attachment(report.id, attachment_id)
            require(
                attachment.uploaded_by == actor.id,
                AuthorizationError("only the uploader can remove an attachment", user_id=actor_id),
            )
            require(
                rbac.can_remove_attachment(actor, report, attachment),
                EditNotAllowedError(
                    "the stage this attachment was added in has passed",
                    report_id=report.id,
                    status=report.status.value,
                ),
            )
            attachment.is_active = False
            now = self._now(report, store)
            report.last_modified_at = now
            audit = AuditLog(
                action=AuditAction.DELETED,
                user_id=actor.id,
                report_id=report.id,
                timestamp=now,
                details=f"Removed attachment {attachment.file_name}",
                from_status=report.status.value,
                to_status=report.status.value,
            )
            store.save_transactional(report, audit)
            return views.attachment_view(attachment)

    # ---- Reading ----

    def get_report(self, report_id: str, actor_id: str) -> dict:
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            _require_view(actor, report)
            return views.report_detail(
                report,
                store.signatures_for(report.id),
                store.attachments_for(report.id),
                history=store.status_history(report.id),
                actions=wf.allowed_actions(actor, report),
            )

    def pending_approvals(self, actor_id: str) -> list[dict]:
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            status = rbac.pending_status_for(actor)
            if status is None or not actor.is_active:
                return []
            if status == ReportStatus.MANAGER_REVIEW:
                reports = store.pending_for_manager(actor.department)
            else:
                reports = store.pending_for_gm()
            return [views.report_summary(r) for r in reports]

    def user_reports(self, actor_id: str) -> list[dict]:
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            return [views.report_summary(r) for r in store.reports_by_creator(actor.id)]

    def team_reports(self, actor_id: str) -> list[dict]:
        """Every report of the line manager's department, newest change first."""
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            require(
                actor.is_active and rbac.is_line_manager(actor),
                AuthorizationError("only line managers have a team view", user_id=actor_id),
            )
            return [views.report_summary(r) for r in store.reports_by_department(actor.department)]

    def all_reports(self, actor_id: str) -> list[dict]:
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            require(
                actor.is_active and rbac.is_gm(actor),
                AuthorizationError("only the general manager can list all reports", user_id=actor_id),
            )
            return [views.report_summary(r) for r in store.all_reports()]

    def search_reports(
        self,
        actor_id: str,
        *,
        term: str | None = None,
        status: ReportStatus | str | None = None,
        department: Department | str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[dict]:
        """Filter reports, returning only those ``actor_id`` may view."""
        term = _optional_text("term", term, MAX_TITLE_LENGTH)
        status = _enum_filter(ReportStatus, "status", status)
        department = _enum_filter(Department, "department", department)
        require(
            since is None or until is None or since <= until,
            ValidationError("since must not be after until", field="since"),
        )
        with self._unit_of_work() as store:
            actor = store.get_user(actor_id)
            found = store.search_reports(term=term, status=status, department=department, since=since, until=until)
            return [views.report_summary(r) for r in found if rbac.can_view_report(actor, r)]

    def attachments(
        self, report_id: str, actor_id: str, stage: ApprovalStage | str | None = None
    ) -> list[dict]:
        stage = _enum_filter(ApprovalStage, "stage", stage)
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            _require_view(actor, report)
            return [views.attachment_view(a) for a in store.attachments_for(report.id, stage=stage)]

    def audit_trail(self, report_id: str, actor_id: str) -> list[dict]:
        with self._unit_of_work() as store:
            report = store.get_report(report_id)
            actor = store.get_user(actor_id)
            _require_view(actor, report)
            return [views.audit_view(e) for e in store.audit_for(report.id)]


def _require_view(actor: User, report: Report) -> None:
    require(
        rbac.can_view_report(actor, report),
        AuthorizationError("you don't have access to this report", user_id=actor.id, report_id=report.id),
    )


def _enum_filter(enum_cls: type, name: str, value: Any) -> Any:
    if value is None or value == "":
        return None
    try:
        return enum_cls(value)
    except ValueError:
        choices = ", ".join(e.value for e in enum_cls)
        raise ValidationError(f"{name} must be one of {choices}", field=name) from None


def _audit_details(t: wf.Transition, report: Report, note: str | None) -> str:
    if t.action == wf.SUBMIT:
        text = "Report submitted for line manager review"
    elif t.action == wf.APPROVE:
        stage = "line manager" if t.signature == SignatureType.MANAGER else "general manager"
        text = f"Report approved by {stage}"
    else:
        text = "Report rejected"
    if note:
        text = f"{text}: {note}"
    return text[:1000]


def _events_for(
    t: wf.Transition,
    report: Report,
    actor: User,
    note: str | None,
    signing_manager_id: str | None,
) -> list[nt.NotificationEvent]:
    payload = {
        "report_number": report.report_number,
        "title": report.title,
        "department": report.department.value,
        "status": report.status.value,
        "actor_id": actor.id,
        "actor_name": actor.display_name,
        "actor_role": actor.role_label,
    }
    if t.action == wf.REJECT:
        payload["reason"] = note
    elif note:
        payload["comments"] = note

    events: list[nt.NotificationEvent] = []
    for kind in t.notify:
        if kind == wf.NOTIFY_DEPARTMENT_MANAGERS:
            events.append(
                nt.NotificationEvent(nt.REPORT_SUBMITTED, report.id, nt.department_managers(report.department), payload)
            )
        elif kind == wf.NOTIFY_GM_POOL:
            events.append(nt.NotificationEvent(nt.APPROVAL_REQUIRED, report.id, nt.GM_POOL, payload))
        elif kind == wf.NOTIFY_CREATOR:
            event_type = nt.REPORT_REJECTED if t.action == wf.REJECT else nt.REPORT_APPROVED
            events.append(nt.NotificationEvent(event_type, report.id, nt.user_selector(report.creator_id), payload))
        elif kind == wf.NOTIFY_SIGNING_MANAGER and signing_manager_id is not None:
            events.append(
                nt.NotificationEvent(nt.REPORT_REJECTED, report.id, nt.user_selector(signing_manager_id), payload)
            )
    return events
