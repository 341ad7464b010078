"""Plain-dict projections of the workflow records.

One function per view; computed flags come from ``reporting.core.workflow`` so
the calling layer never re-derives them from the status itself.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable

from reporting.core import workflow as wf
from reporting.db.models.audit_log import AuditLog
from reporting.db.models.notification import Notification
from reporting.db.models.report import Report
from reporting.db.models.report_attachment import ReportAttachment
from reporting.db.models.report_signature import ReportSignature
from reporting.db.models.user import DEPARTMENT_LABELS
from reporting.db.models.workflow_log import WorkflowLog


def _iso(v: datetime | None) -> str | None:
    return v.isoformat() if v is not None else None


def rejection_view(r: Report) -> dict | None:
    if not wf.is_rejected(r.status):
        return None
    return {
        "reason": r.rejection_reason,
        "rejected_by": r.rejected_by,
        "rejected_at": _iso(r.rejected_at),
    }


def report_summary(r: Report) -> dict:
    return {
        "id": r.id,
        "report_number": r.report_number,
        "title": r.title,
        "description": r.description,
        "type": r.type,
        "priority": r.priority,
        "due_date": _iso(r.due_date),
        "status": r.status.value,
        "status_label": r.status_label,
        "department": r.department.value,
        "department_label": DEPARTMENT_LABELS.get(r.department, r.department.value),
        "creator_id": r.creator_id,
        "created_at": _iso(r.created_at),
        "last_modified_at": _iso(r.last_modified_at),
    }


def report_view(r: Report) -> dict:
    out = report_summary(r)
    out.update(
        {
            "content": r.content,
            "submitted_at": _iso(r.submitted_at),
            "manager_approved_at": _iso(r.manager_approved_at),
            "gm_approved_at": _iso(r.gm_approved_at),
            "completed_at": _iso(r.completed_at),
            "rejection": rejection_view(r),
            "can_be_edited": wf.can_be_edited(r.status),
            "can_be_submitted": wf.can_be_submitted(r.status),
            "is_in_progress": wf.is_in_progress(r.status),
            "version": r.version,
        }
    )
    return out


def signature_view(s: ReportSignature) -> dict:
    return {
        "id": s.id,
        "report_id": s.report_id,
        "user_id": s.user_id,
        "signature_type": s.signature_type.value,
        "signed_at": _iso(s.signed_at),
        "comments": s.comments,
    }


def attachment_view(a: ReportAttachment) -> dict:
    return {
        "id": a.id,
        "report_id": a.report_id,
        "file_name": a.file_name,
        "content_type": a.content_type,
        "size": a.size,
        "description": a.description,
        "uploaded_by": a.uploaded_by,
        "uploaded_at": _iso(a.uploaded_at),
        "approval_stage": a.approval_stage.value,
        "is_active": a.is_active,
    }


def audit_view(e: AuditLog) -> dict:
    return {
        "id": e.id,
        "action": e.action.value,
        "user_id": e.user_id,
        "report_id": e.report_id,
        "timestamp": _iso(e.timestamp),
        "details": e.details,
        "from_status": e.from_status,
        "to_status": e.to_status,
    }


def history_view(log: WorkflowLog) -> dict:
    return {
        "from_status": log.from_status,
        "to_status": log.to_status,
        "action": log.action,
        "actor_id": log.actor_id,
        "comment": log.comment,
        "at": _iso(log.created_at),
    }


def notification_view(n: Notification) -> dict:
    return {
        "id": n.id,
        "report_id": n.report_id,
        "type": n.type,
        "message": n.message,
        "is_read": n.is_read,
        "created_at": _iso(n.created_at),
    }


def report_detail(
    r: Report,
    signatures: Iterable[ReportSignature],
    attachments: Iterable[ReportAttachment],
    history: Iterable[WorkflowLog] = (),
    actions: Iterable[str] = (),
) -> dict:
    out = report_view(r)
    out["signatures"] = [signature_view(s) for s in signatures]
    out["attachments"] = [attachment_view(a) for a in attachments]
    out["history"] = [history_view(h) for h in history]
    out["allowed_actions"] = list(actions)
    return out
