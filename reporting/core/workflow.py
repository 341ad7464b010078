"""Workflow / State Machine for reports.

This module centralizes *all* approval rules in one place:
1) the transition table (who may move a report from which status to which)
2) the system auto-advances that follow some transitions
3) computed flags derived from the status (editable, in progress, ...)

Everything here is pure: given a user, a report and an action, the answer
never depends on storage.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from reporting.core.errors import AuthorizationError, InvalidTransitionError, ValidationError, require
from reporting.db.models.audit_log import AuditAction
from reporting.db.models.report import Report, ReportStatus
from reporting.db.models.report_attachment import ApprovalStage
from reporting.db.models.report_signature import SignatureType
from reporting.db.models.user import Role, User


Action = str  # "submit" | "approve" | "reject"

SUBMIT: Action = "submit"
APPROVE: Action = "approve"
REJECT: Action = "reject"

ACTIONS: tuple[Action, ...] = (SUBMIT, APPROVE, REJECT)

# Recipient kinds a transition notifies; resolved to selectors by the engine.
NOTIFY_DEPARTMENT_MANAGERS = "department_managers"
NOTIFY_GM_POOL = "gm_pool"
NOTIFY_CREATOR = "creator"
NOTIFY_SIGNING_MANAGER = "signing_manager"


@dataclass(frozen=True, slots=True)
class Transition:
    """One transition edge in the state machine."""

    from_status: ReportStatus
    action: Action
    to_status: ReportStatus
    audit_action: AuditAction
    # None means "the report's creator", whatever their role.
    actor_role: Role | None = None
    # Line manager actions are restricted to the report's own department.
    same_department: bool = False
    signature: SignatureType | None = None
    notify: tuple[str, ...] = ()


TRANSITIONS: tuple[Transition, ...] = (
    Transition(
        from_status=ReportStatus.DRAFT,
        action=SUBMIT,
        to_status=ReportStatus.SUBMITTED,
        audit_action=AuditAction.SUBMITTED,
        actor_role=None,
        notify=(NOTIFY_DEPARTMENT_MANAGERS,),
    ),
    # line manager stage
    Transition(
        from_status=ReportStatus.MANAGER_REVIEW,
        action=APPROVE,
        to_status=ReportStatus.MANAGER_APPROVED,
        audit_action=AuditAction.APPROVED,
        actor_role=Role.LINE_MANAGER,
        same_department=True,
        signature=SignatureType.MANAGER,
        notify=(NOTIFY_GM_POOL,),
    ),
    Transition(
        from_status=ReportStatus.MANAGER_REVIEW,
        action=REJECT,
        to_status=ReportStatus.MANAGER_REJECTED,
        audit_action=AuditAction.REJECTED,
        actor_role=Role.LINE_MANAGER,
        same_department=True,
        notify=(NOTIFY_CREATOR,),
    ),
    # general manager stage (department-agnostic)
    Transition(
        from_status=ReportStatus.GM_REVIEW,
        action=APPROVE,
        to_status=ReportStatus.COMPLETED,
        audit_action=AuditAction.APPROVED,
        actor_role=Role.GM,
        signature=SignatureType.GM,
        notify=(NOTIFY_CREATOR,),
    ),
    Transition(
        from_status=ReportStatus.GM_REVIEW,
        action=REJECT,
        to_status=ReportStatus.GM_REJECTED,
        audit_action=AuditAction.REJECTED,
        actor_role=Role.GM,
        notify=(NOTIFY_CREATOR, NOTIFY_SIGNING_MANAGER),
    ),
)

# Statuses that only mark "waiting for the next tier"; the system moves on immediately.
SYSTEM_ADVANCES: dict[ReportStatus, ReportStatus] = {
    ReportStatus.SUBMITTED: ReportStatus.MANAGER_REVIEW,
    ReportStatus.MANAGER_APPROVED: ReportStatus.GM_REVIEW,
}

MAIN_SEQUENCE: tuple[ReportStatus, ...] = (
    ReportStatus.DRAFT,
    ReportStatus.SUBMITTED,
    ReportStatus.MANAGER_REVIEW,
    ReportStatus.MANAGER_APPROVED,
    ReportStatus.GM_REVIEW,
    ReportStatus.COMPLETED,
)

REJECTED_STATUSES = frozenset(
    {ReportStatus.REJECTED, ReportStatus.MANAGER_REJECTED, ReportStatus.GM_REJECTED}
)
TERMINAL_STATUSES = REJECTED_STATUSES | {ReportStatus.COMPLETED}

# Which upload stage each status belongs to; other statuses accept no uploads.
UPLOAD_STAGES: dict[ReportStatus, ApprovalStage] = {
    ReportStatus.DRAFT: ApprovalStage.INITIAL,
    ReportStatus.MANAGER_REVIEW: ApprovalStage.MANAGER_REVIEW,
    ReportStatus.GM_REVIEW: ApprovalStage.GM_REVIEW,
}


def allowed_actions_for_status(status: ReportStatus) -> tuple[Action, ...]:
    actions: list[Action] = []
    for t in TRANSITIONS:
        if t.from_status == status and t.action not in actions:
            actions.append(t.action)
    return tuple(actions)


def _role_eligible(t: Transition, user: User) -> bool:
    return t.actor_role is None or t.actor_role == user.role


def check_transition(user: User, report: Report, action: Action) -> Transition:
    """Return the transition ``user`` may apply to ``report``, or raise.

    Checks run in a fixed order:
    - unknown action -> ValidationError
    - inactive user, or a role that never performs ``action`` -> AuthorizationError
    - no edge for this role from the current status -> InvalidTransitionError
    - not the creator / wrong department -> AuthorizationError
    """
    require(action in ACTIONS, ValidationError(f"unknown action: {action!r}", action=action))
    require(bool(user.is_active), AuthorizationError("user is inactive", user_id=user.id))

    eligible = [t for t in TRANSITIONS if t.action == action and _role_eligible(t, user)]
    require(
        bool(eligible),
        AuthorizationError(f"role {user.role.value} cannot {action} reports", user_id=user.id, action=action),
    )

    matching = [t for t in eligible if t.from_status == report.status]
    require(
        bool(matching),
        InvalidTransitionError(
            f"cannot {action} a report in status {report.status.value}",
            report_id=report.id,
            status=report.status.value,
            action=action,
        ),
    )
    t = matching[0]

    if t.actor_role is None:
        require(
            user.id == report.creator_id,
            AuthorizationError("only the report creator can do this", user_id=user.id, action=action),
        )
    if t.same_department:
        require(
            user.department == report.department,
            AuthorizationError(
                "line managers can only act on reports of their own department",
                user_id=user.id,
                department=report.department.value,
            ),
        )
    return t


def can_act(user: User, report: Report, action: Action) -> bool:
    try:
        check_transition(user, report, action)
    except (AuthorizationError, InvalidTransitionError, ValidationError):
        return False
    return True


def allowed_actions(user: User, report: Report) -> list[Action]:
    """Actions ``user`` can execute on ``report`` right now."""
    return [a for a in allowed_actions_for_status(report.status) if can_act(user, report, a)]


def system_advances(status: ReportStatus) -> list[tuple[ReportStatus, ReportStatus]]:
    """Chain of automatic (from, to) edges that follow entering ``status``."""
    steps: list[tuple[ReportStatus, ReportStatus]] = []
    while status in SYSTEM_ADVANCES:
        nxt = SYSTEM_ADVANCES[status]
        steps.append((status, nxt))
        status = nxt
    return steps


def is_forward_sequence(statuses: Iterable[ReportStatus]) -> bool:
    """True if ``statuses`` walks the main path in order without skipping or revisiting."""
    seq = list(statuses)
    if not seq:
        return True
    try:
        start = MAIN_SEQUENCE.index(seq[0])
    except ValueError:
        return False
    return tuple(seq) == MAIN_SEQUENCE[start : start + len(seq)]


# ---- Computed flags ----


def can_be_edited(status: ReportStatus) -> bool:
    return status == ReportStatus.DRAFT


def can_be_submitted(status: ReportStatus) -> bool:
    return status == ReportStatus.DRAFT


def is_rejected(status: ReportStatus) -> bool:
    return status in REJECTED_STATUSES


def is_terminal(status: ReportStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_in_progress(status: ReportStatus) -> bool:
    return status not in TERMINAL_STATUSES
