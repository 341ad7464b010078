"""Typed errors raised by the workflow core.

The calling layer maps these to user-facing responses; ``status_code`` is the
HTTP status such a layer would normally use.
"""

from __future__ import annotations


class WorkflowError(Exception):
    code = "workflow_error"
    status_code = 400

    def __init__(self, message: str = "", **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self.context}


class NotFoundError(WorkflowError):
    code = "not_found"
    status_code = 404


class InvalidTransitionError(WorkflowError):
    code = "invalid_transition"
    status_code = 409


class AuthorizationError(WorkflowError):
    code = "forbidden"
    status_code = 403


class EditNotAllowedError(WorkflowError):
    code = "edit_not_allowed"
    status_code = 409


class ConcurrencyConflictError(WorkflowError):
    """Another writer changed the report first. Reload and retry at most once."""

    code = "concurrency_conflict"
    status_code = 409


class ValidationError(WorkflowError):
    code = "validation_error"
    status_code = 400


def require(condition: bool, error: WorkflowError) -> None:
    """Small helper used across the engine: raise ``error`` unless ``condition``."""
    if not condition:
        raise error
