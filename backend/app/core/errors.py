"""Workflow error taxonomy shared by services and the HTTP layer."""

from __future__ import annotations

from typing import Optional


class WorkflowError(Exception):
    """Base class for errors surfaced to API callers."""

    error: str = "workflow_error"
    status_code: int = 400

    def __init__(self, message: str, *, error: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        if error:
            self.error = error
        if status_code:
            self.status_code = status_code


class InvalidTransitionError(WorkflowError):
    error = "invalid_transition"
    status_code = 409

    def __init__(self, field: str, from_status: str, to_status: str):
        super().__init__(f"Invalid status transition for {field}: {from_status} -> {to_status}")
        self.field = field
        self.from_status = from_status
        self.to_status = to_status


class NotFoundError(WorkflowError):
    error = "not_found"
    status_code = 404


class PreconditionError(WorkflowError):
    error = "precondition_failed"
    status_code = 409


class UpstreamServiceError(WorkflowError):
    error = "upstream_error"
    status_code = 502


class ConcurrencyConflictError(WorkflowError):
    error = "concurrency_conflict"
    status_code = 409
