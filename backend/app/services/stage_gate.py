"""Derive a project's workflow stage and status from its segments.

The stage gate is strictly linear: a later stage is never reported while any
segment still lacks approval for an earlier one. The values stored on the
project row are only a cache of these functions.
"""

from __future__ import annotations

from typing import Sequence

from sqlalchemy.orm import Session

from app.core.constants import (
    FINAL_FIELD,
    IMAGE_FIELD,
    SCRIPT_FIELD,
    VIDEO_FIELD,
    ApprovalStatus,
    ProjectStatus,
    WorkflowStage,
)
from app.core.logging import get_logger
from app.models.project import Project

logger = get_logger(__name__)

_GATES = [
    (SCRIPT_FIELD, WorkflowStage.SCRIPT_GENERATION),
    (IMAGE_FIELD, WorkflowStage.IMAGE_GENERATION),
    (VIDEO_FIELD, WorkflowStage.VIDEO_GENERATION),
    (FINAL_FIELD, WorkflowStage.FINAL_ASSEMBLY),
]


def _field_value(segment: object, field: str) -> str:
    value = segment.get(field) if isinstance(segment, dict) else getattr(segment, field)
    return value.value if isinstance(value, ApprovalStatus) else str(value)


def all_approved(segments: Sequence[object], field: str) -> bool:
    """Vacuously true for an empty sequence; see ``can_advance``."""
    return all(_field_value(s, field) == ApprovalStatus.APPROVED.value for s in segments)


def can_advance(segments: Sequence[object], field: str) -> bool:
    return len(segments) > 0 and all_approved(segments, field)


def current_stage(segments: Sequence[object]) -> WorkflowStage:
    if not segments:
        return WorkflowStage.SCRIPT_GENERATION
    for field, stage in _GATES:
        if not all_approved(segments, field):
            return stage
    return WorkflowStage.COMPLETED


def project_status(segments: Sequence[object]) -> ProjectStatus:
    if can_advance(segments, FINAL_FIELD):
        return ProjectStatus.COMPLETED
    return ProjectStatus.DRAFT


def refresh_project_cache(db: Session, project: Project) -> bool:
    """Recompute the cached stage/status and write them only if they changed."""
    stage = current_stage(project.segments).value
    status = project_status(project.segments).value
    if project.current_stage == stage and project.status == status:
        return False

    logger.info(
        "project_stage_changed",
        project_id=project.id,
        from_stage=project.current_stage,
        to_stage=stage,
        status=status,
    )
    project.current_stage = stage
    project.status = status
    db.flush()
    return True
