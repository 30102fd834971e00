"""Persistence helpers for projects, segments and candidates."""

from __future__ import annotations

import uuid
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.constants import MediaKind, MediaStatus
from app.core.errors import NotFoundError, WorkflowError
from app.models.project import MediaCandidate, Project, Segment
from app.schemas.project import CandidateOut, ProjectOut, SegmentOut
from app.services import approval, stage_gate
from app.services.candidates import load_meta
from app.services.clients import ScriptSegmentDraft


def to_candidate_out(candidate: MediaCandidate) -> CandidateOut:
    return CandidateOut(
        id=candidate.id,
        kind=candidate.kind,
        url=candidate.url,
        status=candidate.status,
        is_selected=candidate.is_selected,
        task_handle=candidate.task_handle,
        prompt=candidate.prompt,
        meta=load_meta(candidate),
        created_at=candidate.created_at,
    )


def to_segment_out(segment: Segment) -> SegmentOut:
    return SegmentOut(
        id=segment.id,
        order=segment.order,
        script=segment.script,
        video_prompt=segment.video_prompt,
        script_approval_status=segment.script_approval_status,
        image_approval_status=segment.image_approval_status,
        video_approval_status=segment.video_approval_status,
        audio_approval_status=segment.audio_approval_status,
        final_approval_status=segment.final_approval_status,
        overall_status=approval.overall_segment_status(segment).value,
        result_url=segment.result_url,
        images=[to_candidate_out(item) for item in segment.images],
        videos=[to_candidate_out(item) for item in segment.videos],
        audios=[to_candidate_out(item) for item in segment.audios],
    )


def to_project_out(project: Project) -> ProjectOut:
    return ProjectOut(
        id=project.id,
        title=project.title,
        description=project.description,
        current_stage=project.current_stage,
        status=project.status,
        result_url=project.result_url,
        segments=[to_segment_out(segment) for segment in project.segments],
        created_at=project.created_at,
        updated_at=project.updated_at,
    )


def create_project(db: Session, *, title: str, description: str = "") -> Project:
    project = Project(id=uuid.uuid4().hex, title=title, description=description)
    db.add(project)
    db.flush()
    return project


def list_projects(db: Session) -> list[Project]:
    """All projects, newest first, each with its cached stage/status refreshed."""
    stmt = select(Project).order_by(Project.updated_at.desc(), Project.created_at.desc())
    projects = list(db.scalars(stmt))
    for project in projects:
        stage_gate.refresh_project_cache(db, project)
    return projects


def list_project_titles(db: Session) -> list[str]:
    return list(db.scalars(select(Project.title)))


def get_project(db: Session, project_id: str) -> Optional[Project]:
    return db.get(Project, project_id)


def require_project(db: Session, project_id: str) -> Project:
    project = get_project(db, project_id)
    if project is None:
        raise NotFoundError(f"project not found: {project_id}")
    return project


def load_project(db: Session, project_id: str) -> Project:
    """Fetch a project and bring its cached stage/status up to date."""
    project = require_project(db, project_id)
    stage_gate.refresh_project_cache(db, project)
    return project


def update_project(
    db: Session,
    project_id: str,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Project:
    project = require_project(db, project_id)
    if title is not None:
        if not title.strip():
            raise WorkflowError("title must not be empty", error="invalid_title")
        project.title = title.strip()
    if description is not None:
        project.description = description
    db.flush()
    return project


def delete_project(db: Session, project_id: str) -> bool:
    project = get_project(db, project_id)
    if not project:
        return False
    db.delete(project)
    db.flush()
    return True


def require_segment(db: Session, project_id: str, segment_id: str) -> Segment:
    segment = db.get(Segment, segment_id)
    if segment is None or segment.project_id != project_id:
        raise NotFoundError(f"segment not found: {segment_id}")
    return segment


def replace_segments(db: Session, project: Project, drafts: Iterable[ScriptSegmentDraft]) -> list[Segment]:
    for segment in list(project.segments):
        project.segments.remove(segment)
    db.flush()

    created: list[Segment] = []
    for index, draft in enumerate(sorted(drafts, key=lambda d: d.order)):
        segment = Segment(
            id=uuid.uuid4().hex,
            order=index,
            script=draft.script,
            video_prompt=draft.video_prompt,
        )
        project.segments.append(segment)
        created.append(segment)
    db.flush()
    return created


def list_pending_video_tasks(db: Session) -> list[str]:
    stmt = (
        select(MediaCandidate.task_handle)
        .where(
            MediaCandidate.kind == MediaKind.VIDEO.value,
            MediaCandidate.task_handle.is_not(None),
            MediaCandidate.status.in_(
                [MediaStatus.PENDING.value, MediaStatus.PROCESSING.value, MediaStatus.STAGED.value]
            ),
        )
        .order_by(MediaCandidate.created_at.asc())
    )
    return [handle for handle in db.scalars(stmt) if handle]
