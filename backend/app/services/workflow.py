"""Workflow orchestration: approvals, generation requests and stage gating.

The controller owns no session or client of its own; everything is injected.
It flushes but never commits, so one HTTP request (or one worker step) maps to
one transaction and a raised error leaves nothing half-applied.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from app.core.constants import (
    APPROVAL_FIELDS,
    FINAL_FIELD,
    KIND_FIELDS,
    SCRIPT_FIELD,
    STAGE_FIELDS,
    VIDEO_FIELD,
    ApprovalStatus,
    MediaKind,
    MediaStatus,
    WorkflowStage,
)
from app.core.errors import InvalidTransitionError, PreconditionError, UpstreamServiceError, WorkflowError
from app.core.logging import get_logger
from app.core.settings import PATHS
from app.models.project import MediaCandidate, Project, Segment, StatusChangeEvent
from app.schemas.config import AppConfig
from app.services import approval, candidates, repository, stage_gate, status_log
from app.services.clients import MediaPayload, VideoIdea
from app.services.media import Assembler, MediaError, store_bytes
from app.services.providers import ServiceClients
from app.services.task_tracker import AsyncTaskTracker, TaskHandle, TaskStatus

logger = get_logger(__name__)

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")

Plan = list[tuple[Segment, str, ApprovalStatus, ApprovalStatus]]


def resolve_fields(stage: Optional[str] = None, fields: Sequence[str] = ()) -> tuple[str, ...]:
    """Map a stage name or a list of field names to approval field names.

    Field names may be given in snake_case or camelCase
    (``scriptApprovalStatus``). Duplicates are dropped, order is kept.
    """
    resolved: list[str] = []
    if stage:
        key = stage.strip().lower()
        if key not in STAGE_FIELDS:
            raise WorkflowError(f"unknown stage: {stage}", error="invalid_stage")
        resolved.extend(STAGE_FIELDS[key])
    for name in fields:
        snake = _CAMEL_BOUNDARY.sub("_", name.strip()).lower()
        if snake not in APPROVAL_FIELDS:
            raise WorkflowError(f"unknown approval field: {name}", error="invalid_field")
        resolved.append(snake)
    if not resolved:
        raise WorkflowError("no approval fields given", error="invalid_field")
    return tuple(dict.fromkeys(resolved))


class WorkflowController:
    def __init__(
        self,
        db: Session,
        clients: ServiceClients,
        config: AppConfig,
        *,
        assembler: Optional[Assembler] = None,
        tracker: Optional[AsyncTaskTracker] = None,
        media_root: Path = PATHS.media_root,
    ):
        self.db = db
        self.clients = clients
        self.config = config
        self.assembler = assembler
        self.tracker = tracker or AsyncTaskTracker(db, clients.video, config.video)
        self.media_root = media_root

    # -- approval state machine ---------------------------------------------

    @staticmethod
    def _plan(segment: Segment, fields: Sequence[str], to_status: ApprovalStatus) -> Plan:
        plan: Plan = []
        for field in fields:
            current = approval.coerce_status(getattr(segment, field))
            if not approval.is_valid_transition(current, to_status):
                raise InvalidTransitionError(field, current.value, to_status.value)
            plan.append((segment, field, current, to_status))
        return plan

    @staticmethod
    def _check_video_ready(segment: Segment) -> None:
        selected = candidates.selected_candidate(segment, MediaKind.VIDEO)
        if selected is None:
            raise PreconditionError(f"segment {segment.id} has no video to approve")
        if selected.status != MediaStatus.COMPLETED.value:
            raise PreconditionError(
                f"selected video {selected.id} on segment {segment.id} is {selected.status}, not completed"
            )

    def _apply(self, plan: Plan, reason: Optional[str]) -> None:
        for segment, field, current, target in plan:
            setattr(segment, field, target.value)
            status_log.append_event(
                self.db,
                project_id=segment.project_id,
                segment_id=segment.id,
                field=field,
                from_status=current,
                to_status=target,
                reason=reason,
            )

    def _refresh(self, project: Project) -> None:
        self.db.flush()
        self.db.refresh(project)
        stage_gate.refresh_project_cache(self.db, project)

    def transition(
        self,
        segment_id: str,
        stage_fields: Sequence[str],
        to_status: ApprovalStatus | str,
        reason: Optional[str] = None,
        *,
        project_id: Optional[str] = None,
    ) -> Segment:
        """Move every field in ``stage_fields`` to ``to_status`` or none of them."""
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        try:
            target = approval.coerce_status(to_status)
        except ValueError as exc:
            raise WorkflowError(str(exc), error="invalid_status") from exc
        fields = resolve_fields(fields=stage_fields)

        plan = self._plan(segment, fields, target)
        if target == ApprovalStatus.APPROVED and VIDEO_FIELD in fields:
            self._check_video_ready(segment)

        self._apply(plan, reason)
        self._refresh(segment.project)
        return segment

    def approve(
        self,
        segment_id: str,
        stage_fields: Sequence[str],
        reason: Optional[str] = None,
        *,
        project_id: Optional[str] = None,
    ) -> Segment:
        return self.transition(
            segment_id, stage_fields, ApprovalStatus.APPROVED, reason or "Content approved", project_id=project_id
        )

    def reject(
        self,
        segment_id: str,
        stage_fields: Sequence[str],
        reason: Optional[str] = None,
        *,
        project_id: Optional[str] = None,
    ) -> Segment:
        return self.transition(
            segment_id, stage_fields, ApprovalStatus.REJECTED, reason or "Content rejected", project_id=project_id
        )

    def _transition_stage(
        self, project_id: str, stage: str, to_status: ApprovalStatus, reason: Optional[str]
    ) -> Project:
        project = repository.require_project(self.db, project_id)
        if not project.segments:
            raise PreconditionError(f"project {project_id} has no segments")
        fields = resolve_fields(stage=stage)

        plan: Plan = []
        for segment in project.segments:
            plan.extend(self._plan(segment, fields, to_status))
            if to_status == ApprovalStatus.APPROVED and VIDEO_FIELD in fields:
                self._check_video_ready(segment)

        self._apply(plan, reason)
        self._refresh(project)
        return project

    def approve_stage(self, project_id: str, stage: str, reason: Optional[str] = None) -> Project:
        return self._transition_stage(project_id, stage, ApprovalStatus.APPROVED, reason or "Stage approved")

    def reject_stage(self, project_id: str, stage: str, reason: Optional[str] = None) -> Project:
        return self._transition_stage(project_id, stage, ApprovalStatus.REJECTED, reason or "Stage rejected")

    def _advance_to_processing(self, segment: Segment, field: str, reason: str) -> None:
        """Walk ``field`` along legal hops until it is PROCESSING, logging each hop."""
        current = approval.coerce_status(getattr(segment, field))
        plan: Plan = []
        for hop in approval.transition_path(current, ApprovalStatus.PROCESSING):
            plan.append((segment, field, current, hop))
            current = hop
        self._apply(plan, reason)

    # -- segments -------------------------------------------------------------

    def update_segment(
        self,
        project_id: str,
        segment_id: str,
        *,
        script: Optional[str] = None,
        video_prompt: Optional[str] = None,
    ) -> Segment:
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        if not approval.can_user_edit(segment.script_approval_status):
            raise PreconditionError(
                f"segment {segment_id} script is {segment.script_approval_status}; reset it to DRAFT to edit"
            )
        if script is not None:
            segment.script = script
        if video_prompt is not None:
            segment.video_prompt = video_prompt
        self.db.flush()
        return segment

    def regenerate_all(self, project_id: str, instruction: str) -> Project:
        """Replace every segment of the project with a fresh script generation.

        Destructive: existing segments and their candidates are deleted. The
        script service is called first, so an upstream failure deletes nothing.
        """
        project = repository.require_project(self.db, project_id)
        drafts = self.clients.script.generate(project.title, project.description, instruction)

        replaced = len(project.segments)
        created = repository.replace_segments(self.db, project, drafts)
        for segment in created:
            self._advance_to_processing(segment, SCRIPT_FIELD, "Script generated")
        project.result_url = None
        self._refresh(project)
        logger.warning(
            "segments_regenerated",
            project_id=project.id,
            replaced=replaced,
            created=len(created),
        )
        return project

    # -- candidates -----------------------------------------------------------

    def _store_payload(self, payload: MediaPayload, folder: str) -> str:
        if payload.data:
            return store_bytes(payload.data, payload.suffix, folder, self.media_root)
        if payload.url:
            return payload.url
        raise UpstreamServiceError("generation returned neither data nor url")

    def _add_generated(
        self,
        segment: Segment,
        kind: MediaKind,
        payload: MediaPayload,
        prompt: str,
        reason: str,
    ) -> MediaCandidate:
        url = self._store_payload(payload, f"{kind.value}s/{segment.id}")
        candidate = candidates.new_candidate(
            kind,
            url=url,
            status=MediaStatus.COMPLETED,
            prompt=prompt,
            meta=payload.metadata,
        )
        candidates.add_candidate(self.db, segment, kind, candidate)
        self._advance_to_processing(segment, KIND_FIELDS[kind], reason)
        self._refresh(segment.project)
        logger.info("candidate_generated", segment_id=segment.id, kind=kind.value, candidate_id=candidate.id)
        return candidate

    def generate_image(
        self,
        project_id: str,
        segment_id: str,
        *,
        prompt: Optional[str] = None,
        aspect_ratio: Optional[str] = None,
        model: Optional[str] = None,
        safety_filter_level: Optional[str] = None,
        person_generation: Optional[str] = None,
    ) -> MediaCandidate:
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        text = (prompt or segment.video_prompt).strip()
        if not text:
            raise PreconditionError(f"segment {segment_id} has no prompt for image generation")

        cfg = self.config.image
        payload = self.clients.image.generate(
            text,
            aspect_ratio or cfg.aspect_ratio,
            model or cfg.model,
            safety_filter_level or cfg.safety_filter_level,
            person_generation or cfg.person_generation,
        )
        return self._add_generated(segment, MediaKind.IMAGE, payload, text, "Image generated")

    def generate_audio(
        self,
        project_id: str,
        segment_id: str,
        *,
        text: Optional[str] = None,
        voice: Optional[str] = None,
        model: Optional[str] = None,
    ) -> MediaCandidate:
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        spoken = (text or segment.script).strip()
        if not spoken:
            raise PreconditionError(f"segment {segment_id} has no script to synthesize")
        cfg = self.config.speech
        if len(spoken) > cfg.max_text_chars:
            raise PreconditionError(f"text too long: maximum {cfg.max_text_chars} characters")

        payload = self.clients.speech.synthesize(spoken, voice or cfg.default_voice, model or cfg.model)
        return self._add_generated(segment, MediaKind.AUDIO, payload, spoken, "Audio generated")

    def generate_video(
        self,
        project_id: str,
        segment_id: str,
        *,
        prompt: Optional[str] = None,
        image_url: Optional[str] = None,
        duration: Optional[int] = None,
        negative_prompt: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> TaskHandle:
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        if not image_url:
            image = candidates.selected_candidate(segment, MediaKind.IMAGE)
            if image is None or image.status != MediaStatus.COMPLETED.value:
                raise PreconditionError(f"segment {segment_id} has no completed image to animate")
            image_url = image.url

        text = (prompt or segment.video_prompt).strip()
        if not text:
            raise PreconditionError(f"segment {segment_id} has no prompt for video generation")

        cfg = self.config.video
        handle = self.tracker.submit(
            segment.id,
            image_url,
            text,
            duration or cfg.default_duration_s,
            negative_prompt,
            mode or cfg.default_mode,
        )
        self._advance_to_processing(segment, VIDEO_FIELD, "Video generation submitted")
        self._refresh(segment.project)
        return handle

    def select_candidate(
        self, project_id: str, segment_id: str, kind: MediaKind | str, candidate_id: str
    ) -> MediaCandidate:
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        return candidates.select_candidate(self.db, segment, kind, candidate_id)

    def poll_video(self, task_handle: str) -> TaskStatus:
        return self.tracker.poll_safely(task_handle)

    def cancel_video(self, task_handle: str) -> bool:
        return self.tracker.cancel(task_handle)

    # -- final assembly -------------------------------------------------------

    def _require_assembler(self) -> Assembler:
        if self.assembler is None:
            raise PreconditionError("no media assembler configured")
        return self.assembler

    def assemble_segment(self, project_id: str, segment_id: str) -> Segment:
        assembler = self._require_assembler()
        segment = candidates.lock_segment(self.db, segment_id, project_id)
        video = candidates.selected_candidate(segment, MediaKind.VIDEO)
        audio = candidates.selected_candidate(segment, MediaKind.AUDIO)
        missing = [
            kind
            for kind, item in (("video", video), ("audio", audio))
            if item is None or item.status != MediaStatus.COMPLETED.value
        ]
        if missing:
            raise PreconditionError(f"segment {segment_id} is missing completed {', '.join(missing)}")

        try:
            segment.result_url = assembler.merge(segment.id, video.url, audio.url)
        except MediaError as exc:
            raise WorkflowError(str(exc), error="assembly_failed", status_code=500) from exc
        self._advance_to_processing(segment, FINAL_FIELD, "Segment assembled")
        self._refresh(segment.project)
        return segment

    def concatenate_project(self, project_id: str) -> Project:
        assembler = self._require_assembler()
        project = repository.load_project(self.db, project_id)
        if stage_gate.current_stage(project.segments) != WorkflowStage.COMPLETED:
            raise PreconditionError(f"project {project_id} is at {project.current_stage}, not COMPLETED")
        missing = [segment.id for segment in project.segments if not segment.result_url]
        if missing:
            raise PreconditionError(f"segments without assembled result: {', '.join(missing)}")

        try:
            project.result_url = assembler.concat(project.id, [s.result_url for s in project.segments])
        except MediaError as exc:
            raise WorkflowError(str(exc), error="assembly_failed", status_code=500) from exc
        self.db.flush()
        return project

    # -- ideas ----------------------------------------------------------------

    def generate_ideas(
        self,
        topic: str,
        *,
        count: int = 5,
        existing: Sequence[str] = (),
        model: Optional[str] = None,
    ) -> list[VideoIdea]:
        """Brainstorm video ideas that repeat neither ``existing`` nor any project title."""
        topic = topic.strip()
        if not topic:
            raise WorkflowError("topic is required", error="invalid_topic")
        known = list(dict.fromkeys([*existing, *repository.list_project_titles(self.db)]))
        taken = {title.strip().casefold() for title in known}
        ideas = [
            idea
            for idea in self.clients.ideas.generate_ideas(topic, count, known, model=model)
            if idea.title.strip().casefold() not in taken
        ][:count]
        logger.info("ideas_generated", topic=topic, requested=count, returned=len(ideas))
        return ideas

    # -- audit ----------------------------------------------------------------

    def status_history(
        self, project_id: str, *, segment_id: Optional[str] = None, field: Optional[str] = None
    ) -> list[StatusChangeEvent]:
        repository.require_project(self.db, project_id)
        return status_log.list_events(self.db, project_id, segment_id=segment_id, field=field)
