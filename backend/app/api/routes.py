"""FastAPI route definitions."""

from __future__ import annotations

import asyncio
import json
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sse_starlette.sse import EventSourceResponse
from sqlalchemy.orm import Session

from app.core.constants import ProjectStatus
from app.core.settings import APP_VERSION, PATHS
from app.db.session import SessionLocal, get_db_session
from app.schemas.config import (
    AppConfig,
    CatalogOption,
    InstructionIn,
    InstructionOut,
    InstructionSummary,
    ModelCatalog,
)
from app.schemas.project import (
    AudioGenerateRequest,
    CandidateOut,
    IdeaOut,
    IdeaRequest,
    ImageGenerateRequest,
    ProjectCreate,
    ProjectOut,
    ProjectUpdate,
    RegenerateRequest,
    SegmentOut,
    SegmentUpdate,
    StageFieldsRequest,
    StatusChangeEventOut,
    TaskHandleOut,
    TaskStatusOut,
    TransitionRequest,
    VideoGenerateRequest,
)
from app.services import repository, stage_gate, status_log
from app.services.catalog import model_catalog, voice_catalog
from app.services.config_store import load_config, save_config
from app.services.instruction_store import (
    delete_instruction,
    get_instruction,
    list_instructions,
    save_instruction,
)
from app.services.media import Assembler, FFmpegAssembler, ffmpeg_available
from app.services.providers import ServiceClients, build_clients
from app.services.task_tracker import TaskHandle, TaskStatus, is_pending
from app.services.workflow import WorkflowController, resolve_fields
from app.workers.queue import enqueue_video_watch

router = APIRouter(prefix="/api", tags=["api"])


def get_app_config() -> AppConfig:
    return load_config()


def get_service_clients(config: AppConfig = Depends(get_app_config)) -> ServiceClients:
    return build_clients(config)


def get_assembler() -> Assembler:
    return FFmpegAssembler()


def get_controller(
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
    clients: ServiceClients = Depends(get_service_clients),
    assembler: Assembler = Depends(get_assembler),
) -> WorkflowController:
    return WorkflowController(db, clients, config, assembler=assembler)


def _instruction_content(name: Optional[str], config: AppConfig) -> str:
    key = (name or "").strip() or config.workflow.default_instruction
    try:
        instruction = get_instruction(key)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not instruction:
        raise HTTPException(status_code=404, detail=f"Instruction not found: {key}")
    return instruction.content


def _handle_out(handle: TaskHandle) -> TaskHandleOut:
    return TaskHandleOut(
        task_id=handle.task_id,
        candidate_id=handle.candidate_id,
        segment_id=handle.segment_id,
        status=handle.status.value,
    )


def _status_out(status: TaskStatus) -> TaskStatusOut:
    return TaskStatusOut(
        task_id=status.task_id,
        candidate_id=status.candidate_id,
        segment_id=status.segment_id,
        status=status.status.value,
        video_url=status.video_url,
        progress=status.progress,
        error=status.error,
        attempts=status.attempts,
        cached=status.cached,
        remote_status=status.remote_status.value if status.remote_status else None,
        poll_again=is_pending(status.status),
    )


@router.get("/health")
def health(
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
) -> dict[str, object]:
    return {
        "version": APP_VERSION,
        "ffmpeg_available": ffmpeg_available(),
        "simulation_mode": config.workflow.simulation_mode,
        "queue_db": str(PATHS.queue_path),
        "pending_video_tasks": len(repository.list_pending_video_tasks(db)),
    }


@router.get("/config", response_model=AppConfig)
def get_config() -> AppConfig:
    return load_config()


@router.put("/config", response_model=AppConfig)
def put_config(config: AppConfig) -> AppConfig:
    return save_config(config)


@router.get("/models", response_model=ModelCatalog)
def get_models(config: AppConfig = Depends(get_app_config)) -> ModelCatalog:
    return model_catalog(config)


@router.get("/voices", response_model=list[CatalogOption])
def get_voices(config: AppConfig = Depends(get_app_config)) -> list[CatalogOption]:
    return voice_catalog(config)


@router.post("/ideas", response_model=list[IdeaOut])
def generate_ideas(
    payload: IdeaRequest,
    controller: WorkflowController = Depends(get_controller),
) -> list[IdeaOut]:
    ideas = controller.generate_ideas(
        payload.topic,
        count=payload.count,
        existing=payload.existing_ideas,
        model=payload.model,
    )
    return [
        IdeaOut(title=idea.title, description=idea.description, is_fact_based=idea.is_fact_based)
        for idea in ideas
    ]


@router.get("/instructions", response_model=list[InstructionSummary])
def get_instructions() -> list[InstructionSummary]:
    return list_instructions()


@router.get("/instructions/{name}", response_model=InstructionOut)
def get_instruction_detail(name: str) -> InstructionOut:
    try:
        instruction = get_instruction(name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not instruction:
        raise HTTPException(status_code=404, detail="Instruction not found")
    return instruction


@router.put("/instructions/{name}", response_model=InstructionOut)
def put_instruction(name: str, payload: InstructionIn) -> InstructionOut:
    try:
        return save_instruction(name, payload.content)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.delete("/instructions/{name}")
def remove_instruction(name: str) -> dict[str, object]:
    try:
        deleted = delete_instruction(name)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=404, detail="Instruction not found")
    return {"deleted": True, "name": name}


@router.post("/projects", response_model=ProjectOut)
def create_project(
    payload: ProjectCreate,
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
    controller: WorkflowController = Depends(get_controller),
) -> ProjectOut:
    title = payload.title.strip()
    if not title:
        raise HTTPException(status_code=400, detail="title is required")

    project = repository.create_project(db, title=title, description=payload.description)
    if payload.generate_segments:
        instruction = _instruction_content(payload.instruction_name, config)
        project = controller.regenerate_all(project.id, instruction)
    db.commit()
    return repository.to_project_out(project)


@router.get("/projects", response_model=list[ProjectOut])
def list_projects(db: Session = Depends(get_db_session)) -> list[ProjectOut]:
    projects = repository.list_projects(db)
    db.commit()
    return [repository.to_project_out(project) for project in projects]


@router.get("/projects/{project_id}", response_model=ProjectOut)
def get_project(project_id: str, db: Session = Depends(get_db_session)) -> ProjectOut:
    project = repository.load_project(db, project_id)
    db.commit()
    return repository.to_project_out(project)


@router.patch("/projects/{project_id}", response_model=ProjectOut)
def update_project(
    project_id: str,
    payload: ProjectUpdate,
    db: Session = Depends(get_db_session),
) -> ProjectOut:
    repository.update_project(db, project_id, title=payload.title, description=payload.description)
    project = repository.load_project(db, project_id)
    db.commit()
    return repository.to_project_out(project)


@router.delete("/projects/{project_id}")
def delete_project(project_id: str, db: Session = Depends(get_db_session)) -> dict[str, object]:
    deleted = repository.delete_project(db, project_id)
    db.commit()
    if not deleted:
        raise HTTPException(status_code=404, detail="Project not found")
    return {"deleted": True, "project_id": project_id}


@router.post("/projects/{project_id}/segments/generate", response_model=ProjectOut)
def regenerate_segments(
    project_id: str,
    payload: RegenerateRequest,
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
    controller: WorkflowController = Depends(get_controller),
) -> ProjectOut:
    project = repository.require_project(db, project_id)
    if project.segments and not payload.confirm:
        raise HTTPException(
            status_code=409,
            detail=f"Regenerating replaces {len(project.segments)} existing segments. Set confirm=true.",
        )
    instruction = _instruction_content(payload.instruction_name, config)
    project = controller.regenerate_all(project_id, instruction)
    db.commit()
    return repository.to_project_out(project)


@router.patch("/projects/{project_id}/segments/{segment_id}", response_model=SegmentOut)
def update_segment(
    project_id: str,
    segment_id: str,
    payload: SegmentUpdate,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> SegmentOut:
    segment = controller.update_segment(
        project_id, segment_id, script=payload.script, video_prompt=payload.video_prompt
    )
    db.commit()
    return repository.to_segment_out(segment)


@router.post("/projects/{project_id}/segments/{segment_id}/approve", response_model=SegmentOut)
def approve_segment(
    project_id: str,
    segment_id: str,
    payload: StageFieldsRequest,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> SegmentOut:
    fields = resolve_fields(payload.stage, payload.fields)
    segment = controller.approve(segment_id, fields, payload.reason, project_id=project_id)
    db.commit()
    return repository.to_segment_out(segment)


@router.post("/projects/{project_id}/segments/{segment_id}/reject", response_model=SegmentOut)
def reject_segment(
    project_id: str,
    segment_id: str,
    payload: StageFieldsRequest,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> SegmentOut:
    fields = resolve_fields(payload.stage, payload.fields)
    segment = controller.reject(segment_id, fields, payload.reason, project_id=project_id)
    db.commit()
    return repository.to_segment_out(segment)


@router.post("/projects/{project_id}/segments/{segment_id}/transition", response_model=SegmentOut)
def transition_segment(
    project_id: str,
    segment_id: str,
    payload: TransitionRequest,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> SegmentOut:
    fields = resolve_fields(payload.stage, payload.fields)
    segment = controller.transition(
        segment_id, fields, payload.to_status, payload.reason, project_id=project_id
    )
    db.commit()
    return repository.to_segment_out(segment)


@router.post("/projects/{project_id}/stages/{stage}/approve", response_model=ProjectOut)
def approve_stage(
    project_id: str,
    stage: str,
    reason: Optional[str] = Query(None),
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> ProjectOut:
    project = controller.approve_stage(project_id, stage, reason)
    db.commit()
    return repository.to_project_out(project)


@router.post("/projects/{project_id}/stages/{stage}/reject", response_model=ProjectOut)
def reject_stage(
    project_id: str,
    stage: str,
    reason: Optional[str] = Query(None),
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> ProjectOut:
    project = controller.reject_stage(project_id, stage, reason)
    db.commit()
    return repository.to_project_out(project)


@router.post("/projects/{project_id}/segments/{segment_id}/images", response_model=CandidateOut)
def generate_image(
    project_id: str,
    segment_id: str,
    payload: ImageGenerateRequest,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> CandidateOut:
    candidate = controller.generate_image(project_id, segment_id, **payload.model_dump())
    db.commit()
    return repository.to_candidate_out(candidate)


@router.post("/projects/{project_id}/segments/{segment_id}/audios", response_model=CandidateOut)
def generate_audio(
    project_id: str,
    segment_id: str,
    payload: AudioGenerateRequest,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> CandidateOut:
    candidate = controller.generate_audio(project_id, segment_id, **payload.model_dump())
    db.commit()
    return repository.to_candidate_out(candidate)


@router.post("/projects/{project_id}/segments/{segment_id}/videos", response_model=TaskHandleOut)
def generate_video(
    project_id: str,
    segment_id: str,
    payload: VideoGenerateRequest,
    db: Session = Depends(get_db_session),
    config: AppConfig = Depends(get_app_config),
    controller: WorkflowController = Depends(get_controller),
) -> TaskHandleOut:
    handle = controller.generate_video(project_id, segment_id, **payload.model_dump())
    db.commit()
    if config.video.server_side_polling:
        enqueue_video_watch(handle.task_id)
    return _handle_out(handle)


@router.put(
    "/projects/{project_id}/segments/{segment_id}/{kind}/{candidate_id}/select",
    response_model=CandidateOut,
)
def select_candidate(
    project_id: str,
    segment_id: str,
    kind: str,
    candidate_id: str,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> CandidateOut:
    candidate = controller.select_candidate(project_id, segment_id, kind, candidate_id)
    db.commit()
    return repository.to_candidate_out(candidate)


@router.get("/videos/tasks/{task_handle}", response_model=TaskStatusOut)
def poll_video_task(
    task_handle: str,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> TaskStatusOut:
    status = controller.poll_video(task_handle)
    db.commit()
    return _status_out(status)


@router.post("/videos/tasks/{task_handle}/cancel")
def cancel_video_task(
    task_handle: str,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> dict[str, object]:
    canceled = controller.cancel_video(task_handle)
    db.commit()
    return {"task_id": task_handle, "canceled": canceled}


@router.post("/projects/{project_id}/segments/{segment_id}/assemble", response_model=SegmentOut)
def assemble_segment(
    project_id: str,
    segment_id: str,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> SegmentOut:
    segment = controller.assemble_segment(project_id, segment_id)
    db.commit()
    return repository.to_segment_out(segment)


@router.post("/projects/{project_id}/concatenate", response_model=ProjectOut)
def concatenate_project(
    project_id: str,
    db: Session = Depends(get_db_session),
    controller: WorkflowController = Depends(get_controller),
) -> ProjectOut:
    project = controller.concatenate_project(project_id)
    db.commit()
    return repository.to_project_out(project)


@router.get("/projects/{project_id}/history", response_model=list[StatusChangeEventOut])
def status_history(
    project_id: str,
    segment_id: Optional[str] = Query(None),
    field: Optional[str] = Query(None),
    controller: WorkflowController = Depends(get_controller),
) -> list[StatusChangeEventOut]:
    events = controller.status_history(project_id, segment_id=segment_id, field=field)
    return [StatusChangeEventOut.model_validate(event, from_attributes=True) for event in events]


@router.get("/projects/{project_id}/events")
async def stream_project_events(
    project_id: str,
    request: Request,
    db: Session = Depends(get_db_session),
) -> EventSourceResponse:
    repository.require_project(db, project_id)

    async def event_generator():
        last_id = 0
        while True:
            if await request.is_disconnected():
                break
            with SessionLocal() as session:
                events = status_log.list_events(session, project_id, after_id=last_id)
                project = repository.get_project(session, project_id)
                payloads = [
                    StatusChangeEventOut.model_validate(event, from_attributes=True).model_dump(mode="json")
                    for event in events
                ]
                completed = (
                    project is None or stage_gate.project_status(project.segments) == ProjectStatus.COMPLETED
                )

            for payload in payloads:
                last_id = payload["id"]
                yield {
                    "event": "status_changed",
                    "id": str(payload["id"]),
                    "data": json.dumps(payload, ensure_ascii=False),
                }

            if completed and not payloads:
                yield {"event": "end", "data": json.dumps({"project_id": project_id})}
                break

            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())
