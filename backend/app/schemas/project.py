"""Pydantic schemas for project, segment and task API payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    title: str
    description: str = ""
    generate_segments: bool = False
    instruction_name: Optional[str] = None


class CandidateOut(BaseModel):
    id: str
    kind: str
    url: str
    status: str
    is_selected: bool
    task_handle: Optional[str]
    prompt: Optional[str]
    meta: dict[str, object]
    created_at: datetime


class SegmentOut(BaseModel):
    id: str
    order: int
    script: str
    video_prompt: str
    script_approval_status: str
    image_approval_status: str
    video_approval_status: str
    audio_approval_status: str
    final_approval_status: str
    overall_status: str
    result_url: Optional[str]
    images: list[CandidateOut]
    videos: list[CandidateOut]
    audios: list[CandidateOut]


class ProjectOut(BaseModel):
    id: str
    title: str
    description: str
    current_stage: str
    status: str
    result_url: Optional[str]
    segments: list[SegmentOut]
    created_at: datetime
    updated_at: datetime


class StatusChangeEventOut(BaseModel):
    id: int
    project_id: str
    segment_id: str
    field: str
    from_status: str
    to_status: str
    reason: Optional[str]
    created_at: datetime


class StageFieldsRequest(BaseModel):
    """Either a stage name (``script``, ``image`` ...) or explicit approval fields."""

    stage: Optional[str] = None
    fields: list[str] = Field(default_factory=list)
    reason: Optional[str] = None


class TransitionRequest(StageFieldsRequest):
    to_status: str


class SegmentUpdate(BaseModel):
    script: Optional[str] = None
    video_prompt: Optional[str] = None


class ImageGenerateRequest(BaseModel):
    prompt: Optional[str] = None
    aspect_ratio: Optional[str] = None
    model: Optional[str] = None
    safety_filter_level: Optional[str] = None
    person_generation: Optional[str] = None


class AudioGenerateRequest(BaseModel):
    text: Optional[str] = None
    voice: Optional[str] = None
    model: Optional[str] = None


class VideoGenerateRequest(BaseModel):
    prompt: Optional[str] = None
    image_url: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=1, le=10)
    negative_prompt: Optional[str] = None
    mode: Optional[str] = None


class RegenerateRequest(BaseModel):
    instruction_name: Optional[str] = None
    confirm: bool = False


class TaskHandleOut(BaseModel):
    task_id: str
    candidate_id: str
    segment_id: str
    status: str


class TaskStatusOut(BaseModel):
    task_id: str
    candidate_id: str
    segment_id: str
    status: str
    video_url: Optional[str]
    progress: int
    error: Optional[str]
    attempts: int
    cached: bool
    remote_status: Optional[str]
    poll_again: bool


class ProjectUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class IdeaRequest(BaseModel):
    topic: str
    count: int = Field(default=5, ge=1, le=20)
    existing_ideas: list[str] = Field(default_factory=list)
    model: Optional[str] = None


class IdeaOut(BaseModel):
    title: str
    description: str
    is_fact_based: bool
