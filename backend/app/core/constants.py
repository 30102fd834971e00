"""Project-wide constants and state definitions."""

from __future__ import annotations

from enum import Enum


class ApprovalStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    PROCESSING = "PROCESSING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class LegacyApprovalStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    DRAFT = "draft"
    REGENERATING = "regenerating"


STATUS_TRANSITIONS: dict[ApprovalStatus, frozenset[ApprovalStatus]] = {
    ApprovalStatus.DRAFT: frozenset({ApprovalStatus.SUBMITTED}),
    ApprovalStatus.SUBMITTED: frozenset({ApprovalStatus.PROCESSING, ApprovalStatus.DRAFT}),
    ApprovalStatus.PROCESSING: frozenset({ApprovalStatus.APPROVED, ApprovalStatus.REJECTED}),
    ApprovalStatus.APPROVED: frozenset({ApprovalStatus.DRAFT}),
    ApprovalStatus.REJECTED: frozenset({ApprovalStatus.DRAFT}),
}


class WorkflowStage(str, Enum):
    SCRIPT_GENERATION = "SCRIPT_GENERATION"
    IMAGE_GENERATION = "IMAGE_GENERATION"
    VIDEO_GENERATION = "VIDEO_GENERATION"
    FINAL_ASSEMBLY = "FINAL_ASSEMBLY"
    COMPLETED = "COMPLETED"


class ProjectStatus(str, Enum):
    DRAFT = "DRAFT"
    COMPLETED = "COMPLETED"


class MediaKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"


class MediaStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    STAGED = "staged"


PENDING_MEDIA_STATES = {MediaStatus.PENDING, MediaStatus.PROCESSING, MediaStatus.STAGED}

TERMINAL_MEDIA_STATES = {MediaStatus.COMPLETED, MediaStatus.FAILED}

SCRIPT_FIELD = "script_approval_status"
IMAGE_FIELD = "image_approval_status"
VIDEO_FIELD = "video_approval_status"
AUDIO_FIELD = "audio_approval_status"
FINAL_FIELD = "final_approval_status"

APPROVAL_FIELDS = (SCRIPT_FIELD, IMAGE_FIELD, VIDEO_FIELD, AUDIO_FIELD, FINAL_FIELD)

# Approving the script stage also signs off the narration audio.
STAGE_FIELDS: dict[str, tuple[str, ...]] = {
    "script": (SCRIPT_FIELD, AUDIO_FIELD),
    "image": (IMAGE_FIELD,),
    "video": (VIDEO_FIELD,),
    "audio": (AUDIO_FIELD,),
    "final": (FINAL_FIELD,),
}

KIND_FIELDS: dict[MediaKind, str] = {
    MediaKind.IMAGE: IMAGE_FIELD,
    MediaKind.VIDEO: VIDEO_FIELD,
    MediaKind.AUDIO: AUDIO_FIELD,
}
