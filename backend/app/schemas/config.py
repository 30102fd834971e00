"""Pydantic schemas for persisted app configuration."""

from __future__ import annotations

from pydantic import BaseModel, Field


class ScriptConfig(BaseModel):
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o-mini"
    timeout_s: int = 120
    temperature: float = 0.7
    min_segments: int = 3
    max_segments: int = 5


class SpeechConfig(BaseModel):
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-4o-mini-tts"
    default_voice: str = "alloy"
    timeout_s: int = 120
    max_text_chars: int = 5000


class ImageConfig(BaseModel):
    base_url: str = "https://api.openai.com"
    api_key: str = ""
    model: str = "gpt-image-1"
    aspect_ratio: str = "9:16"
    safety_filter_level: str = "block_medium_and_above"
    person_generation: str = "allow_adult"
    timeout_s: int = 180


class VideoConfig(BaseModel):
    base_url: str = "https://api.piapi.ai"
    api_key: str = ""
    model: str = "kling"
    version: str = "2.1"
    timeout_s: int = 30
    default_duration_s: int = 5
    default_mode: str = "std"
    poll_interval_s: int = 12
    max_poll_attempts: int = 150
    max_poll_seconds: int = 1800
    server_side_polling: bool = False


class WorkflowConfig(BaseModel):
    # Explicit switch; missing credentials never imply simulation.
    simulation_mode: bool = False
    default_instruction: str = "default"


class AppConfig(BaseModel):
    script: ScriptConfig = Field(default_factory=ScriptConfig)
    speech: SpeechConfig = Field(default_factory=SpeechConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    video: VideoConfig = Field(default_factory=VideoConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)


class InstructionSummary(BaseModel):
    name: str
    updated_at: str


class InstructionOut(InstructionSummary):
    content: str


class InstructionIn(BaseModel):
    content: str


class CatalogOption(BaseModel):
    value: str
    label: str
    description: str = ""
    is_default: bool = False


class ModelCatalog(BaseModel):
    script: list[CatalogOption]
    speech: list[CatalogOption]
    image: list[CatalogOption]
    video: list[CatalogOption]
