"""Assemble the generation collaborators for a given configuration."""

from __future__ import annotations

from dataclasses import dataclass

from app.schemas.config import AppConfig
from app.services.clients import (
    IdeaClient,
    IdeaGenerator,
    ImageClient,
    ImageGenerator,
    ScriptClient,
    ScriptGenerator,
    SpeechClient,
    SpeechSynthesizer,
    VideoClient,
    VideoGenerator,
)
from app.services.simulation import (
    SimulatedIdeaGenerator,
    SimulatedImageGenerator,
    SimulatedScriptGenerator,
    SimulatedSpeechSynthesizer,
    SimulatedVideoGenerator,
)


@dataclass
class ServiceClients:
    script: ScriptGenerator
    speech: SpeechSynthesizer
    image: ImageGenerator
    video: VideoGenerator
    ideas: IdeaGenerator


def build_clients(config: AppConfig) -> ServiceClients:
    if config.workflow.simulation_mode:
        return ServiceClients(
            script=SimulatedScriptGenerator(),
            speech=SimulatedSpeechSynthesizer(),
            image=SimulatedImageGenerator(),
            video=SimulatedVideoGenerator(),
            ideas=SimulatedIdeaGenerator(),
        )
    return ServiceClients(
        script=ScriptClient(config.script),
        speech=SpeechClient(config.speech),
        image=ImageClient(config.image),
        video=VideoClient(config.video),
        ideas=IdeaClient(config.script),
    )
