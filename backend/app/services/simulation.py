"""Simulated generation services for local development without credentials.

These are selected explicitly through ``workflow.simulation_mode``; the real
clients never fall back to them on their own. Simulated video tasks are
stateless: the submission time is encoded in the task id, so any process can
answer a poll for it.
"""

from __future__ import annotations

import time
import uuid
from typing import Callable, Optional

from app.core.constants import MediaStatus
from app.services.clients import (
    MediaPayload,
    ScriptSegmentDraft,
    VideoIdea,
    VideoSubmission,
    VideoTaskState,
    parse_video_ideas,
)

SIMULATED_SCHEME = "simulated://"


class SimulatedScriptGenerator:
    def generate(self, title: str, description: str, system_instruction: str) -> list[ScriptSegmentDraft]:
        subject = description.strip() or title
        return [
            ScriptSegmentDraft(
                order=1,
                script=f"Introduction to {title}",
                video_prompt=f"Professional introduction scene for {title}",
            ),
            ScriptSegmentDraft(
                order=2,
                script=f"Main content about {subject}",
                video_prompt=f"Main content visualization for {title}",
            ),
            ScriptSegmentDraft(
                order=3,
                script=f"Conclusion and next steps for {title}",
                video_prompt=f"Conclusion scene for {title}",
            ),
        ]


class SimulatedIdeaGenerator:
    _ANGLES = (
        ("The untold origin of", True),
        ("A day inside", True),
        ("The legend behind", False),
        ("What scientists still argue about in", True),
        ("The strangest story of", False),
    )

    def generate_ideas(
        self, topic: str, count: int, existing_topics: list[str], model: Optional[str] = None
    ) -> list[VideoIdea]:
        items = []
        for part in range(1, count + 1):
            suffix = "" if part == 1 else f" (part {part})"
            for prefix, fact_based in self._ANGLES:
                items.append(
                    {
                        "title": f"{prefix} {topic}{suffix}",
                        "description": f"A short video exploring {topic} from a new angle.",
                        "isFactBased": fact_based,
                    }
                )
        return parse_video_ideas(items, existing_topics, limit=count)


class SimulatedSpeechSynthesizer:
    def synthesize(self, text: str, voice: str, model: Optional[str] = None) -> MediaPayload:
        return MediaPayload(
            url=f"{SIMULATED_SCHEME}speech/{uuid.uuid4().hex}.mp3",
            suffix=".mp3",
            metadata={"voice": voice, "simulated": True},
        )


class SimulatedImageGenerator:
    def generate(
        self,
        prompt: str,
        aspect_ratio: Optional[str] = None,
        model: Optional[str] = None,
        safety_filter_level: Optional[str] = None,
        person_generation: Optional[str] = None,
    ) -> MediaPayload:
        return MediaPayload(
            url=f"{SIMULATED_SCHEME}image/{uuid.uuid4().hex}.png",
            suffix=".png",
            metadata={"aspect_ratio": aspect_ratio, "simulated": True},
        )


class SimulatedVideoGenerator:
    def __init__(self, complete_after_s: float = 30.0, clock: Callable[[], float] = time.time):
        self.complete_after_s = complete_after_s
        self._clock = clock

    def submit(
        self,
        image_url: str,
        prompt: str,
        duration: int,
        negative_prompt: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> VideoSubmission:
        submitted_ms = int(self._clock() * 1000)
        task_id = f"sim-{uuid.uuid4().hex[:12]}-{submitted_ms}"
        return VideoSubmission(task_id=task_id, status=MediaStatus.PENDING, raw={"simulated": True})

    def poll(self, task_id: str) -> VideoTaskState:
        try:
            submitted_ms = int(task_id.rsplit("-", 1)[1])
        except (IndexError, ValueError):
            return VideoTaskState(status=MediaStatus.FAILED, error=f"unknown simulated task: {task_id}")

        elapsed = max(0.0, self._clock() - submitted_ms / 1000)
        if elapsed >= self.complete_after_s:
            return VideoTaskState(
                status=MediaStatus.COMPLETED,
                video_url=f"{SIMULATED_SCHEME}video/{task_id}.mp4",
                progress=100,
                metadata={"task_id": task_id, "simulated": True},
            )
        progress = int(elapsed / self.complete_after_s * 100) if self.complete_after_s else 0
        return VideoTaskState(
            status=MediaStatus.PROCESSING,
            progress=progress,
            metadata={"task_id": task_id, "simulated": True},
        )

    def cancel(self, task_id: str) -> bool:
        return True
