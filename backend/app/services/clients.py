"""HTTP clients for the script, speech, image and video generation services."""

from __future__ import annotations

import base64
import json
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, Protocol

import httpx

from app.core.constants import MediaStatus
from app.core.errors import UpstreamServiceError
from app.core.logging import get_logger
from app.schemas.config import ImageConfig, ScriptConfig, SpeechConfig, VideoConfig

logger = get_logger(__name__)


@dataclass
class ScriptSegmentDraft:
    order: int
    script: str
    video_prompt: str


@dataclass
class VideoIdea:
    title: str
    description: str
    is_fact_based: bool = False


@dataclass
class MediaPayload:
    """Generated media, either hosted upstream (``url``) or returned inline (``data``)."""

    url: Optional[str] = None
    data: Optional[bytes] = None
    suffix: str = ".bin"
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class VideoSubmission:
    task_id: str
    status: MediaStatus
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class VideoTaskState:
    status: MediaStatus
    video_url: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None
    metadata: dict[str, Any] = field(default_factory=dict)


class ScriptGenerator(Protocol):
    def generate(self, title: str, description: str, system_instruction: str) -> list[ScriptSegmentDraft]: ...


class IdeaGenerator(Protocol):
    def generate_ideas(
        self, topic: str, count: int, existing_topics: list[str], model: Optional[str] = None
    ) -> list[VideoIdea]: ...


class SpeechSynthesizer(Protocol):
    def synthesize(self, text: str, voice: str, model: Optional[str] = None) -> MediaPayload: ...


class ImageGenerator(Protocol):
    def generate(
        self,
        prompt: str,
        aspect_ratio: Optional[str] = None,
        model: Optional[str] = None,
        safety_filter_level: Optional[str] = None,
        person_generation: Optional[str] = None,
    ) -> MediaPayload: ...


class VideoGenerator(Protocol):
    def submit(
        self,
        image_url: str,
        prompt: str,
        duration: int,
        negative_prompt: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> VideoSubmission: ...

    def poll(self, task_id: str) -> VideoTaskState: ...

    def cancel(self, task_id: str) -> bool: ...


_REMOTE_STATUS = {
    "pending": MediaStatus.PENDING,
    "queued": MediaStatus.PENDING,
    "submitted": MediaStatus.PENDING,
    "staged": MediaStatus.STAGED,
    "processing": MediaStatus.PROCESSING,
    "running": MediaStatus.PROCESSING,
    "completed": MediaStatus.COMPLETED,
    "success": MediaStatus.COMPLETED,
    "succeeded": MediaStatus.COMPLETED,
    "done": MediaStatus.COMPLETED,
    "failed": MediaStatus.FAILED,
    "error": MediaStatus.FAILED,
    "canceled": MediaStatus.FAILED,
    "cancelled": MediaStatus.FAILED,
}


def map_remote_status(value: object) -> MediaStatus:
    """Normalize an upstream task status; unknown values count as pending."""
    return _REMOTE_STATUS.get(str(value or "").strip().lower(), MediaStatus.PENDING)


def _deep_find(data: Any, keys: set[str]) -> list[Any]:
    found: list[Any] = []
    if isinstance(data, dict):
        for k, v in data.items():
            if k in keys:
                found.append(v)
            found.extend(_deep_find(v, keys))
    elif isinstance(data, list):
        for item in data:
            found.extend(_deep_find(item, keys))
    return found


def _first_string(values: list[Any]) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def parse_llm_text(payload: dict[str, Any]) -> str:
    choices = payload.get("choices")
    if isinstance(choices, list) and choices:
        first = choices[0]
        if isinstance(first, dict):
            message = first.get("message")
            if isinstance(message, dict):
                content = message.get("content")
                if isinstance(content, str):
                    return content.strip()
            content = first.get("content")
            if isinstance(content, str):
                return content.strip()

    output_text = payload.get("output_text")
    if isinstance(output_text, str):
        return output_text.strip()

    candidates = _deep_find(payload, {"text", "content"})
    content = _first_string(candidates)
    return content or ""


def extract_first_json_array(text: str) -> list[Any]:
    text = text.strip()
    if not text:
        raise ValueError("empty llm output")

    if text.startswith("```"):
        text = re.sub(r"^```(?:json)?", "", text).strip()
        text = re.sub(r"```$", "", text).strip()

    try:
        parsed = json.loads(text)
        if isinstance(parsed, list):
            return parsed
        if isinstance(parsed, dict) and isinstance(parsed.get("segments"), list):
            return parsed["segments"]
    except json.JSONDecodeError:
        pass

    match = re.search(r"\[.*\]", text, flags=re.DOTALL)
    if not match:
        raise ValueError("no json array found in llm output")

    parsed = json.loads(match.group(0))
    if not isinstance(parsed, list):
        raise ValueError("llm output json must be array")
    return parsed


def parse_script_segments(items: list[Any]) -> list[ScriptSegmentDraft]:
    drafts: list[ScriptSegmentDraft] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        script = str(item.get("script") or "").strip()
        prompt = str(item.get("videoPrompt") or item.get("video_prompt") or "").strip()
        if not script and not prompt:
            continue
        # Upstream numbering is not trusted; position in the array wins.
        drafts.append(ScriptSegmentDraft(order=len(drafts) + 1, script=script, video_prompt=prompt))
    if not drafts:
        raise ValueError("script output contains no usable segments")
    return drafts


IDEA_SYSTEM_INSTRUCTION = """You are a video content strategist. Given a topic, propose specific, \
searchable video ideas suitable for documentary, educational or mystery-style short videos.

Rules:
* Every idea names a concrete event, phenomenon, person, place or legend. No broad themes or listicles.
* Never repeat or overlap with any entry of existingTopics.
* Write titles and descriptions in the language of the topic.
* isFactBased is true for documented history or science, false for myths, legends or speculation.

The user message is JSON: {"topic": string, "count": number, "existingTopics": [string]}.
Answer with a JSON array of exactly `count` objects:
{"title": string, "description": string (1-2 sentences), "isFactBased": boolean}"""


def _truthy(value: object) -> bool:
    if isinstance(value, bool):
        return value
    return str(value or "").strip().lower() in {"true", "yes", "1"}


def parse_video_ideas(
    items: list[Any], existing_topics: Iterable[str] = (), limit: Optional[int] = None
) -> list[VideoIdea]:
    """Keep well-formed ideas whose title is new, compared case-insensitively."""
    seen = {topic.strip().casefold() for topic in existing_topics if topic.strip()}
    ideas: list[VideoIdea] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        if not title or title.casefold() in seen:
            continue
        seen.add(title.casefold())
        ideas.append(
            VideoIdea(
                title=title,
                description=str(item.get("description") or "").strip(),
                is_fact_based=_truthy(item.get("isFactBased", item.get("is_fact_based"))),
            )
        )
        if limit and len(ideas) >= limit:
            break
    return ideas


def _bearer(api_key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}


def _require_key(api_key: str, service: str) -> None:
    if not api_key:
        raise UpstreamServiceError(f"{service} api_key is required")


def _json_body(resp: httpx.Response, what: str) -> dict[str, Any]:
    try:
        body = resp.json()
    except ValueError as exc:
        raise UpstreamServiceError(f"{what} response is not JSON: {resp.text[:300]}") from exc
    if not isinstance(body, dict):
        raise UpstreamServiceError(f"{what} response must be a JSON object: {resp.text[:300]}")
    return body


class ScriptClient:
    def __init__(self, cfg: ScriptConfig, transport: Optional[httpx.BaseTransport] = None):
        self.cfg = cfg
        self._transport = transport

    @staticmethod
    def build_user_prompt(title: str, description: str, min_segments: int, max_segments: int) -> str:
        lines = [f'Create a video script for the topic: "{title}"']
        if description.strip():
            lines.append(f"Description: {description.strip()}")
        lines.append(
            f"Divide it into {min_segments}-{max_segments} segments and answer with a JSON array of "
            '{"order": number, "script": string, "videoPrompt": string}.'
        )
        return "\n".join(lines)

    def _complete(self, system_instruction: str, user_content: str, model: Optional[str] = None) -> str:
        _require_key(self.cfg.api_key, "script")
        url = f"{self.cfg.base_url.rstrip('/')}/v1/chat/completions"
        payload = {
            "model": model or self.cfg.model,
            "messages": [
                {"role": "system", "content": system_instruction},
                {"role": "user", "content": user_content},
            ],
            "temperature": self.cfg.temperature,
        }
        try:
            with httpx.Client(timeout=self.cfg.timeout_s, transport=self._transport) as client:
                resp = client.post(url, headers=_bearer(self.cfg.api_key), json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Script request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Script request failed: {resp.status_code} {resp.text[:500]}")
        return parse_llm_text(_json_body(resp, "Script"))

    def generate(self, title: str, description: str, system_instruction: str) -> list[ScriptSegmentDraft]:
        text = self._complete(
            system_instruction,
            self.build_user_prompt(title, description, self.cfg.min_segments, self.cfg.max_segments),
        )
        try:
            return parse_script_segments(extract_first_json_array(text))
        except ValueError as exc:
            raise UpstreamServiceError(f"Script response malformed: {exc}") from exc


class IdeaClient(ScriptClient):
    """Video idea brainstorming on the same chat endpoint as script generation."""

    @staticmethod
    def build_idea_prompt(topic: str, count: int, existing_topics: list[str]) -> str:
        return json.dumps(
            {"topic": topic, "count": count, "existingTopics": existing_topics},
            ensure_ascii=False,
        )

    def generate_ideas(
        self, topic: str, count: int, existing_topics: list[str], model: Optional[str] = None
    ) -> list[VideoIdea]:
        text = self._complete(
            IDEA_SYSTEM_INSTRUCTION,
            self.build_idea_prompt(topic, count, existing_topics),
            model=model,
        )
        try:
            return parse_video_ideas(extract_first_json_array(text), existing_topics, limit=count)
        except ValueError as exc:
            raise UpstreamServiceError(f"Idea response malformed: {exc}") from exc


class SpeechClient:
    def __init__(self, cfg: SpeechConfig, transport: Optional[httpx.BaseTransport] = None):
        self.cfg = cfg
        self._transport = transport

    def synthesize(self, text: str, voice: str, model: Optional[str] = None) -> MediaPayload:
        _require_key(self.cfg.api_key, "speech")
        url = f"{self.cfg.base_url.rstrip('/')}/v1/audio/speech"
        payload = {
            "model": model or self.cfg.model,
            "voice": voice or self.cfg.default_voice,
            "input": text,
            "response_format": "mp3",
        }
        try:
            with httpx.Client(timeout=self.cfg.timeout_s, transport=self._transport) as client:
                resp = client.post(url, headers=_bearer(self.cfg.api_key), json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Speech request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Speech request failed: {resp.status_code} {resp.text[:500]}")
        if not resp.content:
            raise UpstreamServiceError("Speech response is empty")
        return MediaPayload(data=resp.content, suffix=".mp3", metadata={"voice": payload["voice"]})


class ImageClient:
    _SIZES = {"1:1": "1024x1024", "9:16": "1024x1536", "16:9": "1536x1024"}

    def __init__(self, cfg: ImageConfig, transport: Optional[httpx.BaseTransport] = None):
        self.cfg = cfg
        self._transport = transport

    def generate(
        self,
        prompt: str,
        aspect_ratio: Optional[str] = None,
        model: Optional[str] = None,
        safety_filter_level: Optional[str] = None,
        person_generation: Optional[str] = None,
    ) -> MediaPayload:
        _require_key(self.cfg.api_key, "image")
        ratio = aspect_ratio or self.cfg.aspect_ratio
        url = f"{self.cfg.base_url.rstrip('/')}/v1/images/generations"
        payload = {
            "model": model or self.cfg.model,
            "prompt": prompt,
            "n": 1,
            "size": self._SIZES.get(ratio, "1024x1024"),
        }
        try:
            with httpx.Client(timeout=self.cfg.timeout_s, transport=self._transport) as client:
                resp = client.post(url, headers=_bearer(self.cfg.api_key), json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Image request failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Image request failed: {resp.status_code} {resp.text[:500]}")

        body = _json_body(resp, "Image")
        metadata = {
            "aspect_ratio": ratio,
            "safety_filter_level": safety_filter_level or self.cfg.safety_filter_level,
            "person_generation": person_generation or self.cfg.person_generation,
        }
        encoded = _first_string(_deep_find(body, {"b64_json"}))
        if encoded:
            return MediaPayload(data=base64.b64decode(encoded), suffix=".png", metadata=metadata)
        hosted = _first_string(_deep_find(body, {"url"}))
        if hosted:
            return MediaPayload(url=hosted, suffix=".png", metadata=metadata)
        raise UpstreamServiceError("Image response contains no image")


class VideoClient:
    """Task-based image-to-video API: submit returns a task id, poll reads its state."""

    def __init__(self, cfg: VideoConfig, transport: Optional[httpx.BaseTransport] = None):
        self.cfg = cfg
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        return {"X-API-Key": self.cfg.api_key, "Content-Type": "application/json"}

    def _client(self) -> httpx.Client:
        return httpx.Client(timeout=self.cfg.timeout_s, transport=self._transport)

    def build_submit_payload(
        self,
        *,
        image_url: str,
        prompt: str,
        duration: int,
        negative_prompt: Optional[str],
        mode: Optional[str],
    ) -> dict[str, Any]:
        payload_input: dict[str, Any] = {
            "version": self.cfg.version,
            "image_url": image_url,
            "prompt": prompt,
            "duration": max(1, int(duration)),
            "mode": mode or self.cfg.default_mode,
        }
        if negative_prompt:
            payload_input["negative_prompt"] = negative_prompt
        return {"model": self.cfg.model, "task_type": "video_generation", "input": payload_input}

    def submit(
        self,
        image_url: str,
        prompt: str,
        duration: int,
        negative_prompt: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> VideoSubmission:
        _require_key(self.cfg.api_key, "video")
        url = f"{self.cfg.base_url.rstrip('/')}/api/v1/task"
        payload = self.build_submit_payload(
            image_url=image_url,
            prompt=prompt,
            duration=duration,
            negative_prompt=negative_prompt,
            mode=mode,
        )
        try:
            with self._client() as client:
                resp = client.post(url, headers=self._headers(), json=payload)
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Video submit failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Video submit failed: {resp.status_code} {resp.text[:500]}")

        body = _json_body(resp, "Video submit")
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        task_id = _first_string([data.get("task_id")]) or _first_string(_deep_find(body, {"task_id", "id"}))
        if not task_id:
            raise UpstreamServiceError(f"Video submit response missing task id: {resp.text[:300]}")
        return VideoSubmission(task_id=task_id, status=map_remote_status(data.get("status")), raw=body)

    @staticmethod
    def parse_task_state(task_id: str, body: dict[str, Any]) -> VideoTaskState:
        data = body.get("data") if isinstance(body.get("data"), dict) else body
        output = data.get("output") if isinstance(data.get("output"), dict) else {}
        works = output.get("works") if isinstance(output.get("works"), list) else []
        video_url: Optional[str] = None
        if works and isinstance(works[0], dict) and isinstance(works[0].get("video"), dict):
            video = works[0]["video"]
            video_url = _first_string([video.get("resource_without_watermark"), video.get("resource")])
        if not video_url:
            video_url = _first_string(_deep_find(output, {"video_url", "url", "download_url"}))

        error = data.get("error")
        error_message = None
        if isinstance(error, dict):
            error_message = _first_string([error.get("raw_message"), error.get("message")])
        elif isinstance(error, str) and error.strip():
            error_message = error.strip()

        try:
            progress = int(data.get("progress") or 0)
        except (TypeError, ValueError):
            progress = 0

        return VideoTaskState(
            status=map_remote_status(data.get("status")),
            video_url=video_url,
            progress=progress,
            error=error_message,
            metadata={
                "task_id": task_id,
                "created_at": data.get("created_at"),
                "completed_at": data.get("completed_at"),
            },
        )

    def poll(self, task_id: str) -> VideoTaskState:
        _require_key(self.cfg.api_key, "video")
        url = f"{self.cfg.base_url.rstrip('/')}/api/v1/task/{task_id}"
        try:
            with self._client() as client:
                resp = client.get(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Video polling failed: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamServiceError(f"Video polling failed: {resp.status_code} {resp.text[:500]}")
        return self.parse_task_state(task_id, _json_body(resp, "Video polling"))

    def cancel(self, task_id: str) -> bool:
        _require_key(self.cfg.api_key, "video")
        url = f"{self.cfg.base_url.rstrip('/')}/api/v1/task/{task_id}/cancel"
        try:
            with self._client() as client:
                resp = client.post(url, headers=self._headers())
        except httpx.HTTPError as exc:
            raise UpstreamServiceError(f"Video cancel failed: {exc}") from exc
        if resp.status_code >= 400:
            logger.warning("video_cancel_rejected", task_id=task_id, status_code=resp.status_code)
            return False
        return True
