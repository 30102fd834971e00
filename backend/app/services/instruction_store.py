"""Named system instructions for script generation, persisted as JSON."""

from __future__ import annotations

import json
import textwrap
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from app.core.settings import PATHS
from app.schemas.config import InstructionOut, InstructionSummary

DEFAULT_INSTRUCTION_NAME = "default"

DEFAULT_INSTRUCTION = textwrap.dedent(
    """
    You are a short-form video scriptwriter. Split the story into 3-5 segments,
    each 15-30 seconds when spoken. For every segment return the narration
    ("script") and a detailed visual description for AI video generation
    ("videoPrompt"). Keep the segments flowing naturally from one to the next.
    Respond with a JSON array of objects: {"order", "script", "videoPrompt"}.
    """
).strip()


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()


def _normalize_name(name: str) -> str:
    normalized = name.strip()
    if not normalized:
        raise ValueError("instruction name is required")
    if len(normalized) > 80:
        raise ValueError("instruction name too long (max 80)")
    return normalized


def _load_raw(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except ValueError:
        return {}
    if isinstance(payload, dict):
        instructions = payload.get("instructions")
        if isinstance(instructions, dict):
            return instructions
    return {}


def _save_raw(instructions: dict[str, Any], path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps({"instructions": instructions}, ensure_ascii=False, indent=2),
        encoding="utf-8",
    )


def list_instructions(path: Path = PATHS.instructions_path) -> list[InstructionSummary]:
    items: list[InstructionSummary] = []
    stored = _load_raw(path)
    for name, value in stored.items():
        if not isinstance(value, dict):
            continue
        updated_at = str(value.get("updated_at") or "1970-01-01T00:00:00+00:00")
        items.append(InstructionSummary(name=str(name), updated_at=updated_at))
    if DEFAULT_INSTRUCTION_NAME not in stored:
        items.append(InstructionSummary(name=DEFAULT_INSTRUCTION_NAME, updated_at="1970-01-01T00:00:00+00:00"))
    items.sort(key=lambda item: item.updated_at, reverse=True)
    return items


def get_instruction(name: str, path: Path = PATHS.instructions_path) -> Optional[InstructionOut]:
    normalized = _normalize_name(name)
    record = _load_raw(path).get(normalized)
    if isinstance(record, dict) and isinstance(record.get("content"), str):
        updated_at = str(record.get("updated_at") or _utc_now_iso())
        return InstructionOut(name=normalized, updated_at=updated_at, content=record["content"])
    if normalized == DEFAULT_INSTRUCTION_NAME:
        return InstructionOut(
            name=DEFAULT_INSTRUCTION_NAME,
            updated_at="1970-01-01T00:00:00+00:00",
            content=DEFAULT_INSTRUCTION,
        )
    return None


def save_instruction(name: str, content: str, path: Path = PATHS.instructions_path) -> InstructionOut:
    normalized = _normalize_name(name)
    if not content.strip():
        raise ValueError("instruction content is required")
    stored = _load_raw(path)
    updated_at = _utc_now_iso()
    stored[normalized] = {"updated_at": updated_at, "content": content}
    _save_raw(stored, path)
    return InstructionOut(name=normalized, updated_at=updated_at, content=content)


def delete_instruction(name: str, path: Path = PATHS.instructions_path) -> bool:
    normalized = _normalize_name(name)
    stored = _load_raw(path)
    if normalized not in stored:
        return False
    del stored[normalized]
    _save_raw(stored, path)
    return True
