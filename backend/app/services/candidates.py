"""Media candidate bookkeeping for a segment.

A segment may hold many generated candidates per media kind, but at most one of
them is selected. Every helper here mutates inside the caller's session and
flushes the demotion and the promotion together, so a committed transaction
never exposes two selected siblings.
"""

from __future__ import annotations

import json
import uuid
from typing import Any, Optional, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.core.constants import MediaKind, MediaStatus
from app.core.errors import ConcurrencyConflictError, NotFoundError, PreconditionError
from app.models.project import MediaCandidate, Segment

KindLike = Union[MediaKind, str]


def coerce_kind(kind: KindLike) -> MediaKind:
    if isinstance(kind, MediaKind):
        return kind
    try:
        return MediaKind(str(kind).strip().lower().rstrip("s"))
    except ValueError as exc:
        raise NotFoundError(f"unknown media kind: {kind}") from exc


def load_meta(candidate: MediaCandidate) -> dict[str, Any]:
    try:
        payload = json.loads(candidate.meta_json or "{}")
    except ValueError:
        return {}
    return payload if isinstance(payload, dict) else {}


def dump_meta(meta: dict[str, Any]) -> str:
    return json.dumps(meta, ensure_ascii=False, default=str)


def new_candidate(
    kind: KindLike,
    *,
    url: str = "",
    status: MediaStatus = MediaStatus.PENDING,
    prompt: Optional[str] = None,
    task_handle: Optional[str] = None,
    meta: Optional[dict[str, Any]] = None,
) -> MediaCandidate:
    return MediaCandidate(
        id=uuid.uuid4().hex,
        kind=coerce_kind(kind).value,
        url=url,
        status=status.value,
        is_selected=False,
        task_handle=task_handle,
        prompt=prompt,
        meta_json=dump_meta(meta or {}),
    )


def lock_segment(db: Session, segment_id: str, project_id: Optional[str] = None) -> Segment:
    stmt = select(Segment).where(Segment.id == segment_id).with_for_update()
    segment = db.scalars(stmt).first()
    if segment is None or (project_id is not None and segment.project_id != project_id):
        raise NotFoundError(f"segment not found: {segment_id}")
    return segment


def _ensure_single_selection(db: Session, segment_id: str, kind: MediaKind) -> None:
    stmt = select(func.count(MediaCandidate.id)).where(
        MediaCandidate.segment_id == segment_id,
        MediaCandidate.kind == kind.value,
        MediaCandidate.is_selected.is_(True),
    )
    if (db.scalar(stmt) or 0) > 1:
        raise ConcurrencyConflictError(
            f"more than one selected {kind.value} candidate on segment {segment_id}; retry"
        )


def add_candidate(
    db: Session,
    segment: Segment,
    kind: KindLike,
    candidate: MediaCandidate,
    *,
    select_new: bool = True,
) -> MediaCandidate:
    media_kind = coerce_kind(kind)
    candidate.kind = media_kind.value
    selectable = select_new and candidate.status != MediaStatus.FAILED.value

    if selectable:
        for sibling in segment.candidates_of(media_kind):
            sibling.is_selected = False
    candidate.is_selected = selectable
    segment.candidates.append(candidate)
    db.flush()
    _ensure_single_selection(db, segment.id, media_kind)
    return candidate


def select_candidate(db: Session, segment: Segment, kind: KindLike, candidate_id: str) -> MediaCandidate:
    media_kind = coerce_kind(kind)
    siblings = segment.candidates_of(media_kind)
    target = next((item for item in siblings if item.id == candidate_id), None)
    if target is None:
        raise NotFoundError(f"{media_kind.value} candidate {candidate_id} not found on segment {segment.id}")
    if target.status == MediaStatus.FAILED.value:
        raise PreconditionError(f"{media_kind.value} candidate {candidate_id} failed and cannot be selected")

    if target.is_selected and not any(item.is_selected for item in siblings if item is not target):
        return target

    for item in siblings:
        item.is_selected = item is target
    db.flush()
    _ensure_single_selection(db, segment.id, media_kind)
    return target


def selected_candidate(segment: Segment, kind: KindLike) -> Optional[MediaCandidate]:
    """Return the selected candidate, falling back to the first one."""
    siblings = segment.candidates_of(coerce_kind(kind))
    for item in siblings:
        if item.is_selected:
            return item
    return siblings[0] if siblings else None
