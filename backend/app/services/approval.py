"""Approval status predicates, transition rules and legacy vocabulary mapping.

Everything here is pure: no session, no I/O. The transition table itself lives
in ``app.core.constants`` so the enum and its graph cannot drift apart.
"""

from __future__ import annotations

from collections import deque
from typing import Mapping, Union

from app.core.constants import (
    APPROVAL_FIELDS,
    STATUS_TRANSITIONS,
    ApprovalStatus,
    LegacyApprovalStatus,
)

StatusLike = Union[ApprovalStatus, str]

_ACTIONS: dict[ApprovalStatus, list[str]] = {
    ApprovalStatus.DRAFT: ["edit", "submit", "generate"],
    ApprovalStatus.SUBMITTED: ["cancel"],
    ApprovalStatus.PROCESSING: ["cancel"],
    ApprovalStatus.APPROVED: ["approve", "reject", "regenerate", "next"],
    ApprovalStatus.REJECTED: ["retry", "edit", "regenerate"],
}


def coerce_status(value: StatusLike) -> ApprovalStatus:
    if isinstance(value, ApprovalStatus):
        return value
    try:
        return ApprovalStatus(str(value).strip().upper())
    except ValueError as exc:
        raise ValueError(f"unknown approval status: {value!r}") from exc


def is_valid_transition(from_status: StatusLike, to_status: StatusLike) -> bool:
    return coerce_status(to_status) in STATUS_TRANSITIONS[coerce_status(from_status)]


def transition_path(from_status: StatusLike, to_status: StatusLike) -> list[ApprovalStatus]:
    """Shortest chain of legal hops from ``from_status`` to ``to_status``.

    The returned list excludes the starting status; it is empty when the two are
    equal. Raises ``ValueError`` when the target is unreachable, which cannot
    happen with the current table but keeps callers honest if it changes.
    """
    start = coerce_status(from_status)
    goal = coerce_status(to_status)
    if start == goal:
        return []

    parents: dict[ApprovalStatus, ApprovalStatus] = {}
    queue = deque([start])
    seen = {start}
    while queue:
        current = queue.popleft()
        for nxt in sorted(STATUS_TRANSITIONS[current], key=lambda s: s.value):
            if nxt in seen:
                continue
            parents[nxt] = current
            if nxt == goal:
                path = [nxt]
                while path[-1] in parents and parents[path[-1]] != start:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            seen.add(nxt)
            queue.append(nxt)
    raise ValueError(f"no transition path {start.value} -> {goal.value}")


def available_actions(status: StatusLike) -> list[str]:
    return list(_ACTIONS.get(coerce_status(status), []))


def can_user_edit(status: StatusLike) -> bool:
    return coerce_status(status) == ApprovalStatus.DRAFT


def is_processing(status: StatusLike) -> bool:
    return coerce_status(status) in {ApprovalStatus.SUBMITTED, ApprovalStatus.PROCESSING}


def is_ready_for_next(status: StatusLike) -> bool:
    return coerce_status(status) == ApprovalStatus.APPROVED


def needs_user_action(status: StatusLike) -> bool:
    return coerce_status(status) in {ApprovalStatus.DRAFT, ApprovalStatus.REJECTED}


def overall_segment_status(segment: object) -> ApprovalStatus:
    """Fold the five per-field statuses of a segment into one display status.

    Accepts an ORM segment or a mapping keyed by the approval field names.
    """
    if isinstance(segment, Mapping):
        raw = [segment[name] for name in APPROVAL_FIELDS]
    else:
        raw = [getattr(segment, name) for name in APPROVAL_FIELDS]
    statuses = [coerce_status(value) for value in raw]

    if any(is_processing(s) for s in statuses):
        return ApprovalStatus.PROCESSING
    if any(s == ApprovalStatus.REJECTED for s in statuses):
        return ApprovalStatus.REJECTED
    if all(s == ApprovalStatus.APPROVED for s in statuses):
        return ApprovalStatus.APPROVED
    return ApprovalStatus.DRAFT


def to_legacy(status: StatusLike) -> LegacyApprovalStatus:
    canonical = coerce_status(status)
    if canonical == ApprovalStatus.APPROVED:
        return LegacyApprovalStatus.APPROVED
    if canonical == ApprovalStatus.REJECTED:
        return LegacyApprovalStatus.REJECTED
    if canonical == ApprovalStatus.PROCESSING:
        return LegacyApprovalStatus.REGENERATING
    return LegacyApprovalStatus.DRAFT


def from_legacy(value: Union[LegacyApprovalStatus, str]) -> ApprovalStatus:
    raw = value.value if isinstance(value, LegacyApprovalStatus) else str(value or "")
    lowered = raw.strip().lower()
    if lowered == LegacyApprovalStatus.APPROVED.value:
        return ApprovalStatus.APPROVED
    if lowered == LegacyApprovalStatus.REJECTED.value:
        return ApprovalStatus.REJECTED
    if lowered == LegacyApprovalStatus.REGENERATING.value:
        return ApprovalStatus.PROCESSING
    return ApprovalStatus.DRAFT
