"""Submit, poll and reconcile long-running video generation tasks.

Lifecycle of a video candidate::

    (none) --submit--> pending --accepted--> processing --success--> completed
                                                      \\--failure--> failed
    pending --failure--> failed

``submit`` never waits for the render. Callers poll on an interval while the
status is pending; ``completed`` rows are answered from the database, every
other state asks the upstream service again. A stored ``failed`` row is still
re-queried, but being terminal it is never rewritten.

Polls are bounded by ``max_poll_attempts`` and ``max_poll_seconds``. A task
that outlives either is marked failed with ``failure_reason = "timeout"``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.core.constants import PENDING_MEDIA_STATES, TERMINAL_MEDIA_STATES, MediaKind, MediaStatus
from app.core.errors import NotFoundError, PreconditionError, UpstreamServiceError
from app.core.logging import get_logger
from app.models.project import MediaCandidate
from app.schemas.config import VideoConfig
from app.services.candidates import add_candidate, dump_meta, load_meta, lock_segment, new_candidate
from app.services.clients import VideoGenerator, VideoTaskState

logger = get_logger(__name__)

# Progress rank used to refuse backwards reconciliation (processing -> pending).
_RANK = {
    MediaStatus.PENDING: 0,
    MediaStatus.STAGED: 0,
    MediaStatus.PROCESSING: 1,
    MediaStatus.COMPLETED: 2,
    MediaStatus.FAILED: 2,
}


def is_pending(status: MediaStatus | str) -> bool:
    return MediaStatus(status) in PENDING_MEDIA_STATES


def is_terminal(status: MediaStatus | str) -> bool:
    return MediaStatus(status) in TERMINAL_MEDIA_STATES


@dataclass
class TaskHandle:
    task_id: str
    candidate_id: str
    segment_id: str
    status: MediaStatus


@dataclass
class TaskStatus:
    task_id: str
    candidate_id: str
    segment_id: str
    status: MediaStatus
    video_url: Optional[str] = None
    progress: int = 0
    error: Optional[str] = None
    attempts: int = 0
    # True when answered from the stored row without an upstream call.
    cached: bool = False
    remote_status: Optional[MediaStatus] = None


class AsyncTaskTracker:
    def __init__(
        self,
        db: Session,
        video_client: VideoGenerator,
        config: VideoConfig,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.video_client = video_client
        self.config = config
        self._clock = clock
        self._sleep = sleep

    def submit(
        self,
        segment_id: str,
        image_url: str,
        prompt: str,
        duration: int,
        negative_prompt: Optional[str] = None,
        mode: Optional[str] = None,
    ) -> TaskHandle:
        segment = lock_segment(self.db, segment_id)
        if not image_url:
            raise PreconditionError("video generation requires an image url")

        # Upstream failure propagates before anything is persisted.
        submission = self.video_client.submit(image_url, prompt, duration, negative_prompt, mode)

        candidate = new_candidate(
            MediaKind.VIDEO,
            status=MediaStatus.PENDING,
            prompt=prompt,
            task_handle=submission.task_id,
            meta={
                "image_url": image_url,
                "duration": duration,
                "negative_prompt": negative_prompt,
                "mode": mode,
                "submitted_at": self._clock(),
                "remote_status": submission.status.value,
                "poll_attempts": 0,
            },
        )
        add_candidate(self.db, segment, MediaKind.VIDEO, candidate)
        logger.info(
            "video_task_submitted",
            segment_id=segment.id,
            candidate_id=candidate.id,
            task_id=submission.task_id,
        )
        return TaskHandle(
            task_id=submission.task_id,
            candidate_id=candidate.id,
            segment_id=segment.id,
            status=MediaStatus.PENDING,
        )

    def _candidate_for(self, task_handle: str) -> MediaCandidate:
        stmt = select(MediaCandidate).where(
            MediaCandidate.task_handle == task_handle,
            MediaCandidate.kind == MediaKind.VIDEO.value,
        )
        candidate = self.db.scalars(stmt).first()
        if candidate is None:
            raise NotFoundError(f"video task not found: {task_handle}")
        return candidate

    def _status_from_row(self, candidate: MediaCandidate, *, cached: bool) -> TaskStatus:
        meta = load_meta(candidate)
        return TaskStatus(
            task_id=candidate.task_handle or "",
            candidate_id=candidate.id,
            segment_id=candidate.segment_id,
            status=MediaStatus(candidate.status),
            video_url=candidate.url or None,
            progress=int(meta.get("progress") or 0),
            error=meta.get("failure_reason"),
            attempts=int(meta.get("poll_attempts") or 0),
            cached=cached,
        )

    def _compare_and_set(self, candidate: MediaCandidate, expected: str, values: dict[str, Any]) -> bool:
        """Write ``values`` only if the row still has status ``expected``."""
        stmt = (
            update(MediaCandidate)
            .where(MediaCandidate.id == candidate.id, MediaCandidate.status == expected)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)
        self.db.refresh(candidate)
        return result.rowcount == 1

    def stored_status(self, task_handle: str) -> TaskStatus:
        return self._status_from_row(self._candidate_for(task_handle), cached=True)

    def _guard_exceeded(self, meta: dict[str, Any], attempts: int) -> bool:
        if self.config.max_poll_attempts and attempts > self.config.max_poll_attempts:
            return True
        submitted_at = meta.get("submitted_at")
        if self.config.max_poll_seconds and isinstance(submitted_at, (int, float)):
            return self._clock() - submitted_at > self.config.max_poll_seconds
        return False

    def _mark_failed(self, candidate: MediaCandidate, reason: str, meta: dict[str, Any]) -> bool:
        meta = {**meta, "failure_reason": reason}
        return self._compare_and_set(
            candidate,
            candidate.status,
            {"status": MediaStatus.FAILED.value, "meta_json": dump_meta(meta)},
        )

    def poll(self, task_handle: str) -> TaskStatus:
        candidate = self._candidate_for(task_handle)
        stored = MediaStatus(candidate.status)

        if stored == MediaStatus.COMPLETED:
            return self._status_from_row(candidate, cached=True)

        if stored == MediaStatus.FAILED:
            remote = self.video_client.poll(task_handle)
            result = self._status_from_row(candidate, cached=False)
            result.remote_status = remote.status
            return result

        meta = load_meta(candidate)
        attempts = int(meta.get("poll_attempts") or 0) + 1
        meta["poll_attempts"] = attempts
        if self._guard_exceeded(meta, attempts):
            if self._mark_failed(candidate, "timeout", meta):
                logger.warning(
                    "video_task_timed_out",
                    task_id=task_handle,
                    candidate_id=candidate.id,
                    attempts=attempts,
                )
            return self._status_from_row(candidate, cached=True)

        # The attempt is counted even if the upstream call below fails.
        if not self._compare_and_set(candidate, stored.value, {"meta_json": dump_meta(meta)}):
            return self._status_from_row(candidate, cached=True)

        remote = self.video_client.poll(task_handle)
        self._reconcile(candidate, remote)
        result = self._status_from_row(candidate, cached=False)
        result.progress = remote.progress
        result.remote_status = remote.status
        if remote.error and result.error is None:
            result.error = remote.error
        return result

    def _reconcile(self, candidate: MediaCandidate, remote: VideoTaskState) -> bool:
        stored = MediaStatus(candidate.status)
        target = remote.status
        # Equal ranks (pending vs staged) are not progress.
        if _RANK[target] <= _RANK[stored]:
            return False

        meta = load_meta(candidate)
        meta["remote_status"] = target.value
        meta["progress"] = remote.progress
        meta.update({k: v for k, v in remote.metadata.items() if v is not None})
        values: dict[str, Any] = {"status": target.value}

        if target == MediaStatus.COMPLETED:
            if not remote.video_url:
                target = MediaStatus.FAILED
                values["status"] = target.value
                meta["failure_reason"] = "missing_video_url"
            else:
                values["url"] = remote.video_url
        elif target == MediaStatus.FAILED:
            meta["failure_reason"] = remote.error or "upstream_failed"

        values["meta_json"] = dump_meta(meta)
        changed = self._compare_and_set(candidate, stored.value, values)
        if changed:
            logger.info(
                "video_task_reconciled",
                task_id=candidate.task_handle,
                candidate_id=candidate.id,
                from_status=stored.value,
                to_status=target.value,
            )
        return changed

    def poll_safely(self, task_handle: str) -> TaskStatus:
        """Poll, absorbing upstream errors; the next interval retries."""
        try:
            return self.poll(task_handle)
        except UpstreamServiceError as exc:
            logger.warning("video_poll_failed", task_id=task_handle, error=str(exc))
            return self.stored_status(task_handle)

    def watch(self, task_handle: str) -> TaskStatus:
        """Poll on the configured interval until the task leaves the pending states."""
        interval = max(1, int(self.config.poll_interval_s))
        while True:
            status = self.poll_safely(task_handle)
            self.db.commit()
            if not is_pending(status.status):
                return status
            self._sleep(interval)

    def cancel(self, task_handle: str) -> bool:
        candidate = self._candidate_for(task_handle)
        if is_terminal(candidate.status):
            raise PreconditionError(f"video task {task_handle} is already {candidate.status}")

        acknowledged = self.video_client.cancel(task_handle)
        if acknowledged:
            self._mark_failed(candidate, "canceled", load_meta(candidate))
            logger.info("video_task_canceled", task_id=task_handle, candidate_id=candidate.id)
        return acknowledged
