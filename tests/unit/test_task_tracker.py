from __future__ import annotations

from typing import Optional

import httpx
import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from app.core.constants import MediaKind, MediaStatus
from app.core.errors import NotFoundError, PreconditionError, UpstreamServiceError
from app.db.base import Base
from app.db.session import build_engine
from app.models import MediaCandidate
from app.schemas.config import VideoConfig
from app.services import repository
from app.services.candidates import load_meta
from app.services.clients import ScriptSegmentDraft, VideoClient, VideoSubmission, VideoTaskState
from app.services.task_tracker import AsyncTaskTracker


class FakeVideoClient:
    def __init__(self) -> None:
        self.submit_calls = 0
        self.poll_calls = 0
        self.cancel_calls = 0
        self.states: list[VideoTaskState] = []
        self.submit_error: Optional[Exception] = None
        self.poll_error: Optional[Exception] = None
        self.acknowledge_cancel = True

    def submit(self, image_url, prompt, duration, negative_prompt=None, mode=None) -> VideoSubmission:
        self.submit_calls += 1
        if self.submit_error:
            raise self.submit_error
        return VideoSubmission(task_id=f"task-{self.submit_calls}", status=MediaStatus.PENDING)

    def poll(self, task_id: str) -> VideoTaskState:
        self.poll_calls += 1
        if self.poll_error:
            raise self.poll_error
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0]

    def cancel(self, task_id: str) -> bool:
        self.cancel_calls += 1
        return self.acknowledge_cancel


class Clock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _setup(config: Optional[VideoConfig] = None):
    engine = build_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    db = sessionmaker(bind=engine, class_=Session)()
    project = repository.create_project(db, title="demo")
    (segment,) = repository.replace_segments(
        db, project, [ScriptSegmentDraft(order=1, script="hi", video_prompt="waves")]
    )
    db.commit()

    client = FakeVideoClient()
    clock = Clock()
    sleeps: list[float] = []
    tracker = AsyncTaskTracker(db, client, config or VideoConfig(), clock=clock, sleep=sleeps.append)
    return db, segment, client, clock, sleeps, tracker


def test_submit_creates_pending_selected_candidate() -> None:
    db, segment, client, _, _, tracker = _setup()

    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5, mode="pro")
    db.commit()

    assert handle.status == MediaStatus.PENDING
    candidate = db.get(MediaCandidate, handle.candidate_id)
    assert candidate.kind == MediaKind.VIDEO.value
    assert candidate.status == MediaStatus.PENDING.value
    assert candidate.task_handle == handle.task_id
    assert candidate.is_selected is True
    assert load_meta(candidate)["mode"] == "pro"
    assert client.submit_calls == 1


def test_submit_failure_persists_nothing() -> None:
    db, segment, client, _, _, tracker = _setup()
    client.submit_error = UpstreamServiceError("boom")

    with pytest.raises(UpstreamServiceError):
        tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)

    assert db.scalars(select(MediaCandidate)).all() == []


def test_submit_requires_image() -> None:
    _, segment, client, _, _, tracker = _setup()
    with pytest.raises(PreconditionError):
        tracker.submit(segment.id, "", "waves", 5)
    assert client.submit_calls == 0


def test_completed_task_is_answered_from_storage() -> None:
    db, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [VideoTaskState(status=MediaStatus.COMPLETED, video_url="https://cdn/v.mp4", progress=100)]

    first = tracker.poll(handle.task_id)
    second = tracker.poll(handle.task_id)

    assert first.status == MediaStatus.COMPLETED
    assert first.video_url == "https://cdn/v.mp4"
    assert first.cached is False
    assert second.cached is True
    assert second.video_url == "https://cdn/v.mp4"
    assert client.poll_calls == 1


def test_completed_without_url_is_failed() -> None:
    _, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [VideoTaskState(status=MediaStatus.COMPLETED)]

    status = tracker.poll(handle.task_id)

    assert status.status == MediaStatus.FAILED
    assert status.error == "missing_video_url"


def test_status_never_moves_backwards() -> None:
    _, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [
        VideoTaskState(status=MediaStatus.PROCESSING, progress=40),
        VideoTaskState(status=MediaStatus.PENDING),
    ]

    assert tracker.poll(handle.task_id).status == MediaStatus.PROCESSING
    assert tracker.poll(handle.task_id).status == MediaStatus.PROCESSING


def test_failed_task_is_requeried_but_not_rewritten() -> None:
    db, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [
        VideoTaskState(status=MediaStatus.FAILED, error="content policy"),
        VideoTaskState(status=MediaStatus.COMPLETED, video_url="https://cdn/late.mp4"),
    ]

    assert tracker.poll(handle.task_id).error == "content policy"
    again = tracker.poll(handle.task_id)

    assert client.poll_calls == 2
    assert again.status == MediaStatus.FAILED
    assert again.remote_status == MediaStatus.COMPLETED
    candidate = db.get(MediaCandidate, handle.candidate_id)
    assert candidate.status == MediaStatus.FAILED.value
    assert candidate.url == ""


def test_attempt_guard_marks_timeout() -> None:
    _, segment, client, _, _, tracker = _setup(VideoConfig(max_poll_attempts=2, max_poll_seconds=0))
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [VideoTaskState(status=MediaStatus.PROCESSING)]

    tracker.poll(handle.task_id)
    tracker.poll(handle.task_id)
    third = tracker.poll(handle.task_id)

    assert third.status == MediaStatus.FAILED
    assert third.error == "timeout"
    assert client.poll_calls == 2


def test_elapsed_guard_marks_timeout_without_upstream_call() -> None:
    _, segment, client, clock, _, tracker = _setup(VideoConfig(max_poll_attempts=0, max_poll_seconds=60))
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [VideoTaskState(status=MediaStatus.PROCESSING)]

    clock.now += 61
    status = tracker.poll(handle.task_id)

    assert status.status == MediaStatus.FAILED
    assert status.error == "timeout"
    assert client.poll_calls == 0


def test_poll_safely_keeps_stored_state_on_upstream_error() -> None:
    _, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.poll_error = UpstreamServiceError("gateway timeout")

    status = tracker.poll_safely(handle.task_id)

    assert status.status == MediaStatus.PENDING
    assert status.attempts == 1
    with pytest.raises(UpstreamServiceError):
        tracker.poll(handle.task_id)


def test_poll_safely_absorbs_non_json_upstream_body() -> None:
    db, segment, _, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    tracker.video_client = VideoClient(
        VideoConfig(api_key="k"),
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway hiccup</html>")),
    )

    status = tracker.poll_safely(handle.task_id)

    assert status.status == MediaStatus.PENDING
    assert db.get(MediaCandidate, handle.candidate_id).status == MediaStatus.PENDING.value


def test_equal_rank_remote_status_is_not_written() -> None:
    db, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [VideoTaskState(status=MediaStatus.STAGED, progress=5)]

    status = tracker.poll(handle.task_id)

    assert status.status == MediaStatus.PENDING
    assert status.remote_status == MediaStatus.STAGED
    candidate = db.get(MediaCandidate, handle.candidate_id)
    assert candidate.status == MediaStatus.PENDING.value
    assert "remote_status" not in load_meta(candidate)


def test_unknown_handle() -> None:
    *_, tracker = _setup()
    with pytest.raises(NotFoundError):
        tracker.poll("nope")


def test_cancel_marks_failed() -> None:
    _, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)

    assert tracker.cancel(handle.task_id) is True
    status = tracker.stored_status(handle.task_id)
    assert status.status == MediaStatus.FAILED
    assert status.error == "canceled"

    with pytest.raises(PreconditionError):
        tracker.cancel(handle.task_id)
    assert client.cancel_calls == 1


def test_cancel_not_acknowledged_leaves_task_pending() -> None:
    _, segment, client, _, _, tracker = _setup()
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.acknowledge_cancel = False

    assert tracker.cancel(handle.task_id) is False
    assert tracker.stored_status(handle.task_id).status == MediaStatus.PENDING


def test_watch_polls_on_interval_until_done() -> None:
    _, segment, client, _, sleeps, tracker = _setup(VideoConfig(poll_interval_s=12))
    handle = tracker.submit(segment.id, "https://cdn/img.png", "waves", 5)
    client.states = [
        VideoTaskState(status=MediaStatus.PENDING),
        VideoTaskState(status=MediaStatus.PROCESSING, progress=50),
        VideoTaskState(status=MediaStatus.COMPLETED, video_url="https://cdn/v.mp4"),
    ]

    final = tracker.watch(handle.task_id)

    assert final.status == MediaStatus.COMPLETED
    assert sleeps == [12, 12]
    assert client.poll_calls == 3
