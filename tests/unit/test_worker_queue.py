from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path

from sqlalchemy.orm import Session, sessionmaker

from app.core.constants import MediaKind, MediaStatus
from app.db.base import Base
from app.db.session import build_engine
from app.models import MediaCandidate
from app.schemas.config import AppConfig
from app.services import candidates, repository
from app.services.clients import ScriptSegmentDraft, VideoTaskState
from app.services.providers import ServiceClients
from app.workers import queue


class DoneVideo:
    def poll(self, task_id: str) -> VideoTaskState:
        return VideoTaskState(status=MediaStatus.COMPLETED, video_url=f"https://cdn/{task_id}.mp4")


def test_watch_video_persists_final_state(monkeypatch, tmp_path: Path) -> None:
    engine = build_engine(f"sqlite:///{tmp_path / 'worker.sqlite3'}")
    Base.metadata.create_all(engine)
    LocalSession = sessionmaker(bind=engine, class_=Session)

    with LocalSession() as db:
        project = repository.create_project(db, title="demo")
        (segment,) = repository.replace_segments(
            db, project, [ScriptSegmentDraft(order=1, script="x", video_prompt="y")]
        )
        candidate = candidates.add_candidate(
            db,
            segment,
            MediaKind.VIDEO,
            candidates.new_candidate("video", status=MediaStatus.PENDING, task_handle="task-1"),
        )
        candidate_id = candidate.id
        db.commit()

    @contextmanager
    def scope():
        session = LocalSession()
        try:
            yield session
            session.commit()
        finally:
            session.close()

    monkeypatch.setattr(queue, "session_scope", scope)
    monkeypatch.setattr(queue, "load_config", lambda: AppConfig())
    monkeypatch.setattr(
        queue,
        "build_clients",
        lambda config: ServiceClients(script=None, speech=None, image=None, video=DoneVideo(), ideas=None),
    )

    queue.watch_video("task-1")

    with LocalSession() as db:
        stored = db.get(MediaCandidate, candidate_id)
        assert stored.status == MediaStatus.COMPLETED.value
        assert stored.url == "https://cdn/task-1.mp4"
