"""Huey queue definitions and enqueue helpers."""

from __future__ import annotations

from huey import SqliteHuey

from app.core.logging import get_logger
from app.core.settings import PATHS
from app.db.session import session_scope
from app.services.config_store import load_config
from app.services.providers import build_clients
from app.services.task_tracker import AsyncTaskTracker

logger = get_logger(__name__)

huey = SqliteHuey("reelcraft", filename=str(PATHS.queue_path))


def watch_video(task_handle: str) -> None:
    config = load_config()
    clients = build_clients(config)
    with session_scope() as db:
        tracker = AsyncTaskTracker(db, clients.video, config.video)
        status = tracker.watch(task_handle)
    logger.info("video_watch_finished", task_id=task_handle, status=status.status.value, attempts=status.attempts)


@huey.task(retries=0)
def watch_video_task(task_handle: str) -> None:
    watch_video(task_handle)


def enqueue_video_watch(task_handle: str) -> None:
    watch_video_task(task_handle)
