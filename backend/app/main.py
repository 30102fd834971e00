"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from app.api import router
from app.core.errors import WorkflowError
from app.core.logging import configure_logging, get_logger
from app.core.settings import APP_VERSION, PATHS
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import MediaCandidate, Project, Segment, StatusChangeEvent  # noqa: F401
from app.services import repository
from app.services.config_store import load_config, save_config
from app.workers.queue import enqueue_video_watch

logger = get_logger(__name__)


async def workflow_error_handler(_: Request, exc: WorkflowError) -> JSONResponse:
    logger.warning("request_failed", error=exc.error, detail=str(exc), status_code=exc.status_code)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.error, "detail": str(exc)})


def create_app() -> FastAPI:
    @asynccontextmanager
    async def lifespan(_: FastAPI):
        configure_logging()
        PATHS.runtime_root.mkdir(parents=True, exist_ok=True)
        PATHS.media_root.mkdir(parents=True, exist_ok=True)

        Base.metadata.create_all(bind=engine)

        # Ensure config file exists with defaults.
        config = load_config()
        if not PATHS.config_path.exists():
            save_config(config)

        if config.video.server_side_polling:
            with SessionLocal() as db:
                pending = repository.list_pending_video_tasks(db)
            for task_handle in pending:
                enqueue_video_watch(task_handle)
            logger.info("video_watches_resumed", count=len(pending))

        yield

    app = FastAPI(title="Reelcraft", version=APP_VERSION, lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(WorkflowError, workflow_error_handler)

    app.include_router(router)
    app.mount("/media", StaticFiles(directory=str(PATHS.media_root)), name="media")

    return app


app = create_app()
