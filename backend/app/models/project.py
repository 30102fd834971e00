"""Project, segment, candidate and audit persistence models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.constants import ApprovalStatus, MediaKind, MediaStatus, ProjectStatus, WorkflowStage
from app.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # Cached StageGate output, recomputed on every read.
    current_stage: Mapped[str] = mapped_column(
        String(32), nullable=False, default=WorkflowStage.SCRIPT_GENERATION.value
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ProjectStatus.DRAFT.value)
    result_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    segments: Mapped[list["Segment"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="Segment.order",
    )
    events: Mapped[list["StatusChangeEvent"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="StatusChangeEvent.id",
    )


class Segment(Base):
    __tablename__ = "segments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    order: Mapped[int] = mapped_column("segment_order", Integer, nullable=False, default=0)
    script: Mapped[str] = mapped_column(Text, nullable=False, default="")
    video_prompt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    script_approval_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.DRAFT.value
    )
    image_approval_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.DRAFT.value
    )
    video_approval_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.DRAFT.value
    )
    audio_approval_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.DRAFT.value
    )
    final_approval_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ApprovalStatus.DRAFT.value
    )
    result_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    project: Mapped[Project] = relationship(back_populates="segments")
    candidates: Mapped[list["MediaCandidate"]] = relationship(
        back_populates="segment",
        cascade="all, delete-orphan",
        order_by=lambda: [MediaCandidate.created_at, MediaCandidate.id],
    )

    def candidates_of(self, kind: MediaKind | str) -> list["MediaCandidate"]:
        value = kind.value if isinstance(kind, MediaKind) else kind
        return [item for item in self.candidates if item.kind == value]

    @property
    def images(self) -> list["MediaCandidate"]:
        return self.candidates_of(MediaKind.IMAGE)

    @property
    def videos(self) -> list["MediaCandidate"]:
        return self.candidates_of(MediaKind.VIDEO)

    @property
    def audios(self) -> list["MediaCandidate"]:
        return self.candidates_of(MediaKind.AUDIO)


class MediaCandidate(Base):
    __tablename__ = "media_candidates"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    segment_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("segments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=MediaStatus.PENDING.value)
    is_selected: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    task_handle: Mapped[Optional[str]] = mapped_column(String(128), nullable=True, index=True)
    prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    meta_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    segment: Mapped[Segment] = relationship(back_populates="candidates")


class StatusChangeEvent(Base):
    __tablename__ = "status_change_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    project_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # No foreign key: the trail outlives segments removed by regeneration.
    segment_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    field: Mapped[str] = mapped_column(String(64), nullable=False)
    from_status: Mapped[str] = mapped_column(String(32), nullable=False)
    to_status: Mapped[str] = mapped_column(String(32), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, index=True
    )

    project: Mapped[Project] = relationship(back_populates="events")
