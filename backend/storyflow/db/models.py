"""SQLAlchemy 2.0 ORM models for Storyflow."""

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, Text, JSON, Integer, Float, Boolean, ForeignKey, Index, UniqueConstraint, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


class VideoProject(Base):
    """A single topic-to-video project driven through the approval pipeline.

    Mutated only by the stage orchestrator. total_cost is the running sum of
    cost_entries and never decreases.
    """
    __tablename__ = "video_projects"
    __table_args__ = (
        Index("idx_video_projects_user_created", "user_id", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(100), index=True)
    topic: Mapped[str] = mapped_column(Text)
    language: Mapped[str] = mapped_column(String(10))
    duration: Mapped[int] = mapped_column(Integer)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[str] = mapped_column(String(50), default="draft")
    total_cost: Mapped[float] = mapped_column(Float, default=0.0)
    failed_from: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    revision_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class StoryAnalysis(Base):
    """Concept, themes, mood and characters extracted from the topic."""
    __tablename__ = "story_analyses"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), unique=True)
    concept: Mapped[str] = mapped_column(Text)
    themes: Mapped[list] = mapped_column(JSON, default=list)
    mood: Mapped[str] = mapped_column(String(200))
    characters: Mapped[list] = mapped_column(JSON, default=list)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())


class Script(Base):
    """Narration script. One live script per project."""
    __tablename__ = "scripts"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), unique=True)
    text: Mapped[str] = mapped_column(Text)
    word_count: Mapped[int] = mapped_column(Integer)
    estimated_duration: Mapped[float] = mapped_column(Float)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    approved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())

    scenes: Mapped[list["ScriptScene"]] = relationship(
        back_populates="script",
        cascade="all, delete-orphan",
        order_by="ScriptScene.order",
        lazy="selectin",
    )


class ScriptScene(Base):
    """Timed narration segment within a script."""
    __tablename__ = "script_scenes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    script_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("scripts.id", ondelete="CASCADE"), index=True)
    order: Mapped[int] = mapped_column(Integer)
    start_time: Mapped[float] = mapped_column(Float)
    end_time: Mapped[float] = mapped_column(Float)
    narration: Mapped[str] = mapped_column(Text)
    visual_description: Mapped[str] = mapped_column(Text, default="")

    script: Mapped[Script] = relationship(back_populates="scenes")


class Storyboard(Base):
    """Visual plan for the video. One live storyboard per project."""
    __tablename__ = "storyboards"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), unique=True)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text)
    visual_style: Mapped[str] = mapped_column(Text)
    color_palette: Mapped[str] = mapped_column(Text)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    approved_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())

    scenes: Mapped[list["StoryboardScene"]] = relationship(
        back_populates="storyboard",
        cascade="all, delete-orphan",
        order_by="StoryboardScene.order",
        lazy="selectin",
    )


class StoryboardScene(Base):
    """Single shot in a storyboard, keyed by order within the project."""
    __tablename__ = "storyboard_scenes"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    storyboard_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("storyboards.id", ondelete="CASCADE"), index=True)
    order: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text)
    image_prompt: Mapped[str] = mapped_column(Text)
    camera_angle: Mapped[str] = mapped_column(String(100))
    composition: Mapped[str] = mapped_column(Text, default="")
    lighting: Mapped[str] = mapped_column(Text, default="")
    transition: Mapped[str] = mapped_column(String(100))
    duration: Mapped[float] = mapped_column(Float, default=0.0)

    storyboard: Mapped[Storyboard] = relationship(back_populates="scenes")


class Asset(Base):
    """Rendered visual for one storyboard scene.

    Rows from earlier passes stay with is_current=False so that reused
    assets keep a valid source_asset_id.
    """
    __tablename__ = "assets"
    __table_args__ = (
        Index("idx_assets_project_current", "project_id", "is_current"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), index=True)
    scene_order: Mapped[int] = mapped_column(Integer)
    url: Mapped[str] = mapped_column(String(500))
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    reused: Mapped[bool] = mapped_column(Boolean, default=False)
    fingerprint: Mapped[str] = mapped_column(String(64), index=True)
    tier: Mapped[str] = mapped_column(String(20))  # 'standard' or 'premium'
    source_asset_id: Mapped[Optional[uuid.UUID]] = mapped_column(ForeignKey("assets.id"), nullable=True)
    batch_id: Mapped[uuid.UUID] = mapped_column(index=True)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())


class RenderedVideo(Base):
    """Final assembled video. One per project, replaced on re-render."""
    __tablename__ = "rendered_videos"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), unique=True)
    url: Mapped[str] = mapped_column(String(500))
    audio_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    subtitles_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    duration: Mapped[float] = mapped_column(Float)
    resolution: Mapped[str] = mapped_column(String(20))
    file_size: Mapped[int] = mapped_column(Integer)
    format: Mapped[str] = mapped_column(String(10))
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    rendered_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())


class CostEntry(Base):
    """Append-only ledger row, one per successful generator call."""
    __tablename__ = "cost_entries"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), index=True)
    stage: Mapped[str] = mapped_column(String(30))
    amount: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())


class GenerationCacheEntry(Base):
    """Project-scoped fingerprint -> artifact mapping for reuse."""
    __tablename__ = "generation_cache"
    __table_args__ = (
        UniqueConstraint("project_id", "fingerprint", name="uq_generation_cache_project_fingerprint"),
    )

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    project_id: Mapped[uuid.UUID] = mapped_column(ForeignKey("video_projects.id"), index=True)
    fingerprint: Mapped[str] = mapped_column(String(64))
    stage: Mapped[str] = mapped_column(String(30))
    artifact: Mapped[dict] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(default=_utcnow, server_default=func.now())
