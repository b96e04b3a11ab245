from __future__ import annotations

from datetime import UTC, date, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import text

from .base import Base

STORY_STATUSES = ("NOT_READY", "READY", "IN_PROGRESS", "DONE", "BLOCKED")
LINK_TYPES = ("LINKED_TO", "BLOCKS", "IS_BLOCKED_BY", "DUPLICATES", "IS_DUPLICATED_BY")

DEFAULT_JOURNEY_COLOR = "#8B5CF6"
DEFAULT_TAG_COLOR = "#8B5CF6"
DEFAULT_LABEL_NAME = "Story"
DEFAULT_LABEL_COLOR = "#3B82F6"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _in_list(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} in ({quoted})"


class StoryMap(Base):
    __tablename__ = "story_maps"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[UUID] = mapped_column(Uuid, index=True)
    updated_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    journeys: Mapped[list["Journey"]] = relationship(back_populates="story_map", passive_deletes=True)
    releases: Mapped[list["Release"]] = relationship(back_populates="story_map", passive_deletes=True)


class Journey(Base):
    __tablename__ = "journeys"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_map_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("story_maps.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    color: Mapped[str] = mapped_column(Text, default=DEFAULT_JOURNEY_COLOR)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[UUID] = mapped_column(Uuid)
    updated_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    story_map: Mapped[StoryMap] = relationship(back_populates="journeys")
    steps: Mapped[list["Step"]] = relationship(back_populates="journey", passive_deletes=True)

    __table_args__ = (
        UniqueConstraint("story_map_id", "name", name="uq_journeys_story_map_name"),
        Index("ix_journeys_story_map_sort", "story_map_id", "sort_order"),
    )


class Step(Base):
    __tablename__ = "steps"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    journey_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("journeys.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[UUID] = mapped_column(Uuid)
    updated_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    journey: Mapped[Journey] = relationship(back_populates="steps")
    stories: Mapped[list["Story"]] = relationship(back_populates="step", passive_deletes=True)

    __table_args__ = (Index("ix_steps_journey_sort", "journey_id", "sort_order"),)


class Release(Base):
    __tablename__ = "releases"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_map_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("story_maps.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    shipped: Mapped[bool] = mapped_column(Boolean, default=False)
    is_unassigned: Mapped[bool] = mapped_column(Boolean, default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[UUID] = mapped_column(Uuid)
    updated_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    story_map: Mapped[StoryMap] = relationship(back_populates="releases")
    stories: Mapped[list["Story"]] = relationship(back_populates="release")

    __table_args__ = (
        Index(
            "releases_story_map_id_unassigned_key",
            "story_map_id",
            unique=True,
            postgresql_where=text("is_unassigned = true"),
            sqlite_where=text("is_unassigned = 1"),
        ),
        Index("ix_releases_story_map_sort", "story_map_id", "sort_order"),
    )


class Story(Base):
    __tablename__ = "stories"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    step_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("steps.id", ondelete="CASCADE"))
    release_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("releases.id"))
    title: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(Text, default="NOT_READY")
    size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    label_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    label_name: Mapped[str] = mapped_column(Text, default=DEFAULT_LABEL_NAME)
    label_color: Mapped[str] = mapped_column(Text, default=DEFAULT_LABEL_COLOR)
    created_by: Mapped[UUID] = mapped_column(Uuid)
    updated_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    step: Mapped[Step] = relationship(back_populates="stories")
    release: Mapped[Release] = relationship(back_populates="stories")

    __table_args__ = (
        CheckConstraint(_in_list("status", STORY_STATUSES), name="ck_stories_status"),
        Index("ix_stories_cell_sort", "step_id", "release_id", "sort_order"),
    )


class StoryLink(Base):
    __tablename__ = "story_links"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    source_story_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"))
    target_story_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"))
    link_type: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    source_story: Mapped[Story] = relationship(foreign_keys=[source_story_id])
    target_story: Mapped[Story] = relationship(foreign_keys=[target_story_id])

    __table_args__ = (
        CheckConstraint(_in_list("link_type", LINK_TYPES), name="ck_story_links_type"),
        CheckConstraint("source_story_id <> target_story_id", name="ck_story_links_not_self"),
        UniqueConstraint(
            "source_story_id", "target_story_id", "link_type", name="uq_story_links_source_target_type"
        ),
    )


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_map_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("story_maps.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text)
    color: Mapped[str] = mapped_column(Text, default=DEFAULT_TAG_COLOR)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("story_map_id", "name", name="uq_tags_story_map_name"),)


class Persona(Base):
    __tablename__ = "personas"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_map_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("story_maps.id", ondelete="CASCADE"))
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (UniqueConstraint("story_map_id", "name", name="uq_personas_story_map_name"),)


class StoryTag(Base):
    __tablename__ = "story_tags"

    story_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True)
    tag_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class StoryPersona(Base):
    __tablename__ = "story_personas"

    story_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), primary_key=True)
    persona_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("personas.id", ondelete="CASCADE"), primary_key=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("stories.id", ondelete="CASCADE"), nullable=True, index=True
    )
    release_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("releases.id", ondelete="CASCADE"), nullable=True
    )
    author_id: Mapped[UUID] = mapped_column(Uuid)
    author: Mapped[str] = mapped_column(Text)
    avatar_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Attachment(Base):
    __tablename__ = "attachments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    story_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("stories.id", ondelete="CASCADE"), index=True)
    file_name: Mapped[str] = mapped_column(Text)
    file_url: Mapped[str] = mapped_column(Text)
    file_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    file_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_by: Mapped[UUID] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
