from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session

from db.models import (
    DEFAULT_LABEL_COLOR,
    DEFAULT_LABEL_NAME,
    STORY_STATUSES,
    Attachment,
    Comment,
    Persona,
    Release,
    Story,
    StoryLink,
    StoryPersona,
    StoryTag,
    Tag,
)
from .errors import StoryError
from .ordering import next_cell_position
from .ownership import (
    ensure_same_workspace,
    has_access,
    load_in_workspace,
    require_story_map,
    story_map_of_release,
    story_map_of_step,
)
from .txn import transaction
from .wire import apply_changes

logger = logging.getLogger(__name__)


def _check_status(status: str | None) -> None:
    if status is not None and status not in STORY_STATUSES:
        raise StoryError.validation(f"status must be one of {', '.join(STORY_STATUSES)}", status=status)


def _check_size(size: int | None) -> None:
    if size is not None and size < 0:
        raise StoryError.validation("size must be zero or greater", size=size)


def _resolve_cell(
    session: Session,
    *,
    user_id: UUID,
    step_id: UUID,
    release_id: UUID,
    story_map_id: UUID | None,
) -> UUID:
    """Check that step and release exist in one story map the caller owns and return that map id."""
    step_map = story_map_of_step(session, step_id)
    if step_map is None or not has_access(session, step_map, user_id):
        raise StoryError.not_found("Step not found", step_id=str(step_id))
    release_map = story_map_of_release(session, release_id)
    if release_map is None or not has_access(session, release_map, user_id):
        raise StoryError.not_found("Release not found", release_id=str(release_id))
    expected = story_map_id if story_map_id is not None else step_map
    ensure_same_workspace(expected, step_map, "Step", error=StoryError, step_id=str(step_id))
    ensure_same_workspace(expected, release_map, "Release", error=StoryError, release_id=str(release_id))
    return expected


def list_stories(
    session: Session,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
    step_id: UUID | None = None,
    release_id: UUID | None = None,
) -> list[Story]:
    if story_map_id is None and step_id is None and release_id is None:
        raise StoryError.validation("story_map_id, step_id or release_id is required")
    stmt = select(Story)
    if step_id is not None:
        actual = story_map_of_step(session, step_id)
        if actual is None or not has_access(session, actual, user_id):
            raise StoryError.not_found("Step not found", step_id=str(step_id))
        ensure_same_workspace(story_map_id, actual, "Step", error=StoryError, step_id=str(step_id))
        stmt = stmt.where(Story.step_id == step_id)
    if release_id is not None:
        actual = story_map_of_release(session, release_id)
        if actual is None or not has_access(session, actual, user_id):
            raise StoryError.not_found("Release not found", release_id=str(release_id))
        ensure_same_workspace(story_map_id, actual, "Release", error=StoryError, release_id=str(release_id))
        stmt = stmt.where(Story.release_id == release_id)
    if step_id is None and release_id is None:
        require_story_map(session, story_map_id, user_id, error=StoryError)
        stmt = stmt.join(Release, Release.id == Story.release_id).where(Release.story_map_id == story_map_id)
    stmt = stmt.order_by(Story.step_id, Story.release_id, Story.sort_order, Story.created_at)
    return list(session.execute(stmt).scalars().all())


def get_story(session: Session, story_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Story:
    return load_in_workspace(session, Story, story_id, user_id=user_id, story_map_id=story_map_id, error=StoryError)


def create_story(
    session: Session,
    *,
    user_id: UUID,
    step_id: UUID,
    release_id: UUID,
    title: str,
    description: str | None = None,
    status: str | None = None,
    size: int | None = None,
    label_id: str | None = None,
    label_name: str | None = None,
    label_color: str | None = None,
    story_map_id: UUID | None = None,
) -> Story:
    if not title or not title.strip():
        raise StoryError.validation("title is required")
    _check_status(status)
    _check_size(size)
    context = {"step_id": str(step_id), "release_id": str(release_id)}
    with transaction(session, "stories.create", error=StoryError, context=context):
        _resolve_cell(session, user_id=user_id, step_id=step_id, release_id=release_id, story_map_id=story_map_id)
        story = Story(
            step_id=step_id,
            release_id=release_id,
            title=title.strip(),
            description=description or "",
            status=status or "NOT_READY",
            size=size,
            sort_order=next_cell_position(session, step_id, release_id),
            label_id=label_id,
            label_name=label_name or DEFAULT_LABEL_NAME,
            label_color=label_color or DEFAULT_LABEL_COLOR,
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(story)
    return story


def _relocate(
    session: Session,
    story: Story,
    *,
    user_id: UUID,
    step_id: UUID | None,
    release_id: UUID | None,
) -> bool:
    """Point ``story`` at a new cell, returns False when the cell is unchanged."""
    target_step = step_id if step_id is not None else story.step_id
    target_release = release_id if release_id is not None else story.release_id
    current_map = story_map_of_step(session, story.step_id)
    _resolve_cell(
        session,
        user_id=user_id,
        step_id=target_step,
        release_id=target_release,
        story_map_id=current_map,
    )
    if target_step == story.step_id and target_release == story.release_id:
        return False
    story.sort_order = next_cell_position(session, target_step, target_release, exclude_story_id=story.id)
    story.step_id = target_step
    story.release_id = target_release
    return True


def update_story(
    session: Session,
    story_id: UUID,
    *,
    user_id: UUID,
    changes: dict[str, Any],
    story_map_id: UUID | None = None,
) -> Story:
    context = {"story_id": str(story_id)}
    changes = dict(changes)
    if "title" in changes and not str(changes["title"]).strip():
        raise StoryError.validation("title cannot be empty", **context)
    _check_status(changes.get("status"))
    _check_size(changes.get("size"))
    with transaction(session, "stories.update", error=StoryError, context=context):
        story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
        step_id = changes.pop("step_id", None)
        release_id = changes.pop("release_id", None)
        moved = False
        if step_id is not None or release_id is not None:
            moved = _relocate(
                session,
                story,
                user_id=user_id,
                step_id=step_id,
                release_id=release_id,
            )
        if moved:
            # position is computed for the new cell, a client sort_order only applies within a cell
            changes.pop("sort_order", None)
        touched = apply_changes(story, changes)
        if moved or touched:
            story.updated_by = user_id
    return story


def move_story(
    session: Session,
    story_id: UUID,
    *,
    user_id: UUID,
    step_id: UUID | None = None,
    release_id: UUID | None = None,
    story_map_id: UUID | None = None,
) -> Story:
    context = {"story_id": str(story_id)}
    if step_id is None and release_id is None:
        raise StoryError.validation(
            "At least one of step_id or release_id must be provided to move a story", **context
        )
    with transaction(session, "stories.move", error=StoryError, context=context):
        story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
        if _relocate(
            session,
            story,
            user_id=user_id,
            step_id=step_id,
            release_id=release_id,
        ):
            story.updated_by = user_id
    return story


def delete_story(session: Session, story_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> dict:
    """Remove a story and everything hanging off it.

    Rows go in a fixed order: links where the story is source or target,
    tag and persona associations, comments, attachments, then the story.
    """
    context = {"story_id": str(story_id)}
    with transaction(session, "stories.delete", error=StoryError, context=context):
        story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
        links = session.execute(
            delete(StoryLink).where(
                or_(StoryLink.source_story_id == story.id, StoryLink.target_story_id == story.id)
            )
        ).rowcount
        session.execute(delete(StoryTag).where(StoryTag.story_id == story.id))
        session.execute(delete(StoryPersona).where(StoryPersona.story_id == story.id))
        session.execute(delete(Comment).where(Comment.story_id == story.id))
        session.execute(delete(Attachment).where(Attachment.story_id == story.id))
        session.execute(delete(Story).where(Story.id == story.id))
    logger.info("story %s deleted with %s links", story_id, links)
    return {"success": True, "dependencies_removed": int(links or 0)}


def _story_and_map(session: Session, story_id: UUID, *, user_id: UUID, story_map_id: UUID | None) -> tuple[Story, UUID]:
    story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
    return story, story_map_of_step(session, story.step_id)


def list_story_tags(session: Session, story_id: UUID, *, user_id: UUID) -> list[Tag]:
    story = get_story(session, story_id, user_id=user_id)
    stmt = select(Tag).join(StoryTag, StoryTag.tag_id == Tag.id).where(StoryTag.story_id == story.id).order_by(Tag.name)
    return list(session.execute(stmt).scalars().all())


def add_story_tag(
    session: Session, story_id: UUID, tag_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None
) -> Tag:
    context = {"story_id": str(story_id), "tag_id": str(tag_id)}
    with transaction(session, "stories.add_tag", error=StoryError, context=context):
        story, workspace = _story_and_map(session, story_id, user_id=user_id, story_map_id=story_map_id)
        tag = session.get(Tag, tag_id)
        if tag is None:
            raise StoryError.not_found("Tag not found", **context)
        ensure_same_workspace(workspace, tag.story_map_id, "Tag", error=StoryError, **context)
        if session.get(StoryTag, (story.id, tag.id)) is not None:
            raise StoryError.conflict("Tag already associated with this story", **context)
        session.add(StoryTag(story_id=story.id, tag_id=tag.id))
    return tag


def remove_story_tag(
    session: Session, story_id: UUID, tag_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None
) -> dict:
    context = {"story_id": str(story_id), "tag_id": str(tag_id)}
    with transaction(session, "stories.remove_tag", error=StoryError, context=context):
        story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
        link = session.get(StoryTag, (story.id, tag_id))
        if link is None:
            raise StoryError.not_found("Tag is not associated with this story", **context)
        session.delete(link)
    return {"success": True}


def list_story_personas(session: Session, story_id: UUID, *, user_id: UUID) -> list[Persona]:
    story = get_story(session, story_id, user_id=user_id)
    stmt = (
        select(Persona)
        .join(StoryPersona, StoryPersona.persona_id == Persona.id)
        .where(StoryPersona.story_id == story.id)
        .order_by(Persona.name)
    )
    return list(session.execute(stmt).scalars().all())


def add_story_persona(
    session: Session, story_id: UUID, persona_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None
) -> Persona:
    context = {"story_id": str(story_id), "persona_id": str(persona_id)}
    with transaction(session, "stories.add_persona", error=StoryError, context=context):
        story, workspace = _story_and_map(session, story_id, user_id=user_id, story_map_id=story_map_id)
        persona = session.get(Persona, persona_id)
        if persona is None:
            raise StoryError.not_found("Persona not found", **context)
        ensure_same_workspace(workspace, persona.story_map_id, "Persona", error=StoryError, **context)
        if session.get(StoryPersona, (story.id, persona.id)) is not None:
            raise StoryError.conflict("Persona already associated with this story", **context)
        session.add(StoryPersona(story_id=story.id, persona_id=persona.id))
    return persona


def remove_story_persona(
    session: Session, story_id: UUID, persona_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None
) -> dict:
    context = {"story_id": str(story_id), "persona_id": str(persona_id)}
    with transaction(session, "stories.remove_persona", error=StoryError, context=context):
        story = get_story(session, story_id, user_id=user_id, story_map_id=story_map_id)
        link = session.get(StoryPersona, (story.id, persona_id))
        if link is None:
            raise StoryError.not_found("Persona is not associated with this story", **context)
        session.delete(link)
    return {"success": True}
