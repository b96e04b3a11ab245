"""Workspace resolution for child entities.

Every mutation re-derives the owning story map through the parent chain
(step -> journey -> story map, story -> step -> journey -> story map) and
compares it with the workspace the caller claimed. Nothing here is cached.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from db.models import Comment, Journey, Persona, Release, Step, Story, StoryLink, StoryMap, Tag
from .errors import StoryMapError, WorkspaceError

logger = logging.getLogger(__name__)

MAP_ACCESS_DENIED = "Story map not found or access denied"


def story_map_of_step(session: Session, step_id: UUID) -> UUID | None:
    stmt = select(Journey.story_map_id).join(Step, Step.journey_id == Journey.id).where(Step.id == step_id)
    return session.execute(stmt).scalar_one_or_none()


def story_map_of_story(session: Session, story_id: UUID) -> UUID | None:
    stmt = (
        select(Journey.story_map_id)
        .join(Step, Step.journey_id == Journey.id)
        .join(Story, Story.step_id == Step.id)
        .where(Story.id == story_id)
    )
    return session.execute(stmt).scalar_one_or_none()


def story_map_of_release(session: Session, release_id: UUID) -> UUID | None:
    return session.execute(select(Release.story_map_id).where(Release.id == release_id)).scalar_one_or_none()


def resolve_story_map_id(session: Session, row) -> UUID | None:
    if isinstance(row, StoryMap):
        return row.id
    if isinstance(row, (Journey, Release, Tag, Persona)):
        return row.story_map_id
    if isinstance(row, Step):
        return story_map_of_step(session, row.id)
    if isinstance(row, Story):
        return story_map_of_step(session, row.step_id)
    if isinstance(row, StoryLink):
        return story_map_of_story(session, row.source_story_id)
    if isinstance(row, Comment):
        if row.story_id is not None:
            return story_map_of_story(session, row.story_id)
        if row.release_id is not None:
            return story_map_of_release(session, row.release_id)
        return None
    raise TypeError(f"no workspace chain for {type(row).__name__}")


def has_access(session: Session, story_map_id: UUID | None, user_id: UUID) -> bool:
    if story_map_id is None:
        return False
    owner = session.execute(select(StoryMap.created_by).where(StoryMap.id == story_map_id)).scalar_one_or_none()
    return owner is not None and owner == user_id


def require_story_map(
    session: Session,
    story_map_id: UUID,
    user_id: UUID,
    *,
    error: type[StoryMapError] = WorkspaceError,
) -> StoryMap:
    story_map = session.get(StoryMap, story_map_id)
    if story_map is None or story_map.created_by != user_id:
        raise error.not_found(MAP_ACCESS_DENIED, story_map_id=str(story_map_id))
    return story_map


def ensure_same_workspace(
    expected: UUID | None,
    actual: UUID | None,
    label: str,
    *,
    error: type[StoryMapError] = WorkspaceError,
    **context,
) -> None:
    if expected is None:
        return
    if actual is None or actual != expected:
        logger.warning(
            "workspace mismatch for %s: claimed=%s actual=%s %s", label, expected, actual, context
        )
        raise error.ownership(
            f"{label} does not belong to the specified workspace",
            story_map_id=str(expected),
            **context,
        )


def load_in_workspace(
    session: Session,
    model,
    entity_id: UUID,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
    error: type[StoryMapError] = StoryMapError,
):
    """Fetch ``model`` by id and check it lives in a story map the caller owns.

    When ``story_map_id`` is given the row's derived workspace must match it.
    Rows in someone else's story map are reported as not found.
    """
    row = session.get(model, entity_id)
    if row is None:
        raise error.not_found(id=str(entity_id))
    actual = resolve_story_map_id(session, row)
    label = error.entity.capitalize()
    ensure_same_workspace(story_map_id, actual, label, error=error, id=str(entity_id))
    if not has_access(session, actual, user_id):
        raise error.not_found(id=str(entity_id))
    return row
