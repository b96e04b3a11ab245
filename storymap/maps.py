from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from db.models import Release, StoryMap
from .errors import WorkspaceError
from .ownership import require_story_map
from .txn import transaction
from .wire import apply_changes

logger = logging.getLogger(__name__)

UNASSIGNED_NAME = "Unassigned"
UNASSIGNED_DESCRIPTION = "Default release for unassigned stories"


def create_story_map(session: Session, *, user_id: UUID, name: str, description: str | None = None) -> StoryMap:
    if not name or not name.strip():
        raise WorkspaceError.validation("name is required")
    with transaction(session, "story_maps.create", error=WorkspaceError, context={"user_id": str(user_id)}):
        story_map = StoryMap(
            name=name.strip(),
            description=description or "",
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(story_map)
        session.flush()
        session.add(
            Release(
                story_map_id=story_map.id,
                name=UNASSIGNED_NAME,
                description=UNASSIGNED_DESCRIPTION,
                is_unassigned=True,
                shipped=False,
                sort_order=0,
                created_by=user_id,
                updated_by=user_id,
            )
        )
    logger.info("story map %s created for %s", story_map.id, user_id)
    return story_map


def list_story_maps(session: Session, *, user_id: UUID) -> list[StoryMap]:
    stmt = select(StoryMap).where(StoryMap.created_by == user_id).order_by(desc(StoryMap.created_at))
    return list(session.execute(stmt).scalars().all())


def get_story_map(session: Session, story_map_id: UUID, *, user_id: UUID) -> StoryMap:
    return require_story_map(session, story_map_id, user_id)


def update_story_map(session: Session, story_map_id: UUID, *, user_id: UUID, changes: dict[str, Any]) -> StoryMap:
    context = {"story_map_id": str(story_map_id)}
    with transaction(session, "story_maps.update", error=WorkspaceError, context=context):
        story_map = require_story_map(session, story_map_id, user_id)
        if "name" in changes and not str(changes["name"]).strip():
            raise WorkspaceError.validation("name cannot be empty", **context)
        if apply_changes(story_map, changes):
            story_map.updated_by = user_id
    return story_map


def delete_story_map(session: Session, story_map_id: UUID, *, user_id: UUID) -> dict:
    context = {"story_map_id": str(story_map_id)}
    with transaction(session, "story_maps.delete", error=WorkspaceError, context=context):
        require_story_map(session, story_map_id, user_id)
        # journeys, steps, stories, releases, tags and personas go with it via FK cascade
        session.execute(delete(StoryMap).where(StoryMap.id == story_map_id))
    return {"success": True, "id": story_map_id}
