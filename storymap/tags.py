from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import DEFAULT_TAG_COLOR, Tag
from .errors import TagError
from .ownership import load_in_workspace, require_story_map
from .txn import transaction
from .wire import apply_changes


def _ensure_unique_name(session: Session, story_map_id: UUID, name: str, *, exclude_id: UUID | None = None) -> None:
    stmt = select(Tag.id).where(Tag.story_map_id == story_map_id, Tag.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Tag.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise TagError.conflict(f"Tag with name '{name}' already exists", story_map_id=str(story_map_id))


def list_tags(session: Session, *, user_id: UUID, story_map_id: UUID) -> list[Tag]:
    require_story_map(session, story_map_id, user_id, error=TagError)
    return list(session.execute(select(Tag).where(Tag.story_map_id == story_map_id).order_by(Tag.name)).scalars())


def get_tag(session: Session, tag_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Tag:
    return load_in_workspace(session, Tag, tag_id, user_id=user_id, story_map_id=story_map_id, error=TagError)


def create_tag(session: Session, *, user_id: UUID, story_map_id: UUID, name: str, color: str | None = None) -> Tag:
    if not name or not name.strip():
        raise TagError.validation("name is required")
    name = name.strip()
    with transaction(session, "tags.create", error=TagError, context={"story_map_id": str(story_map_id)}):
        require_story_map(session, story_map_id, user_id, error=TagError)
        _ensure_unique_name(session, story_map_id, name)
        tag = Tag(story_map_id=story_map_id, name=name, color=color or DEFAULT_TAG_COLOR)
        session.add(tag)
    return tag


def update_tag(
    session: Session, tag_id: UUID, *, user_id: UUID, changes: dict[str, Any], story_map_id: UUID | None = None
) -> Tag:
    with transaction(session, "tags.update", error=TagError, context={"tag_id": str(tag_id)}):
        tag = get_tag(session, tag_id, user_id=user_id, story_map_id=story_map_id)
        if "name" in changes:
            changes = {**changes, "name": str(changes["name"]).strip()}
            if not changes["name"]:
                raise TagError.validation("name cannot be empty", tag_id=str(tag_id))
            _ensure_unique_name(session, tag.story_map_id, changes["name"], exclude_id=tag.id)
        apply_changes(tag, changes)
    return tag


def delete_tag(session: Session, tag_id: UUID, *, user_id: UUID, story_map_id: UUID) -> dict:
    context = {"tag_id": str(tag_id), "story_map_id": str(story_map_id)}
    with transaction(session, "tags.delete", error=TagError, context=context):
        tag = get_tag(session, tag_id, user_id=user_id, story_map_id=story_map_id)
        session.execute(delete(Tag).where(Tag.id == tag.id))
    return {"success": True, "id": tag_id}
