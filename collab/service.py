"""Room-scoped writes issued over the collaboration socket.

These reuse the story and comment services so a socket edit goes through the
same workspace checks and cell ordering as the REST endpoints. Each function
returns the event payload that is fanned out to the room.
"""

from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy.orm import Session

from api.auth import Identity
from storymap import comments, stories
from storymap.ownership import has_access
from storymap.wire import from_wire
from .events import CreateComment, CreateStory, DeleteComment, DeleteStory, MoveStory, UpdateStory


def has_map_access(session: Session, map_id: UUID, user_id: UUID) -> bool:
    return has_access(session, map_id, user_id)


def can_edit(session: Session, map_id: UUID, user_id: UUID) -> bool:
    # edit rights are the same as access until story maps get shared members
    return has_access(session, map_id, user_id)


def create_story(session: Session, identity: Identity, payload: CreateStory) -> dict:
    story = stories.create_story(
        session,
        user_id=identity.id,
        step_id=payload.step_id,
        release_id=payload.release_id,
        title=payload.title,
        description=payload.description,
        status=payload.status,
        size=payload.size,
        story_map_id=payload.map_id,
    )
    return {
        "id": story.id,
        "step_id": story.step_id,
        "release_id": story.release_id,
        "title": story.title,
        "description": story.description,
        "status": story.status,
        "size": story.size,
        "sort_order": story.sort_order,
        "created_at": story.created_at,
        "created_by": story.created_by,
    }


def update_story(session: Session, identity: Identity, payload: UpdateStory) -> dict:
    changes = from_wire("story", payload.model_dump(include={"title", "description", "status", "size"}, exclude_unset=True))
    story = stories.update_story(
        session,
        payload.id,
        user_id=identity.id,
        changes=changes,
        story_map_id=payload.map_id,
    )
    return {
        "id": story.id,
        "title": story.title,
        "description": story.description,
        "status": story.status,
        "size": story.size,
        "updated_at": story.updated_at,
        "updated_by": story.updated_by,
    }


def move_story(session: Session, identity: Identity, payload: MoveStory) -> dict:
    story = stories.move_story(
        session,
        payload.id,
        user_id=identity.id,
        step_id=payload.to_step_id,
        release_id=payload.to_release_id,
        story_map_id=payload.map_id,
    )
    return {
        "id": story.id,
        "step_id": story.step_id,
        "release_id": story.release_id,
        "sort_order": story.sort_order,
        "updated_at": story.updated_at,
        "updated_by": story.updated_by,
    }


def delete_story(session: Session, identity: Identity, payload: DeleteStory) -> dict:
    stories.delete_story(session, payload.id, user_id=identity.id, story_map_id=payload.map_id)
    return {"id": payload.id, "deleted_by": identity.id, "deleted_at": datetime.now(UTC)}


def create_comment(session: Session, identity: Identity, payload: CreateComment) -> dict:
    comment = comments.create_comment(
        session,
        payload.story_id,
        user_id=identity.id,
        author=identity.display_name,
        avatar_url=identity.avatar_url,
        content=payload.content,
        story_map_id=payload.map_id,
    )
    return {
        "id": comment.id,
        "story_id": comment.story_id,
        "content": comment.content,
        "author": comment.author,
        "author_id": comment.author_id,
        "avatar_url": comment.avatar_url,
        "created_at": comment.created_at,
    }


def delete_comment(session: Session, identity: Identity, payload: DeleteComment) -> dict:
    comments.delete_comment(
        session,
        payload.id,
        user_id=identity.id,
        story_map_id=payload.map_id,
        story_id=payload.story_id,
    )
    return {"id": payload.id, "story_id": payload.story_id}
