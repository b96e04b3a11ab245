from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import LINK_TYPES, Story, StoryLink
from .errors import StoryLinkError
from .ownership import ensure_same_workspace, has_access, load_in_workspace, story_map_of_story
from .txn import transaction


def _story_summary(story: Story) -> dict:
    return {"id": story.id, "title": story.title, "status": story.status}


def _owned_story_map(session: Session, story_id: UUID, label: str, *, user_id: UUID) -> UUID:
    story_map_id = story_map_of_story(session, story_id)
    if story_map_id is None or not has_access(session, story_map_id, user_id):
        raise StoryLinkError.not_found(f"{label} story not found", story_id=str(story_id))
    return story_map_id


def create_link(
    session: Session,
    *,
    user_id: UUID,
    source_story_id: UUID,
    target_story_id: UUID,
    link_type: str,
    story_map_id: UUID | None = None,
) -> StoryLink:
    context = {
        "source_story_id": str(source_story_id),
        "target_story_id": str(target_story_id),
        "link_type": link_type,
    }
    if link_type not in LINK_TYPES:
        raise StoryLinkError.validation(f"link_type must be one of {', '.join(LINK_TYPES)}", **context)
    if source_story_id == target_story_id:
        raise StoryLinkError.validation("Cannot link a story to itself", **context)
    with transaction(session, "story_links.create", error=StoryLinkError, context=context):
        source_map = _owned_story_map(session, source_story_id, "Source", user_id=user_id)
        target_map = _owned_story_map(session, target_story_id, "Target", user_id=user_id)
        ensure_same_workspace(story_map_id, source_map, "Source story", error=StoryLinkError, **context)
        ensure_same_workspace(source_map, target_map, "Target story", error=StoryLinkError, **context)
        existing = session.execute(
            select(StoryLink.id).where(
                StoryLink.source_story_id == source_story_id,
                StoryLink.target_story_id == target_story_id,
                StoryLink.link_type == link_type,
            )
        ).first()
        if existing is not None:
            raise StoryLinkError.conflict(f"Link of type {link_type} already exists between these stories", **context)
        link = StoryLink(source_story_id=source_story_id, target_story_id=target_story_id, link_type=link_type)
        session.add(link)
    return link


def delete_link(session: Session, link_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> dict:
    context = {"link_id": str(link_id)}
    with transaction(session, "story_links.delete", error=StoryLinkError, context=context):
        link = load_in_workspace(
            session, StoryLink, link_id, user_id=user_id, story_map_id=story_map_id, error=StoryLinkError
        )
        session.execute(delete(StoryLink).where(StoryLink.id == link.id))
    return {"success": True}


def delete_links_between(
    session: Session,
    *,
    user_id: UUID,
    source_story_id: UUID,
    target_story_id: UUID,
    link_type: str | None = None,
    story_map_id: UUID | None = None,
) -> dict:
    context = {"source_story_id": str(source_story_id), "target_story_id": str(target_story_id)}
    with transaction(session, "story_links.delete_between", error=StoryLinkError, context=context):
        source_map = _owned_story_map(session, source_story_id, "Source", user_id=user_id)
        ensure_same_workspace(story_map_id, source_map, "Source story", error=StoryLinkError, **context)
        stmt = delete(StoryLink).where(
            StoryLink.source_story_id == source_story_id,
            StoryLink.target_story_id == target_story_id,
        )
        if link_type is not None:
            stmt = stmt.where(StoryLink.link_type == link_type)
        removed = session.execute(stmt).rowcount
        if not removed:
            raise StoryLinkError.not_found("Link not found", **context)
    return {"success": True, "removed": int(removed)}


def list_dependencies(session: Session, story_id: UUID, *, user_id: UUID) -> dict:
    story = load_in_workspace(session, Story, story_id, user_id=user_id, error=StoryLinkError)
    outgoing = session.execute(
        select(StoryLink).where(StoryLink.source_story_id == story.id).order_by(StoryLink.created_at)
    ).scalars().all()
    incoming = session.execute(
        select(StoryLink).where(StoryLink.target_story_id == story.id).order_by(StoryLink.created_at)
    ).scalars().all()
    return {
        "outgoing": [
            {"id": link.id, "link_type": link.link_type, "target_story": _story_summary(link.target_story)}
            for link in outgoing
        ],
        "incoming": [
            {"id": link.id, "link_type": link.link_type, "source_story": _story_summary(link.source_story)}
            for link in incoming
        ],
    }
