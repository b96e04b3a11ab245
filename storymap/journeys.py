from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import DEFAULT_JOURNEY_COLOR, Journey
from .errors import JourneyError
from .ordering import compact_dense, next_dense_position, reorder_dense, siblings
from .ownership import load_in_workspace, require_story_map
from .txn import transaction
from .wire import apply_changes


def _ensure_unique_name(session: Session, story_map_id: UUID, name: str, *, exclude_id: UUID | None = None) -> None:
    stmt = select(Journey.id).where(Journey.story_map_id == story_map_id, Journey.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Journey.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise JourneyError.conflict(
            f"A journey named '{name}' already exists in this story map",
            story_map_id=str(story_map_id),
        )


def list_journeys(session: Session, *, user_id: UUID, story_map_id: UUID) -> list[Journey]:
    require_story_map(session, story_map_id, user_id, error=JourneyError)
    return siblings(session, Journey, story_map_id=story_map_id)


def get_journey(session: Session, journey_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Journey:
    return load_in_workspace(
        session, Journey, journey_id, user_id=user_id, story_map_id=story_map_id, error=JourneyError
    )


def create_journey(
    session: Session,
    *,
    user_id: UUID,
    story_map_id: UUID,
    name: str,
    description: str | None = None,
    color: str | None = None,
) -> Journey:
    if not name or not name.strip():
        raise JourneyError.validation("name is required")
    name = name.strip()
    context = {"story_map_id": str(story_map_id)}
    with transaction(session, "journeys.create", error=JourneyError, context=context):
        require_story_map(session, story_map_id, user_id, error=JourneyError)
        _ensure_unique_name(session, story_map_id, name)
        journey = Journey(
            story_map_id=story_map_id,
            name=name,
            description=description or "",
            color=color or DEFAULT_JOURNEY_COLOR,
            sort_order=next_dense_position(session, Journey, story_map_id=story_map_id),
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(journey)
    return journey


def update_journey(
    session: Session,
    journey_id: UUID,
    *,
    user_id: UUID,
    changes: dict[str, Any],
    story_map_id: UUID | None = None,
) -> Journey:
    context = {"journey_id": str(journey_id)}
    with transaction(session, "journeys.update", error=JourneyError, context=context):
        journey = get_journey(session, journey_id, user_id=user_id, story_map_id=story_map_id)
        if "name" in changes:
            changes = {**changes, "name": str(changes["name"]).strip()}
            if not changes["name"]:
                raise JourneyError.validation("name cannot be empty", **context)
            _ensure_unique_name(session, journey.story_map_id, changes["name"], exclude_id=journey.id)
        if apply_changes(journey, changes):
            journey.updated_by = user_id
    return journey


def delete_journey(session: Session, journey_id: UUID, *, user_id: UUID, story_map_id: UUID) -> dict:
    context = {"journey_id": str(journey_id), "story_map_id": str(story_map_id)}
    with transaction(session, "journeys.delete", error=JourneyError, context=context):
        journey = get_journey(session, journey_id, user_id=user_id, story_map_id=story_map_id)
        # steps and their stories cascade in storage
        session.execute(delete(Journey).where(Journey.id == journey.id))
        compact_dense(session, Journey, story_map_id=story_map_id)
    return {"success": True, "id": journey_id}


def reorder_journey(
    session: Session,
    journey_id: UUID,
    new_sort_order: int,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
) -> Journey:
    context = {"journey_id": str(journey_id), "new_sort_order": new_sort_order}
    with transaction(session, "journeys.reorder", error=JourneyError, context=context):
        journey = get_journey(session, journey_id, user_id=user_id, story_map_id=story_map_id)
        reorder_dense(
            session,
            Journey,
            journey,
            new_sort_order,
            scope={"story_map_id": journey.story_map_id},
            error=JourneyError,
            user_id=user_id,
        )
    return journey
