from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import Journey, Step
from .errors import StepError
from .ordering import compact_dense, next_dense_position, reorder_dense, siblings
from .ownership import ensure_same_workspace, has_access, load_in_workspace, require_story_map
from .txn import transaction
from .wire import apply_changes


def _journey_in_workspace(
    session: Session, journey_id: UUID, *, user_id: UUID, story_map_id: UUID | None
) -> Journey:
    journey = session.get(Journey, journey_id)
    if journey is None or not has_access(session, journey.story_map_id, user_id):
        raise StepError.not_found("Journey not found", journey_id=str(journey_id))
    ensure_same_workspace(story_map_id, journey.story_map_id, "Journey", error=StepError, journey_id=str(journey_id))
    return journey


def list_steps(
    session: Session,
    *,
    user_id: UUID,
    journey_id: UUID | None = None,
    story_map_id: UUID | None = None,
) -> list[Step]:
    if journey_id is not None:
        _journey_in_workspace(session, journey_id, user_id=user_id, story_map_id=story_map_id)
        return siblings(session, Step, journey_id=journey_id)
    if story_map_id is None:
        raise StepError.validation("journey_id or story_map_id is required")
    require_story_map(session, story_map_id, user_id, error=StepError)
    stmt = (
        select(Step)
        .join(Journey, Journey.id == Step.journey_id)
        .where(Journey.story_map_id == story_map_id)
        .order_by(Journey.sort_order, Step.sort_order, Step.created_at)
    )
    return list(session.execute(stmt).scalars().all())


def get_step(session: Session, step_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Step:
    return load_in_workspace(session, Step, step_id, user_id=user_id, story_map_id=story_map_id, error=StepError)


def create_step(
    session: Session,
    *,
    user_id: UUID,
    journey_id: UUID,
    name: str,
    description: str | None = None,
    story_map_id: UUID | None = None,
) -> Step:
    if not name or not name.strip():
        raise StepError.validation("name is required")
    context = {"journey_id": str(journey_id)}
    with transaction(session, "steps.create", error=StepError, context=context):
        _journey_in_workspace(session, journey_id, user_id=user_id, story_map_id=story_map_id)
        step = Step(
            journey_id=journey_id,
            name=name.strip(),
            description=description or "",
            sort_order=next_dense_position(session, Step, journey_id=journey_id),
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(step)
    return step


def update_step(
    session: Session,
    step_id: UUID,
    *,
    user_id: UUID,
    changes: dict[str, Any],
    story_map_id: UUID | None = None,
) -> Step:
    context = {"step_id": str(step_id)}
    with transaction(session, "steps.update", error=StepError, context=context):
        step = get_step(session, step_id, user_id=user_id, story_map_id=story_map_id)
        if "name" in changes and not str(changes["name"]).strip():
            raise StepError.validation("name cannot be empty", **context)
        if apply_changes(step, changes):
            step.updated_by = user_id
    return step


def delete_step(session: Session, step_id: UUID, *, user_id: UUID, story_map_id: UUID) -> dict:
    context = {"step_id": str(step_id), "story_map_id": str(story_map_id)}
    with transaction(session, "steps.delete", error=StepError, context=context):
        step = get_step(session, step_id, user_id=user_id, story_map_id=story_map_id)
        journey_id = step.journey_id
        session.execute(delete(Step).where(Step.id == step.id))
        compact_dense(session, Step, journey_id=journey_id)
    return {"success": True, "id": step_id}


def reorder_step(
    session: Session,
    step_id: UUID,
    new_sort_order: int,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
) -> Step:
    context = {"step_id": str(step_id), "new_sort_order": new_sort_order}
    with transaction(session, "steps.reorder", error=StepError, context=context):
        step = get_step(session, step_id, user_id=user_id, story_map_id=story_map_id)
        reorder_dense(
            session,
            Step,
            step,
            new_sort_order,
            scope={"journey_id": step.journey_id},
            error=StepError,
            user_id=user_id,
        )
    return step
