"""Sort positions for sibling collections.

Journeys, steps and releases keep dense 0-based positions that are rewritten
in full on every reorder. Stories are spaced by ``STORY_SPACING`` inside their
(step, release) cell so a single card can be moved with one row write.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.models import Story
from .errors import StoryMapError

STORY_SPACING = 1000


def _scope_filters(model, scope: dict[str, Any]) -> list:
    return [getattr(model, column) == value for column, value in scope.items()]


def siblings(session: Session, model, **scope: Any) -> list:
    stmt = select(model).where(*_scope_filters(model, scope)).order_by(model.sort_order, model.created_at, model.id)
    return list(session.execute(stmt).scalars().all())


def next_dense_position(session: Session, model, **scope: Any) -> int:
    stmt = select(func.count()).select_from(model).where(*_scope_filters(model, scope))
    return int(session.execute(stmt).scalar_one())


def next_cell_position(
    session: Session,
    step_id: UUID,
    release_id: UUID,
    *,
    exclude_story_id: UUID | None = None,
) -> int:
    stmt = (
        select(func.count())
        .select_from(Story)
        .where(Story.step_id == step_id, Story.release_id == release_id)
    )
    if exclude_story_id is not None:
        stmt = stmt.where(Story.id != exclude_story_id)
    count = int(session.execute(stmt).scalar_one())
    return (count + 1) * STORY_SPACING


def place(items: list, target, new_index: int) -> list:
    """Return ``items`` with ``target`` moved to ``new_index``, others keep their relative order."""
    ordered = [item for item in items if item is not target]
    ordered.insert(new_index, target)
    return ordered


def reorder_dense(
    session: Session,
    model,
    target,
    new_index: int,
    *,
    scope: dict[str, Any],
    error: type[StoryMapError] = StoryMapError,
    user_id: UUID | None = None,
) -> list:
    rows = siblings(session, model, **scope)
    if all(row.id != target.id for row in rows):
        raise error.not_found(target_id=str(target.id))
    if new_index < 0:
        raise error.validation("new_sort_order must be zero or greater", new_sort_order=new_index)
    if new_index >= len(rows):
        raise error.validation(
            f"new_sort_order must be less than {len(rows)}",
            new_sort_order=new_index,
            sibling_count=len(rows),
        )
    current = next(row for row in rows if row.id == target.id)
    ordered = place(rows, current, new_index)
    for index, row in enumerate(ordered):
        if row.sort_order != index:
            row.sort_order = index
            if user_id is not None:
                row.updated_by = user_id
    if user_id is not None:
        current.updated_by = user_id
    session.flush()
    return ordered


def compact_dense(session: Session, model, **scope: Any) -> list:
    rows = siblings(session, model, **scope)
    for index, row in enumerate(rows):
        if row.sort_order != index:
            row.sort_order = index
    session.flush()
    return rows
