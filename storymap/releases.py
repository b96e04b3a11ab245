from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from db.models import Release, Story
from .errors import ReleaseError
from .ordering import compact_dense, next_dense_position, reorder_dense, siblings
from .ownership import load_in_workspace, require_story_map
from .txn import transaction
from .wire import apply_changes

logger = logging.getLogger(__name__)


def unassigned_release(session: Session, story_map_id: UUID) -> Release | None:
    stmt = select(Release).where(Release.story_map_id == story_map_id, Release.is_unassigned.is_(True))
    return session.execute(stmt).scalar_one_or_none()


def _check_dates(start_date: date | None, due_date: date | None, **context) -> None:
    if start_date is not None and due_date is not None and due_date < start_date:
        raise ReleaseError.validation("due_date cannot be before start_date", **context)


def list_releases(session: Session, *, user_id: UUID, story_map_id: UUID) -> list[Release]:
    require_story_map(session, story_map_id, user_id, error=ReleaseError)
    return siblings(session, Release, story_map_id=story_map_id)


def get_release(session: Session, release_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Release:
    return load_in_workspace(
        session, Release, release_id, user_id=user_id, story_map_id=story_map_id, error=ReleaseError
    )


def list_release_stories(
    session: Session, release_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None
) -> list[Story]:
    release = get_release(session, release_id, user_id=user_id, story_map_id=story_map_id)
    stmt = (
        select(Story)
        .where(Story.release_id == release.id)
        .order_by(Story.step_id, Story.sort_order, Story.created_at)
    )
    return list(session.execute(stmt).scalars().all())


def create_release(
    session: Session,
    *,
    user_id: UUID,
    story_map_id: UUID,
    name: str,
    description: str | None = None,
    start_date: date | None = None,
    due_date: date | None = None,
    shipped: bool = False,
) -> Release:
    if not name or not name.strip():
        raise ReleaseError.validation("name is required")
    context = {"story_map_id": str(story_map_id)}
    _check_dates(start_date, due_date, **context)
    with transaction(session, "releases.create", error=ReleaseError, context=context):
        require_story_map(session, story_map_id, user_id, error=ReleaseError)
        release = Release(
            story_map_id=story_map_id,
            name=name.strip(),
            description=description or "",
            start_date=start_date,
            due_date=due_date,
            shipped=bool(shipped),
            is_unassigned=False,
            sort_order=next_dense_position(session, Release, story_map_id=story_map_id),
            created_by=user_id,
            updated_by=user_id,
        )
        session.add(release)
    return release


def update_release(
    session: Session,
    release_id: UUID,
    *,
    user_id: UUID,
    changes: dict[str, Any],
    story_map_id: UUID | None = None,
) -> Release:
    context = {"release_id": str(release_id)}
    with transaction(session, "releases.update", error=ReleaseError, context=context):
        release = get_release(session, release_id, user_id=user_id, story_map_id=story_map_id)
        if "name" in changes and not str(changes["name"]).strip():
            raise ReleaseError.validation("name cannot be empty", **context)
        _check_dates(
            changes.get("start_date", release.start_date),
            changes.get("due_date", release.due_date),
            **context,
        )
        if apply_changes(release, changes):
            release.updated_by = user_id
    return release


def delete_release(session: Session, release_id: UUID, *, user_id: UUID, story_map_id: UUID) -> dict:
    """Delete a release after moving its stories to the story map's Unassigned release."""
    context = {"release_id": str(release_id), "story_map_id": str(story_map_id)}
    with transaction(session, "releases.delete", error=ReleaseError, context=context):
        release = get_release(session, release_id, user_id=user_id, story_map_id=story_map_id)
        if release.is_unassigned:
            raise ReleaseError.invariant("Cannot delete the Unassigned release", **context)
        fallback = unassigned_release(session, release.story_map_id)
        if fallback is None:
            raise ReleaseError.unexpected("Unassigned release not found - cannot safely delete release", **context)
        moved = session.execute(
            update(Story)
            .where(Story.release_id == release.id)
            .values(release_id=fallback.id, updated_by=user_id, updated_at=datetime.now(UTC))
            .execution_options(synchronize_session=False)
        ).rowcount
        session.execute(delete(Release).where(Release.id == release.id))
        compact_dense(session, Release, story_map_id=release.story_map_id)
    logger.info("release %s deleted, %s stories moved to %s", release_id, moved, fallback.id)
    return {"success": True, "stories_moved": int(moved or 0)}


def reorder_release(
    session: Session,
    release_id: UUID,
    new_sort_order: int,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
) -> Release:
    context = {"release_id": str(release_id), "new_sort_order": new_sort_order}
    with transaction(session, "releases.reorder", error=ReleaseError, context=context):
        release = get_release(session, release_id, user_id=user_id, story_map_id=story_map_id)
        if release.is_unassigned:
            raise ReleaseError.invariant("Cannot reorder the Unassigned release", **context)
        reorder_dense(
            session,
            Release,
            release,
            new_sort_order,
            scope={"story_map_id": release.story_map_id},
            error=ReleaseError,
            user_id=user_id,
        )
    return release
