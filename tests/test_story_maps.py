from __future__ import annotations

import pytest

from db.models import Journey, Release, Step, Story, StoryMap
from storymap import maps, stories
from storymap.errors import WorkspaceError


def test_new_story_map_has_exactly_one_unassigned_release(session, user) -> None:
    story_map = maps.create_story_map(session, user_id=user.id, name="Roadmap", description="Q3")

    rows = session.query(Release).filter(Release.story_map_id == story_map.id).all()
    assert len(rows) == 1
    unassigned = rows[0]
    assert unassigned.is_unassigned is True
    assert unassigned.sort_order == 0
    assert unassigned.name == "Unassigned"
    assert unassigned.description == "Default release for unassigned stories"
    assert story_map.created_by == user.id
    assert story_map.description == "Q3"


def test_story_map_list_is_owner_scoped_newest_first(session, user, other_user) -> None:
    first = maps.create_story_map(session, user_id=user.id, name="First")
    second = maps.create_story_map(session, user_id=user.id, name="Second")
    maps.create_story_map(session, user_id=other_user.id, name="Not mine")

    rows = maps.list_story_maps(session, user_id=user.id)

    assert [row.id for row in rows] == [second.id, first.id]


def test_story_map_of_another_user_is_not_found(session, user, other_user) -> None:
    story_map = maps.create_story_map(session, user_id=other_user.id, name="Private")

    with pytest.raises(WorkspaceError) as exc:
        maps.get_story_map(session, story_map.id, user_id=user.id)

    assert exc.value.kind == "not_found"
    assert exc.value.message == "Story map not found or access denied"


def test_update_story_map_only_touches_given_fields(session, user) -> None:
    story_map = maps.create_story_map(session, user_id=user.id, name="Roadmap", description="keep me")

    maps.update_story_map(session, story_map.id, user_id=user.id, changes={"name": "Renamed"})

    refreshed = session.get(StoryMap, story_map.id)
    assert refreshed.name == "Renamed"
    assert refreshed.description == "keep me"


def test_delete_story_map_cascades_everything(session, user, board) -> None:
    stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Card"
    )
    story_map_id = board.story_map.id

    result = maps.delete_story_map(session, story_map_id, user_id=user.id)

    assert result["success"] is True
    session.expire_all()
    assert session.get(StoryMap, story_map_id) is None
    assert session.query(Journey).count() == 0
    assert session.query(Step).count() == 0
    assert session.query(Release).count() == 0
    assert session.query(Story).count() == 0


def test_blank_story_map_name_is_a_validation_error(session, user) -> None:
    with pytest.raises(WorkspaceError) as exc:
        maps.create_story_map(session, user_id=user.id, name="   ")
    assert exc.value.kind == "validation"
    assert session.query(StoryMap).count() == 0
