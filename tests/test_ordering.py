from __future__ import annotations

import pytest

from db.models import Journey, Step
from storymap import journeys, steps
from storymap.errors import JourneyError, StepError
from storymap.ordering import STORY_SPACING, place


def _names_by_position(session, story_map_id) -> list[str]:
    rows = session.query(Journey).filter(Journey.story_map_id == story_map_id).order_by(Journey.sort_order).all()
    return [row.name for row in rows]


def _add_journeys(session, user, story_map_id, count: int) -> list[Journey]:
    return [
        journeys.create_journey(session, user_id=user.id, story_map_id=story_map_id, name=f"J{index}")
        for index in range(count)
    ]


def test_place_moves_target_and_keeps_relative_order() -> None:
    items = ["a", "b", "c", "d"]
    assert place(items, "a", 2) == ["b", "c", "a", "d"]
    assert place(items, "d", 0) == ["d", "a", "b", "c"]
    assert place(items, "b", 1) == items


def test_story_spacing_is_a_thousand() -> None:
    assert STORY_SPACING == 1000


def test_journey_creation_appends_dense_positions(session, user, board) -> None:
    created = _add_journeys(session, user, board.story_map.id, 4)

    positions = sorted(row.sort_order for row in journeys.list_journeys(session, user_id=user.id, story_map_id=board.story_map.id))
    # the board fixture already created one journey
    assert positions == [0, 1, 2, 3, 4]
    assert [journey.sort_order for journey in created] == [1, 2, 3, 4]


@pytest.mark.parametrize("source,target", [(0, 3), (3, 0), (1, 2), (2, 2)])
def test_reorder_journey_keeps_positions_dense(session, user, board, source, target) -> None:
    _add_journeys(session, user, board.story_map.id, 3)
    before = _names_by_position(session, board.story_map.id)
    moved = before[source]
    moved_id = session.query(Journey.id).filter(Journey.name == moved).scalar()

    journeys.reorder_journey(session, moved_id, target, user_id=user.id)

    rows = journeys.list_journeys(session, user_id=user.id, story_map_id=board.story_map.id)
    assert [row.sort_order for row in rows] == [0, 1, 2, 3]
    after = [row.name for row in rows]
    assert after[target] == moved
    assert [name for name in after if name != moved] == [name for name in before if name != moved]


def test_reorder_out_of_bounds_names_the_limit(session, user, board) -> None:
    _add_journeys(session, user, board.story_map.id, 2)

    with pytest.raises(JourneyError) as exc:
        journeys.reorder_journey(session, board.journey.id, 3, user_id=user.id)

    assert exc.value.kind == "validation"
    assert exc.value.message == "new_sort_order must be less than 3"
    assert board.journey.sort_order == 0


def test_reorder_negative_index_is_rejected(session, user, board) -> None:
    with pytest.raises(JourneyError) as exc:
        journeys.reorder_journey(session, board.journey.id, -1, user_id=user.id)
    assert exc.value.kind == "validation"


def test_deleting_a_journey_closes_the_gap(session, user, board) -> None:
    _add_journeys(session, user, board.story_map.id, 2)

    journeys.delete_journey(session, board.journey.id, user_id=user.id, story_map_id=board.story_map.id)

    assert _names_by_position(session, board.story_map.id) == ["J0", "J1"]
    rows = journeys.list_journeys(session, user_id=user.id, story_map_id=board.story_map.id)
    assert [row.sort_order for row in rows] == [0, 1]


def test_steps_are_ordered_per_journey(session, user, board) -> None:
    second = steps.create_step(session, user_id=user.id, journey_id=board.journey.id, name="Confirm")
    other_journey = journeys.create_journey(session, user_id=user.id, story_map_id=board.story_map.id, name="Ship")
    first_in_other = steps.create_step(session, user_id=user.id, journey_id=other_journey.id, name="Pack")

    assert board.step.sort_order == 0
    assert second.sort_order == 1
    assert first_in_other.sort_order == 0

    steps.reorder_step(session, second.id, 0, user_id=user.id)
    rows = steps.list_steps(session, user_id=user.id, journey_id=board.journey.id)
    assert [(row.name, row.sort_order) for row in rows] == [("Confirm", 0), ("Pay", 1)]

    with pytest.raises(StepError) as exc:
        steps.reorder_step(session, second.id, 2, user_id=user.id)
    assert exc.value.message == "new_sort_order must be less than 2"
    assert session.get(Step, first_in_other.id).sort_order == 0
