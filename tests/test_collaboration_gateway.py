from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from collab import CollaborationGateway, RoomRegistry, room_name
from db.models import Story, StoryLink


class Inbox:
    def __init__(self) -> None:
        self.frames: list[dict] = []

    async def __call__(self, frame: dict) -> None:
        self.frames.append(frame)

    def events(self) -> list[str]:
        return [frame["event"] for frame in self.frames]

    def last(self, event: str) -> dict:
        return [frame["data"] for frame in self.frames if frame["event"] == event][-1]


class ClosedSocket:
    async def __call__(self, frame: dict) -> None:
        raise RuntimeError("socket already closed")


@pytest.fixture
def gateway(session_factory) -> CollaborationGateway:
    return CollaborationGateway(session_factory=session_factory, registry=RoomRegistry())


def _run(coro):
    return asyncio.run(coro)


async def _joined_pair(gateway, user, board):
    first, second = Inbox(), Inbox()
    await gateway.connect("tab-1", user, first)
    await gateway.connect("tab-2", user, second)
    for connection_id in ("tab-1", "tab-2"):
        await gateway.handle(connection_id, {"event": "map.join", "data": {"mapId": str(board.story_map.id)}})
    return first, second


def test_join_reports_roster_and_announces_to_others(gateway, user, board) -> None:
    first, second = _run(_joined_pair(gateway, user, board))

    joined = second.last("map.joined")
    assert joined["mapId"] == str(board.story_map.id)
    assert joined["connectedUsers"] == [{"id": str(user.id), "email": user.email}]
    assert first.last("user.joined")["userId"] == str(user.id)
    assert "user.joined" not in second.events()


def test_join_is_denied_for_a_foreign_story_map(gateway, other_user, board) -> None:
    inbox = Inbox()

    async def scenario() -> None:
        await gateway.connect("intruder", other_user, inbox)
        await gateway.handle("intruder", {"event": "map.join", "data": {"mapId": str(board.story_map.id)}})

    _run(scenario())

    assert inbox.last("error")["code"] == "ACCESS_DENIED"
    assert gateway.registry.members(room_name(board.story_map.id)) == []


def test_created_story_reaches_every_member_and_updates_skip_the_sender(gateway, session, user, board) -> None:
    async def scenario():
        first, second = await _joined_pair(gateway, user, board)
        await gateway.handle(
            "tab-1",
            {
                "event": "story.create",
                "data": {
                    "mapId": str(board.story_map.id),
                    "step_id": str(board.step.id),
                    "release_id": str(board.unassigned.id),
                    "title": "Pay with wallet",
                },
            },
        )
        story_id = first.last("story.created")["id"]
        await gateway.handle(
            "tab-1",
            {"event": "story.update", "data": {"mapId": str(board.story_map.id), "id": story_id, "status": "READY"}},
        )
        return first, second, story_id

    first, second, story_id = _run(scenario())

    assert second.last("story.created")["id"] == story_id
    assert first.last("story.created")["sort_order"] == 1000
    assert "story.updated" not in first.events()
    assert second.last("story.updated")["status"] == "READY"
    assert session.query(Story).one().status == "READY"


def test_move_computes_the_destination_position(gateway, session, user, board) -> None:
    from storymap import releases, stories

    target = releases.create_release(session, user_id=user.id, story_map_id=board.story_map.id, name="MVP")
    card = stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Card"
    )
    map_id, card_id, target_id = str(board.story_map.id), str(card.id), str(target.id)

    async def scenario():
        first, second = await _joined_pair(gateway, user, board)
        await gateway.handle(
            "tab-1",
            {"event": "story.move", "data": {"mapId": map_id, "id": card_id, "toReleaseId": target_id, "newSortOrder": 7}},
        )
        return first, second

    first, second = _run(scenario())

    moved = second.last("story.moved")
    assert moved["release_id"] == target_id
    assert moved["sort_order"] == 1000
    assert "story.moved" not in first.events()


def test_foreign_user_gets_permission_denied(gateway, other_user, board) -> None:
    inbox = Inbox()

    async def scenario() -> None:
        await gateway.connect("intruder", other_user, inbox)
        await gateway.handle(
            "intruder",
            {
                "event": "story.create",
                "data": {
                    "mapId": str(board.story_map.id),
                    "step_id": str(board.step.id),
                    "release_id": str(board.unassigned.id),
                    "title": "Sneaky",
                },
            },
        )

    _run(scenario())

    error = inbox.last("error")
    assert error["code"] == "PERMISSION_DENIED"
    assert error["context"]["operation"] == "story.create"


def test_malformed_frames_are_reported_without_closing(gateway, user, board) -> None:
    inbox = Inbox()

    async def scenario() -> None:
        await gateway.connect("tab-1", user, inbox)
        await gateway.handle_text("tab-1", "{not json")
        await gateway.handle("tab-1", {"event": "story.create", "data": {"mapId": str(board.story_map.id)}})
        await gateway.handle("tab-1", {"event": "story.teleport", "data": {}})
        await gateway.handle("tab-1", ["not", "an", "object"])

    _run(scenario())

    assert inbox.events() == ["error", "error", "error", "error"]
    assert {frame["data"]["code"] for frame in inbox.frames} == {"INVALID_MESSAGE"}
    assert gateway.registry.get("tab-1") is not None


def test_domain_failure_keeps_the_service_message(gateway, user, board) -> None:
    inbox = Inbox()

    async def scenario() -> None:
        await gateway.connect("tab-1", user, inbox)
        await gateway.handle(
            "tab-1",
            {"event": "story.move", "data": {"mapId": str(board.story_map.id), "id": str(board.step.id)}},
        )

    _run(scenario())

    error = inbox.last("error")
    assert error["code"] == "MOVE_FAILED"
    assert error["message"] == "At least one of step_id or release_id must be provided to move a story"


def test_comments_fan_out_to_the_whole_room(gateway, session, user, board) -> None:
    from storymap import stories

    card = stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Card"
    )
    map_id, card_id = str(board.story_map.id), str(card.id)

    async def scenario():
        first, second = await _joined_pair(gateway, user, board)
        await gateway.handle(
            "tab-2", {"event": "comment.create", "data": {"mapId": map_id, "storyId": card_id, "content": "LGTM"}}
        )
        comment_id = second.last("comment.created")["id"]
        await gateway.handle(
            "tab-1", {"event": "comment.delete", "data": {"mapId": map_id, "storyId": card_id, "id": comment_id}}
        )
        return first, second

    first, second = _run(scenario())

    assert first.last("comment.created")["author"] == "Olivia Owner"
    assert first.last("comment.deleted") == second.last("comment.deleted")


def test_disconnect_announces_user_left_and_drops_dead_peers(gateway, user, board) -> None:
    async def scenario():
        first, second = await _joined_pair(gateway, user, board)
        gateway.registry.get("tab-2").send = ClosedSocket()
        delivered = await gateway.broadcast(room_name(board.story_map.id), "ping", {})
        await gateway.disconnect("tab-2")
        return first, delivered

    first, delivered = _run(scenario())

    assert delivered == 1
    assert first.last("user.left") == {"userId": str(user.id)}
    assert gateway.registry.get("tab-2") is None
    assert len(gateway.registry) == 1


def test_socket_without_token_is_closed_unauthenticated(api) -> None:
    client = TestClient(api.app)

    with client.websocket_connect("/collaboration") as websocket:
        frame = websocket.receive_json()
        with pytest.raises(WebSocketDisconnect) as exc:
            websocket.receive_json()

    assert frame["event"] == "error"
    assert frame["data"]["code"] == "UNAUTHENTICATED"
    assert exc.value.code == 4401


def test_socket_with_token_can_join(api, user, board, token_for) -> None:
    client = TestClient(api.app)
    map_id = str(board.story_map.id)

    with client.websocket_connect(f"/collaboration?token={token_for(user)}") as websocket:
        websocket.send_json({"event": "map.join", "data": {"mapId": map_id}})
        frame = websocket.receive_json()

    assert frame["event"] == "map.joined"
    assert frame["data"]["mapId"] == map_id


def test_story_delete_reaches_every_member_including_sender(gateway, session, user, board) -> None:
    from storymap import links, stories

    card = stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Doomed"
    )
    other = stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Neighbour"
    )
    links.create_link(session, user_id=user.id, source_story_id=other.id, target_story_id=card.id, link_type="BLOCKS")
    map_id, card_id = str(board.story_map.id), str(card.id)

    async def scenario():
        first, second = await _joined_pair(gateway, user, board)
        await gateway.handle("tab-1", {"event": "story.delete", "data": {"mapId": map_id, "id": card_id}})
        return first, second

    first, second = _run(scenario())

    assert first.last("story.deleted")["id"] == card_id
    assert second.last("story.deleted")["id"] == card_id
    assert first.last("story.deleted")["deleted_by"] == str(user.id)
    session.expire_all()
    assert session.query(Story).filter(Story.id == card.id).count() == 0
    assert session.query(StoryLink).count() == 0


def test_unexpected_failure_has_its_own_code(gateway, user, board, monkeypatch) -> None:
    inbox = Inbox()

    async def explode(member, payload):
        raise RuntimeError("registry exploded")

    monkeypatch.setattr(gateway, "join", explode)

    async def scenario() -> None:
        await gateway.connect("tab-1", user, inbox)
        await gateway.handle("tab-1", {"event": "map.join", "data": {"mapId": str(board.story_map.id)}})

    _run(scenario())

    error = inbox.last("error")
    assert error["code"] == "UNEXPECTED_ERROR"
    assert error["context"] == {"event": "map.join"}


def test_binary_frame_is_rejected_without_closing_the_socket(api, user, board, token_for) -> None:
    client = TestClient(api.app)
    map_id = str(board.story_map.id)

    with client.websocket_connect(f"/collaboration?token={token_for(user)}") as websocket:
        websocket.send_bytes(b"\x00\x01")
        rejected = websocket.receive_json()
        websocket.send_json({"event": "map.join", "data": {"mapId": map_id}})
        joined = websocket.receive_json()

    assert rejected["event"] == "error"
    assert rejected["data"]["code"] == "INVALID_MESSAGE"
    assert joined["event"] == "map.joined"
    assert joined["data"]["mapId"] == map_id
