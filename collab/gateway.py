"""Collaboration socket protocol.

A connection is authenticated before it is registered, then joins one room
per story map (``map:<id>``). Frames are ``{"event": ..., "data": {...}}`` in
both directions.

Fan-out per mutation:

- ``story.created``, ``story.deleted``, ``comment.created`` and
  ``comment.deleted`` go to every room member, the sender included
- ``story.updated`` and ``story.moved`` go to the other members only

Failures are reported to the sender as an ``error`` frame and never close the
connection.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from fastapi.concurrency import run_in_threadpool
from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from api.auth import Identity
from storymap.errors import PERMISSION, UNEXPECTED, StoryMapError
from . import service
from .events import (
    ACCESS_DENIED,
    CREATE_FAILED,
    DELETE_FAILED,
    FAILURE_MESSAGES,
    INVALID_MESSAGE,
    JOIN_FAILED,
    MOVE_FAILED,
    PERMISSION_DENIED,
    UNEXPECTED_ERROR,
    UPDATE_FAILED,
    CreateComment,
    CreateStory,
    DeleteComment,
    DeleteStory,
    JoinRoom,
    LeaveRoom,
    MoveStory,
    UpdateStory,
    envelope,
    error_payload,
)
from .rooms import Member, RoomRegistry, room_name

logger = logging.getLogger(__name__)


class _Mutation:
    def __init__(self, model: type[BaseModel], apply: Callable, result_event: str, failure_code: str, *, to_sender: bool):
        self.model = model
        self.apply = apply
        self.result_event = result_event
        self.failure_code = failure_code
        self.to_sender = to_sender


MUTATIONS: dict[str, _Mutation] = {
    "story.create": _Mutation(CreateStory, service.create_story, "story.created", CREATE_FAILED, to_sender=True),
    "story.update": _Mutation(UpdateStory, service.update_story, "story.updated", UPDATE_FAILED, to_sender=False),
    "story.move": _Mutation(MoveStory, service.move_story, "story.moved", MOVE_FAILED, to_sender=False),
    "story.delete": _Mutation(DeleteStory, service.delete_story, "story.deleted", DELETE_FAILED, to_sender=True),
    "comment.create": _Mutation(
        CreateComment, service.create_comment, "comment.created", CREATE_FAILED, to_sender=True
    ),
    "comment.delete": _Mutation(
        DeleteComment, service.delete_comment, "comment.deleted", DELETE_FAILED, to_sender=True
    ),
}

ROOM_EVENTS: dict[str, type[BaseModel]] = {"map.join": JoinRoom, "map.leave": LeaveRoom}


class CollaborationGateway:
    def __init__(self, session_factory: Callable[[], Session], registry: RoomRegistry | None = None) -> None:
        self.session_factory = session_factory
        self.registry = registry or RoomRegistry()

    # connection lifecycle

    async def connect(self, connection_id: str, identity: Identity, send) -> Member:
        member = self.registry.register(connection_id, identity, send)
        logger.info("collaboration connect %s user=%s", connection_id, identity.id)
        return member

    async def disconnect(self, connection_id: str) -> None:
        member, rooms = self.registry.discard(connection_id)
        if member is None:
            return
        for room in rooms:
            await self.broadcast(room, "user.left", {"userId": member.identity.id})
        logger.info("collaboration disconnect %s user=%s rooms=%s", connection_id, member.identity.id, rooms)

    async def handle_text(self, connection_id: str, raw: str | None) -> None:
        member = self.registry.get(connection_id)
        if member is None:
            return
        if raw is None:
            await self.send_error(member, "Only text frames are supported", INVALID_MESSAGE)
            return
        try:
            frame = json.loads(raw)
        except ValueError:
            await self.send_error(member, "Message is not valid JSON", INVALID_MESSAGE)
            return
        await self.handle(connection_id, frame)

    async def handle(self, connection_id: str, frame: Any) -> None:
        member = self.registry.get(connection_id)
        if member is None:
            return
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.send_error(member, "Message must be an object with an event name", INVALID_MESSAGE)
            return
        event = frame["event"]
        data = frame.get("data") or {}
        try:
            if event in ROOM_EVENTS:
                payload = self._parse(ROOM_EVENTS[event], data)
                if event == "map.join":
                    await self.join(member, payload)
                else:
                    await self.leave(member, payload)
                return
            mutation = MUTATIONS.get(event)
            if mutation is None:
                await self.send_error(member, f"Unknown event: {event}", INVALID_MESSAGE, {"event": event})
                return
            await self.mutate(member, event, mutation, self._parse(mutation.model, data))
        except ValidationError as exc:
            problems = [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
            await self.send_error(member, f"Invalid payload for {event}", INVALID_MESSAGE, {"event": event, "errors": problems})
        except Exception:
            logger.exception("unhandled collaboration failure on %s from %s", event, connection_id)
            await self.send_error(member, "Unexpected error", UNEXPECTED_ERROR, {"event": event})

    # room membership

    async def join(self, member: Member, payload: JoinRoom) -> None:
        room = room_name(payload.map_id)
        context = {"mapId": str(payload.map_id), "operation": "map.join"}
        try:
            allowed = await self._db(service.has_map_access, payload.map_id, member.identity.id)
        except Exception:
            logger.exception("join failed for %s on %s", member.connection_id, room)
            await self.send_error(member, FAILURE_MESSAGES[JOIN_FAILED], JOIN_FAILED, context)
            return
        if not allowed:
            logger.warning("access denied to %s for user %s", room, member.identity.id)
            await self.send_error(member, "Access denied to this story map", ACCESS_DENIED, context)
            return
        self.registry.join(member.connection_id, room)
        logger.info("user %s joined %s", member.identity.id, room)
        await self.emit(member, "map.joined", {"mapId": payload.map_id, "connectedUsers": self.registry.roster(room)})
        await self.broadcast(
            room,
            "user.joined",
            {"userId": member.identity.id, "userEmail": member.identity.email},
            exclude=member.connection_id,
        )

    async def leave(self, member: Member, payload: LeaveRoom) -> None:
        room = room_name(payload.map_id)
        if not self.registry.leave(member.connection_id, room):
            return
        logger.info("user %s left %s", member.identity.id, room)
        await self.broadcast(room, "user.left", {"userId": member.identity.id}, exclude=member.connection_id)

    # mutations

    async def mutate(self, member: Member, event: str, mutation: _Mutation, payload: BaseModel) -> None:
        context = {"mapId": str(payload.map_id), "operation": event}
        for key in ("id", "story_id"):
            value = getattr(payload, key, None)
            if value is not None:
                context["storyId" if key == "story_id" else "id"] = str(value)
        try:
            if not await self._db(service.can_edit, payload.map_id, member.identity.id):
                await self.send_error(
                    member, "You do not have permission to edit this story map", PERMISSION_DENIED, context
                )
                return
            result = await self._db(mutation.apply, member.identity, payload)
        except StoryMapError as exc:
            logger.warning("%s failed for %s: %s (%s) %s", event, member.identity.id, exc.message, exc.kind, exc.context)
            code = PERMISSION_DENIED if exc.kind == PERMISSION else mutation.failure_code
            message = FAILURE_MESSAGES[mutation.failure_code] if exc.kind == UNEXPECTED else exc.message
            await self.send_error(member, message, code, context)
            return
        except Exception:
            logger.exception("%s failed for %s", event, member.identity.id)
            await self.send_error(member, FAILURE_MESSAGES[mutation.failure_code], mutation.failure_code, context)
            return
        room = room_name(payload.map_id)
        exclude = None if mutation.to_sender else member.connection_id
        await self.broadcast(room, mutation.result_event, result, exclude=exclude)

    # delivery

    async def emit(self, member: Member, event: str, data: dict) -> bool:
        try:
            await member.send(envelope(event, jsonable_encoder(data)))
        except Exception as exc:
            logger.info("dropping %s to %s: %s", event, member.connection_id, exc)
            return False
        return True

    async def broadcast(self, room: str, event: str, data: dict, *, exclude: str | None = None) -> int:
        delivered = 0
        for member in self.registry.members(room, exclude=exclude):
            if await self.emit(member, event, data):
                delivered += 1
        return delivered

    async def send_error(self, member: Member, message: str, code: str, context: dict | None = None) -> None:
        await self.emit(member, "error", error_payload(message, code, context))

    # helpers

    @staticmethod
    def _parse(model: type[BaseModel], data: Any) -> BaseModel:
        return model.model_validate(data)

    def _in_session(self, fn: Callable, *args: Any) -> Any:
        session = self.session_factory()
        try:
            return fn(session, *args)
        finally:
            session.close()

    async def _db(self, fn: Callable, *args: Any) -> Any:
        return await run_in_threadpool(self._in_session, fn, *args)
