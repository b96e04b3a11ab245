from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import UUID

from api.auth import Identity

logger = logging.getLogger(__name__)

Sender = Callable[[dict], Awaitable[Any]]


def room_name(map_id: UUID | str) -> str:
    return f"map:{map_id}"


@dataclass
class Member:
    connection_id: str
    identity: Identity
    send: Sender
    rooms: set[str] = field(default_factory=set)


class RoomRegistry:
    """In-process map of connections to their identity and joined rooms.

    Single process only, nothing is persisted or shared between workers.
    """

    def __init__(self) -> None:
        self._members: dict[str, Member] = {}
        self._rooms: dict[str, set[str]] = {}

    def register(self, connection_id: str, identity: Identity, send: Sender) -> Member:
        member = Member(connection_id=connection_id, identity=identity, send=send)
        self._members[connection_id] = member
        return member

    def get(self, connection_id: str) -> Member | None:
        return self._members.get(connection_id)

    def join(self, connection_id: str, room: str) -> None:
        member = self._members[connection_id]
        member.rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection_id)

    def leave(self, connection_id: str, room: str) -> bool:
        member = self._members.get(connection_id)
        if member is None or room not in member.rooms:
            return False
        member.rooms.discard(room)
        occupants = self._rooms.get(room)
        if occupants is not None:
            occupants.discard(connection_id)
            if not occupants:
                del self._rooms[room]
        return True

    def discard(self, connection_id: str) -> tuple[Member | None, list[str]]:
        member = self._members.get(connection_id)
        if member is None:
            return None, []
        left = sorted(member.rooms)
        for room in left:
            self.leave(connection_id, room)
        del self._members[connection_id]
        return member, left

    def members(self, room: str, *, exclude: str | None = None) -> list[Member]:
        return [
            self._members[connection_id]
            for connection_id in sorted(self._rooms.get(room, ()))
            if connection_id != exclude and connection_id in self._members
        ]

    def roster(self, room: str) -> list[dict]:
        seen: dict[UUID, dict] = {}
        for member in self.members(room):
            seen.setdefault(member.identity.id, {"id": member.identity.id, "email": member.identity.email})
        return list(seen.values())

    def __len__(self) -> int:
        return len(self._members)
