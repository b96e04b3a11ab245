from __future__ import annotations

from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

ACCESS_DENIED = "ACCESS_DENIED"
PERMISSION_DENIED = "PERMISSION_DENIED"
JOIN_FAILED = "JOIN_FAILED"
CREATE_FAILED = "CREATE_FAILED"
UPDATE_FAILED = "UPDATE_FAILED"
MOVE_FAILED = "MOVE_FAILED"
DELETE_FAILED = "DELETE_FAILED"
INVALID_MESSAGE = "INVALID_MESSAGE"
UNAUTHENTICATED = "UNAUTHENTICATED"
UNEXPECTED_ERROR = "UNEXPECTED_ERROR"

FAILURE_MESSAGES = {
    JOIN_FAILED: "Failed to join story map",
    CREATE_FAILED: "Failed to create",
    UPDATE_FAILED: "Failed to update",
    MOVE_FAILED: "Failed to move story",
    DELETE_FAILED: "Failed to delete",
}

StoryStatus = Literal["NOT_READY", "READY", "IN_PROGRESS", "DONE", "BLOCKED"]


class EventPayload(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    map_id: UUID = Field(alias="mapId")


class JoinRoom(EventPayload):
    pass


class LeaveRoom(EventPayload):
    pass


class CreateStory(EventPayload):
    step_id: UUID
    release_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[StoryStatus] = None
    size: Optional[int] = Field(default=None, ge=0)


class UpdateStory(EventPayload):
    id: UUID
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[StoryStatus] = None
    size: Optional[int] = Field(default=None, ge=0)


class MoveStory(EventPayload):
    id: UUID
    to_step_id: Optional[UUID] = Field(default=None, alias="toStepId")
    to_release_id: Optional[UUID] = Field(default=None, alias="toReleaseId")
    # accepted from older clients, the position is always computed for the destination cell
    new_sort_order: Optional[int] = Field(default=None, alias="newSortOrder", ge=0)


class DeleteStory(EventPayload):
    id: UUID


class CreateComment(EventPayload):
    story_id: UUID = Field(alias="storyId")
    content: str = Field(min_length=1, max_length=10000)


class DeleteComment(EventPayload):
    id: UUID
    story_id: UUID = Field(alias="storyId")


def envelope(event: str, data: dict) -> dict:
    return {"event": event, "data": data}


def error_payload(message: str, code: str, context: dict | None = None) -> dict:
    return {"message": message, "code": code, "context": context or {}}
