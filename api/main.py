from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from os import getenv
from typing import List, Literal, Optional
from uuid import UUID, uuid4

import jwt
from fastapi import Depends, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text

from api.auth import Identity, bearer_token, identity_from_token, require_token, require_user
from api import auth as identity_provider
from collab import CollaborationGateway
from collab.events import UNAUTHENTICATED, envelope, error_payload
from db.session import SessionLocal
from storymap import comments, journeys, links, maps, personas, releases, steps, stories, tags
from storymap.errors import (
    CONFLICT,
    INVARIANT,
    NOT_FOUND,
    OWNERSHIP,
    PERMISSION,
    UNEXPECTED,
    VALIDATION,
    StoryMapError,
)
from storymap.wire import from_wire, to_wire

logging.basicConfig(
    level=getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Story Map API", version="0.1.0")


def _cors_origins() -> list[str]:
    raw = getenv("FRONTEND_URL", "*")
    return [origin.strip() for origin in raw.split(",") if origin.strip()] or ["*"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

gateway = CollaborationGateway(session_factory=lambda: SessionLocal())

STATUS_BY_KIND = {
    VALIDATION: 400,
    INVARIANT: 400,
    NOT_FOUND: 404,
    OWNERSHIP: 404,
    PERMISSION: 403,
    CONFLICT: 409,
    UNEXPECTED: 500,
}


def _encode(obj) -> dict:
    return jsonable_encoder(obj)


def _error_body(status_code: int, path: str, message: str, kind: str) -> dict:
    return {
        "status_code": status_code,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "path": path,
        "message": message,
        "kind": kind,
    }


@app.exception_handler(StoryMapError)
async def story_map_error_handler(request: Request, exc: StoryMapError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(
            "%s %s failed: %s %s",
            request.method,
            request.url.path,
            exc.message,
            exc.context,
            exc_info=exc.cause,
        )
    else:
        logger.warning(
            "%s %s rejected (%s): %s %s cause=%r",
            request.method,
            request.url.path,
            exc.kind,
            exc.message,
            exc.context,
            exc.cause,
        )
    return JSONResponse(
        status_code=status_code,
        content=_error_body(status_code, request.url.path, exc.message, exc.kind),
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("%s %s crashed", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=_error_body(500, request.url.path, "Internal server error", UNEXPECTED),
    )


StoryStatus = Literal["NOT_READY", "READY", "IN_PROGRESS", "DONE", "BLOCKED"]
LinkType = Literal["LINKED_TO", "BLOCKS", "IS_BLOCKED_BY", "DUPLICATES", "IS_DUPLICATED_BY"]


class CredentialsRequest(BaseModel):
    email: str = Field(min_length=3, max_length=320)
    password: str = Field(min_length=6, max_length=200)


class StoryMapCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None


class StoryMapUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


class JourneyCreateRequest(BaseModel):
    story_map_id: UUID
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=32)


class JourneyUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    color: Optional[str] = Field(default=None, max_length=32)


class StepCreateRequest(BaseModel):
    journey_id: UUID
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    story_map_id: Optional[UUID] = None


class StepUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None


class ReleaseCreateRequest(BaseModel):
    story_map_id: UUID
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    shipped: bool = False


class ReleaseUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    shipped: Optional[bool] = None


class StoryCreateRequest(BaseModel):
    step_id: UUID
    release_id: UUID
    title: str = Field(min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[StoryStatus] = None
    size: Optional[int] = Field(default=None, ge=0)
    label_id: Optional[str] = None
    label_name: Optional[str] = None
    label_color: Optional[str] = None
    story_map_id: Optional[UUID] = None


class StoryUpdateRequest(BaseModel):
    step_id: Optional[UUID] = None
    release_id: Optional[UUID] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=500)
    description: Optional[str] = None
    status: Optional[StoryStatus] = None
    size: Optional[int] = Field(default=None, ge=0)
    sort_order: Optional[int] = None
    label_id: Optional[str] = None
    label_name: Optional[str] = None
    label_color: Optional[str] = None


class StoryMoveRequest(BaseModel):
    step_id: Optional[UUID] = None
    release_id: Optional[UUID] = None


class ReorderRequest(BaseModel):
    new_sort_order: int


class StoryTagRequest(BaseModel):
    tag_id: UUID


class StoryPersonaRequest(BaseModel):
    persona_id: UUID


class StoryLinkCreateRequest(BaseModel):
    source_story_id: UUID
    target_story_id: UUID
    link_type: LinkType = "LINKED_TO"


class TagCreateRequest(BaseModel):
    story_map_id: UUID
    name: str = Field(min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=32)


class TagUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    color: Optional[str] = Field(default=None, max_length=32)


class PersonaCreateRequest(BaseModel):
    story_map_id: UUID
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    avatar_url: Optional[str] = None


class PersonaUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = None
    avatar_url: Optional[str] = None


class CommentRequest(BaseModel):
    content: str = Field(min_length=1, max_length=10000)


def _story_detail(session, story, user_id: UUID) -> dict:
    payload = to_wire("story", story)
    payload["tags"] = [to_wire("tag", tag) for tag in stories.list_story_tags(session, story.id, user_id=user_id)]
    payload["personas"] = [
        to_wire("persona", persona) for persona in stories.list_story_personas(session, story.id, user_id=user_id)
    ]
    payload["dependencies"] = links.list_dependencies(session, story.id, user_id=user_id)["outgoing"]
    return payload


@app.get("/health")
def health() -> dict:
    session = SessionLocal()
    try:
        session.execute(text("select 1"))
        return {"status": "ok", "db": "ok", "connections": len(gateway.registry)}
    except Exception as exc:
        logger.error("health check database failure: %s", exc)
        return {"status": "degraded", "db": "down", "connections": len(gateway.registry)}
    finally:
        session.close()


# auth


@app.post("/auth/signup", status_code=201)
def auth_signup(req: CredentialsRequest) -> dict:
    return identity_provider.signup(req.email, req.password)


@app.post("/auth/login")
def auth_login(req: CredentialsRequest) -> dict:
    return identity_provider.login(req.email, req.password)


@app.post("/auth/logout")
def auth_logout(token: str = Depends(require_token)) -> dict:
    return identity_provider.logout(token)


@app.get("/auth/profile")
def auth_profile(user: Identity = Depends(require_user)) -> dict:
    return _encode(
        {
            "id": user.id,
            "email": user.email,
            "name": user.display_name,
            "avatar_url": user.avatar_url,
            "user_metadata": user.user_metadata,
        }
    )


# story maps


@app.post("/story-maps", status_code=201)
def create_story_map(req: StoryMapCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        story_map = maps.create_story_map(session, user_id=user.id, name=req.name, description=req.description)
        return _encode(to_wire("story_map", story_map))
    finally:
        session.close()


@app.get("/story-maps")
def list_story_maps(user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = maps.list_story_maps(session, user_id=user.id)
        return _encode([to_wire("story_map", row) for row in rows])
    finally:
        session.close()


@app.get("/story-maps/{story_map_id}")
def get_story_map(story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        story_map = maps.get_story_map(session, story_map_id, user_id=user.id)
        return _encode(to_wire("story_map", story_map))
    finally:
        session.close()


@app.patch("/story-maps/{story_map_id}")
def update_story_map(
    story_map_id: UUID,
    req: StoryMapUpdateRequest,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        changes = from_wire("story_map", req.model_dump(exclude_unset=True))
        story_map = maps.update_story_map(session, story_map_id, user_id=user.id, changes=changes)
        return _encode(to_wire("story_map", story_map))
    finally:
        session.close()


@app.delete("/story-maps/{story_map_id}")
def delete_story_map(story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(maps.delete_story_map(session, story_map_id, user_id=user.id))
    finally:
        session.close()


# journeys


@app.post("/journeys", status_code=201)
def create_journey(req: JourneyCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        journey = journeys.create_journey(
            session,
            user_id=user.id,
            story_map_id=req.story_map_id,
            name=req.name,
            description=req.description,
            color=req.color,
        )
        return _encode(to_wire("journey", journey))
    finally:
        session.close()


@app.get("/journeys")
def list_journeys(story_map_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = journeys.list_journeys(session, user_id=user.id, story_map_id=story_map_id)
        return _encode([to_wire("journey", row) for row in rows])
    finally:
        session.close()


@app.get("/journeys/{journey_id}")
def get_journey(
    journey_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        journey = journeys.get_journey(session, journey_id, user_id=user.id, story_map_id=story_map_id)
        return _encode(to_wire("journey", journey))
    finally:
        session.close()


@app.get("/journeys/{journey_id}/steps")
def list_journey_steps(journey_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = steps.list_steps(session, user_id=user.id, journey_id=journey_id)
        return _encode([to_wire("step", row) for row in rows])
    finally:
        session.close()


@app.patch("/journeys/{journey_id}")
def update_journey(
    journey_id: UUID,
    req: JourneyUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        journey = journeys.update_journey(
            session,
            journey_id,
            user_id=user.id,
            changes=from_wire("journey", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("journey", journey))
    finally:
        session.close()


@app.delete("/journeys/{journey_id}")
def delete_journey(journey_id: UUID, story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(journeys.delete_journey(session, journey_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


@app.post("/journeys/{journey_id}/reorder")
def reorder_journey(
    journey_id: UUID,
    req: ReorderRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        journey = journeys.reorder_journey(
            session, journey_id, req.new_sort_order, user_id=user.id, story_map_id=story_map_id
        )
        return _encode(to_wire("journey", journey))
    finally:
        session.close()


# steps


@app.post("/steps", status_code=201)
def create_step(req: StepCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        step = steps.create_step(
            session,
            user_id=user.id,
            journey_id=req.journey_id,
            name=req.name,
            description=req.description,
            story_map_id=req.story_map_id,
        )
        return _encode(to_wire("step", step))
    finally:
        session.close()


@app.get("/steps")
def list_steps(
    journey_id: Optional[UUID] = None,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> List[dict]:
    session = SessionLocal()
    try:
        rows = steps.list_steps(session, user_id=user.id, journey_id=journey_id, story_map_id=story_map_id)
        return _encode([to_wire("step", row) for row in rows])
    finally:
        session.close()


@app.get("/steps/{step_id}")
def get_step(step_id: UUID, story_map_id: Optional[UUID] = None, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        step = steps.get_step(session, step_id, user_id=user.id, story_map_id=story_map_id)
        return _encode(to_wire("step", step))
    finally:
        session.close()


@app.patch("/steps/{step_id}")
def update_step(
    step_id: UUID,
    req: StepUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        step = steps.update_step(
            session,
            step_id,
            user_id=user.id,
            changes=from_wire("step", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("step", step))
    finally:
        session.close()


@app.delete("/steps/{step_id}")
def delete_step(step_id: UUID, story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(steps.delete_step(session, step_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


@app.post("/steps/{step_id}/reorder")
def reorder_step(
    step_id: UUID,
    req: ReorderRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        step = steps.reorder_step(session, step_id, req.new_sort_order, user_id=user.id, story_map_id=story_map_id)
        return _encode(to_wire("step", step))
    finally:
        session.close()


# releases


@app.post("/releases", status_code=201)
def create_release(req: ReleaseCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        release = releases.create_release(
            session,
            user_id=user.id,
            story_map_id=req.story_map_id,
            name=req.name,
            description=req.description,
            start_date=req.start_date,
            due_date=req.due_date,
            shipped=req.shipped,
        )
        return _encode(to_wire("release", release))
    finally:
        session.close()


@app.get("/releases")
def list_releases(story_map_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = releases.list_releases(session, user_id=user.id, story_map_id=story_map_id)
        return _encode([to_wire("release", row) for row in rows])
    finally:
        session.close()


@app.get("/releases/{release_id}")
def get_release(
    release_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        release = releases.get_release(session, release_id, user_id=user.id, story_map_id=story_map_id)
        return _encode(to_wire("release", release))
    finally:
        session.close()


@app.get("/releases/{release_id}/stories")
def list_release_stories(
    release_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> List[dict]:
    session = SessionLocal()
    try:
        rows = releases.list_release_stories(session, release_id, user_id=user.id, story_map_id=story_map_id)
        return _encode([to_wire("story", row) for row in rows])
    finally:
        session.close()


@app.patch("/releases/{release_id}")
def update_release(
    release_id: UUID,
    req: ReleaseUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        release = releases.update_release(
            session,
            release_id,
            user_id=user.id,
            changes=from_wire("release", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("release", release))
    finally:
        session.close()


@app.delete("/releases/{release_id}")
def delete_release(release_id: UUID, story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(releases.delete_release(session, release_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


@app.post("/releases/{release_id}/reorder")
def reorder_release(
    release_id: UUID,
    req: ReorderRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        release = releases.reorder_release(
            session, release_id, req.new_sort_order, user_id=user.id, story_map_id=story_map_id
        )
        return _encode(to_wire("release", release))
    finally:
        session.close()


# stories


@app.post("/stories", status_code=201)
def create_story(req: StoryCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        story = stories.create_story(
            session,
            user_id=user.id,
            step_id=req.step_id,
            release_id=req.release_id,
            title=req.title,
            description=req.description,
            status=req.status,
            size=req.size,
            label_id=req.label_id,
            label_name=req.label_name,
            label_color=req.label_color,
            story_map_id=req.story_map_id,
        )
        return _encode(to_wire("story", story))
    finally:
        session.close()


@app.get("/stories")
def list_stories(
    story_map_id: Optional[UUID] = None,
    step_id: Optional[UUID] = None,
    release_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> List[dict]:
    session = SessionLocal()
    try:
        rows = stories.list_stories(
            session,
            user_id=user.id,
            story_map_id=story_map_id,
            step_id=step_id,
            release_id=release_id,
        )
        return _encode([to_wire("story", row) for row in rows])
    finally:
        session.close()


@app.get("/stories/{story_id}")
def get_story(story_id: UUID, story_map_id: Optional[UUID] = None, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        story = stories.get_story(session, story_id, user_id=user.id, story_map_id=story_map_id)
        return _encode(_story_detail(session, story, user.id))
    finally:
        session.close()


@app.patch("/stories/{story_id}")
def update_story(
    story_id: UUID,
    req: StoryUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        story = stories.update_story(
            session,
            story_id,
            user_id=user.id,
            changes=from_wire("story", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("story", story))
    finally:
        session.close()


@app.post("/stories/{story_id}/move")
def move_story(
    story_id: UUID,
    req: StoryMoveRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        story = stories.move_story(
            session,
            story_id,
            user_id=user.id,
            step_id=req.step_id,
            release_id=req.release_id,
            story_map_id=story_map_id,
        )
        return _encode(to_wire("story", story))
    finally:
        session.close()


@app.delete("/stories/{story_id}")
def delete_story(
    story_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        return _encode(stories.delete_story(session, story_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


@app.get("/stories/{story_id}/tags")
def list_story_tags(story_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        return _encode([to_wire("tag", tag) for tag in stories.list_story_tags(session, story_id, user_id=user.id)])
    finally:
        session.close()


@app.post("/stories/{story_id}/tags", status_code=201)
def add_story_tag(
    story_id: UUID,
    req: StoryTagRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        tag = stories.add_story_tag(session, story_id, req.tag_id, user_id=user.id, story_map_id=story_map_id)
        return _encode({"story_id": story_id, "tag": to_wire("tag", tag)})
    finally:
        session.close()


@app.delete("/stories/{story_id}/tags/{tag_id}")
def remove_story_tag(
    story_id: UUID,
    tag_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        return stories.remove_story_tag(session, story_id, tag_id, user_id=user.id, story_map_id=story_map_id)
    finally:
        session.close()


@app.get("/stories/{story_id}/personas")
def list_story_personas(story_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = stories.list_story_personas(session, story_id, user_id=user.id)
        return _encode([to_wire("persona", row) for row in rows])
    finally:
        session.close()


@app.post("/stories/{story_id}/personas", status_code=201)
def add_story_persona(
    story_id: UUID,
    req: StoryPersonaRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        persona = stories.add_story_persona(
            session, story_id, req.persona_id, user_id=user.id, story_map_id=story_map_id
        )
        return _encode({"story_id": story_id, "persona": to_wire("persona", persona)})
    finally:
        session.close()


@app.delete("/stories/{story_id}/personas/{persona_id}")
def remove_story_persona(
    story_id: UUID,
    persona_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        return stories.remove_story_persona(
            session, story_id, persona_id, user_id=user.id, story_map_id=story_map_id
        )
    finally:
        session.close()


@app.get("/stories/{story_id}/dependencies")
def get_story_dependencies(story_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(links.list_dependencies(session, story_id, user_id=user.id))
    finally:
        session.close()


@app.get("/stories/{story_id}/comments")
def list_story_comments(story_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = comments.list_comments(session, story_id, user_id=user.id)
        return _encode([comments.serialize_comment(row, user.id) for row in rows])
    finally:
        session.close()


@app.post("/stories/{story_id}/comments", status_code=201)
def create_story_comment(story_id: UUID, req: CommentRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        comment = comments.create_comment(
            session,
            story_id,
            user_id=user.id,
            author=user.display_name,
            avatar_url=user.avatar_url,
            content=req.content,
        )
        return _encode(comments.serialize_comment(comment, user.id))
    finally:
        session.close()


# comments


@app.get("/comments/{comment_id}")
def get_comment(comment_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        comment = comments.get_comment(session, comment_id, user_id=user.id)
        return _encode(comments.serialize_comment(comment, user.id))
    finally:
        session.close()


@app.patch("/comments/{comment_id}")
def update_comment(comment_id: UUID, req: CommentRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        comment = comments.update_comment(session, comment_id, user_id=user.id, content=req.content)
        return _encode(comments.serialize_comment(comment, user.id))
    finally:
        session.close()


@app.delete("/comments/{comment_id}")
def delete_comment(comment_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(comments.delete_comment(session, comment_id, user_id=user.id))
    finally:
        session.close()


# story links


@app.post("/story-links", status_code=201)
def create_story_link(
    req: StoryLinkCreateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        link = links.create_link(
            session,
            user_id=user.id,
            source_story_id=req.source_story_id,
            target_story_id=req.target_story_id,
            link_type=req.link_type,
            story_map_id=story_map_id,
        )
        return _encode(to_wire("story_link", link))
    finally:
        session.close()


@app.delete("/story-links")
def delete_story_links_between(
    source_story_id: UUID,
    target_story_id: UUID,
    link_type: Optional[LinkType] = None,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        return links.delete_links_between(
            session,
            user_id=user.id,
            source_story_id=source_story_id,
            target_story_id=target_story_id,
            link_type=link_type,
            story_map_id=story_map_id,
        )
    finally:
        session.close()


@app.delete("/story-links/{link_id}")
def delete_story_link(
    link_id: UUID,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        return links.delete_link(session, link_id, user_id=user.id, story_map_id=story_map_id)
    finally:
        session.close()


# tags


@app.post("/tags", status_code=201)
def create_tag(req: TagCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        tag = tags.create_tag(session, user_id=user.id, story_map_id=req.story_map_id, name=req.name, color=req.color)
        return _encode(to_wire("tag", tag))
    finally:
        session.close()


@app.get("/tags")
def list_tags(story_map_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        return _encode([to_wire("tag", row) for row in tags.list_tags(session, user_id=user.id, story_map_id=story_map_id)])
    finally:
        session.close()


@app.get("/tags/{tag_id}")
def get_tag(tag_id: UUID, story_map_id: Optional[UUID] = None, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(to_wire("tag", tags.get_tag(session, tag_id, user_id=user.id, story_map_id=story_map_id)))
    finally:
        session.close()


@app.patch("/tags/{tag_id}")
def update_tag(
    tag_id: UUID,
    req: TagUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        tag = tags.update_tag(
            session,
            tag_id,
            user_id=user.id,
            changes=from_wire("tag", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("tag", tag))
    finally:
        session.close()


@app.delete("/tags/{tag_id}")
def delete_tag(tag_id: UUID, story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(tags.delete_tag(session, tag_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


# personas


@app.post("/personas", status_code=201)
def create_persona(req: PersonaCreateRequest, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        persona = personas.create_persona(
            session,
            user_id=user.id,
            story_map_id=req.story_map_id,
            name=req.name,
            description=req.description,
            avatar_url=req.avatar_url,
        )
        return _encode(to_wire("persona", persona))
    finally:
        session.close()


@app.get("/personas")
def list_personas(story_map_id: UUID, user: Identity = Depends(require_user)) -> List[dict]:
    session = SessionLocal()
    try:
        rows = personas.list_personas(session, user_id=user.id, story_map_id=story_map_id)
        return _encode([to_wire("persona", row) for row in rows])
    finally:
        session.close()


@app.get("/personas/{persona_id}")
def get_persona(persona_id: UUID, story_map_id: Optional[UUID] = None, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        persona = personas.get_persona(session, persona_id, user_id=user.id, story_map_id=story_map_id)
        return _encode(to_wire("persona", persona))
    finally:
        session.close()


@app.patch("/personas/{persona_id}")
def update_persona(
    persona_id: UUID,
    req: PersonaUpdateRequest,
    story_map_id: Optional[UUID] = None,
    user: Identity = Depends(require_user),
) -> dict:
    session = SessionLocal()
    try:
        persona = personas.update_persona(
            session,
            persona_id,
            user_id=user.id,
            changes=from_wire("persona", req.model_dump(exclude_unset=True)),
            story_map_id=story_map_id,
        )
        return _encode(to_wire("persona", persona))
    finally:
        session.close()


@app.delete("/personas/{persona_id}")
def delete_persona(persona_id: UUID, story_map_id: UUID, user: Identity = Depends(require_user)) -> dict:
    session = SessionLocal()
    try:
        return _encode(personas.delete_persona(session, persona_id, user_id=user.id, story_map_id=story_map_id))
    finally:
        session.close()


# collaboration socket


@app.websocket("/collaboration")
async def collaboration_socket(websocket: WebSocket, token: Optional[str] = Query(default=None)) -> None:
    await websocket.accept()
    raw_token = token or bearer_token(websocket.headers.get("authorization"))
    try:
        if not raw_token:
            raise jwt.InvalidTokenError("Missing bearer token")
        identity = identity_from_token(raw_token)
    except (jwt.PyJWTError, HTTPException) as exc:
        logger.info("collaboration handshake rejected: %s", exc)
        await websocket.send_json(
            envelope("error", error_payload("Authentication failed", UNAUTHENTICATED, {"reason": str(exc)}))
        )
        await websocket.close(code=4401)
        return

    connection_id = uuid4().hex
    await gateway.connect(connection_id, identity, websocket.send_json)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                logger.debug("collaboration socket %s closed by client", connection_id)
                break
            await gateway.handle_text(connection_id, message.get("text"))
    except WebSocketDisconnect:
        logger.debug("collaboration socket %s closed by client", connection_id)
    finally:
        await gateway.disconnect(connection_id)
