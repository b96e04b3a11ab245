from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from db.models import Persona
from .errors import PersonaError
from .ownership import load_in_workspace, require_story_map
from .txn import transaction
from .wire import apply_changes


def _ensure_unique_name(session: Session, story_map_id: UUID, name: str, *, exclude_id: UUID | None = None) -> None:
    stmt = select(Persona.id).where(Persona.story_map_id == story_map_id, Persona.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Persona.id != exclude_id)
    if session.execute(stmt).first() is not None:
        raise PersonaError.conflict(f"Persona with name '{name}' already exists", story_map_id=str(story_map_id))


def list_personas(session: Session, *, user_id: UUID, story_map_id: UUID) -> list[Persona]:
    require_story_map(session, story_map_id, user_id, error=PersonaError)
    stmt = select(Persona).where(Persona.story_map_id == story_map_id).order_by(Persona.name)
    return list(session.execute(stmt).scalars())


def get_persona(session: Session, persona_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Persona:
    return load_in_workspace(
        session, Persona, persona_id, user_id=user_id, story_map_id=story_map_id, error=PersonaError
    )


def create_persona(
    session: Session,
    *,
    user_id: UUID,
    story_map_id: UUID,
    name: str,
    description: str | None = None,
    avatar_url: str | None = None,
) -> Persona:
    if not name or not name.strip():
        raise PersonaError.validation("name is required")
    name = name.strip()
    with transaction(session, "personas.create", error=PersonaError, context={"story_map_id": str(story_map_id)}):
        require_story_map(session, story_map_id, user_id, error=PersonaError)
        _ensure_unique_name(session, story_map_id, name)
        persona = Persona(story_map_id=story_map_id, name=name, description=description or "", avatar_url=avatar_url)
        session.add(persona)
    return persona


def update_persona(
    session: Session, persona_id: UUID, *, user_id: UUID, changes: dict[str, Any], story_map_id: UUID | None = None
) -> Persona:
    with transaction(session, "personas.update", error=PersonaError, context={"persona_id": str(persona_id)}):
        persona = get_persona(session, persona_id, user_id=user_id, story_map_id=story_map_id)
        if "name" in changes:
            changes = {**changes, "name": str(changes["name"]).strip()}
            if not changes["name"]:
                raise PersonaError.validation("name cannot be empty", persona_id=str(persona_id))
            _ensure_unique_name(session, persona.story_map_id, changes["name"], exclude_id=persona.id)
        apply_changes(persona, changes)
    return persona


def delete_persona(session: Session, persona_id: UUID, *, user_id: UUID, story_map_id: UUID) -> dict:
    context = {"persona_id": str(persona_id), "story_map_id": str(story_map_id)}
    with transaction(session, "personas.delete", error=PersonaError, context=context):
        persona = get_persona(session, persona_id, user_id=user_id, story_map_id=story_map_id)
        session.execute(delete(Persona).where(Persona.id == persona.id))
    return {"success": True, "id": persona_id}
