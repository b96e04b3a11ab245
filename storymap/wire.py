"""Boundary mapping between JSON payloads and ORM rows.

Each entity has a fixed field table of ``(wire_name, attribute, writable,
nullable)``. ``to_wire`` renders a row, ``from_wire`` turns a partial payload
into attribute assignments. Keys absent from the payload never reach the row,
and an explicit null is only kept for nullable columns.
"""

from __future__ import annotations

from typing import Any, NamedTuple


class Field(NamedTuple):
    wire: str
    attr: str
    writable: bool = False
    nullable: bool = False


_AUDIT = (
    Field("created_by", "created_by"),
    Field("updated_by", "updated_by"),
    Field("created_at", "created_at"),
    Field("updated_at", "updated_at"),
)

FIELDS: dict[str, tuple[Field, ...]] = {
    "story_map": (
        Field("id", "id"),
        Field("name", "name", writable=True),
        Field("description", "description", writable=True),
        *_AUDIT,
    ),
    "journey": (
        Field("id", "id"),
        Field("story_map_id", "story_map_id"),
        Field("name", "name", writable=True),
        Field("description", "description", writable=True),
        Field("color", "color", writable=True),
        Field("sort_order", "sort_order"),
        *_AUDIT,
    ),
    "step": (
        Field("id", "id"),
        Field("journey_id", "journey_id"),
        Field("name", "name", writable=True),
        Field("description", "description", writable=True),
        Field("sort_order", "sort_order"),
        *_AUDIT,
    ),
    "release": (
        Field("id", "id"),
        Field("story_map_id", "story_map_id"),
        Field("name", "name", writable=True),
        Field("description", "description", writable=True),
        Field("start_date", "start_date", writable=True, nullable=True),
        Field("due_date", "due_date", writable=True, nullable=True),
        Field("shipped", "shipped", writable=True),
        Field("is_unassigned", "is_unassigned"),
        Field("sort_order", "sort_order"),
        *_AUDIT,
    ),
    "story": (
        Field("id", "id"),
        Field("step_id", "step_id", writable=True),
        Field("release_id", "release_id", writable=True),
        Field("title", "title", writable=True),
        Field("description", "description", writable=True),
        Field("status", "status", writable=True),
        Field("size", "size", writable=True, nullable=True),
        Field("sort_order", "sort_order", writable=True),
        Field("label_id", "label_id", writable=True, nullable=True),
        Field("label_name", "label_name", writable=True),
        Field("label_color", "label_color", writable=True),
        *_AUDIT,
    ),
    "story_link": (
        Field("id", "id"),
        Field("source_story_id", "source_story_id"),
        Field("target_story_id", "target_story_id"),
        Field("link_type", "link_type"),
        Field("created_at", "created_at"),
        Field("updated_at", "updated_at"),
    ),
    "tag": (
        Field("id", "id"),
        Field("story_map_id", "story_map_id"),
        Field("name", "name", writable=True),
        Field("color", "color", writable=True),
        Field("created_at", "created_at"),
    ),
    "persona": (
        Field("id", "id"),
        Field("story_map_id", "story_map_id"),
        Field("name", "name", writable=True),
        Field("description", "description", writable=True),
        Field("avatar_url", "avatar_url", writable=True, nullable=True),
        Field("created_at", "created_at"),
    ),
    "comment": (
        Field("id", "id"),
        Field("story_id", "story_id"),
        Field("release_id", "release_id"),
        Field("author_id", "author_id"),
        Field("author", "author"),
        Field("avatar_url", "avatar_url"),
        Field("content", "content", writable=True),
        Field("created_at", "created_at"),
        Field("updated_at", "updated_at"),
    ),
}


def to_wire(entity: str, row, **extra: Any) -> dict[str, Any]:
    payload = {field.wire: getattr(row, field.attr) for field in FIELDS[entity]}
    payload.update(extra)
    return payload


def from_wire(entity: str, payload: dict[str, Any]) -> dict[str, Any]:
    changes: dict[str, Any] = {}
    for field in FIELDS[entity]:
        if not field.writable or field.wire not in payload:
            continue
        value = payload[field.wire]
        if value is None and not field.nullable:
            continue
        changes[field.attr] = value
    return changes


def apply_changes(row, changes: dict[str, Any]) -> list[str]:
    """Assign ``changes`` onto ``row`` and return the attributes that actually changed."""
    touched = []
    for attr, value in changes.items():
        if getattr(row, attr) != value:
            setattr(row, attr, value)
            touched.append(attr)
    return touched
