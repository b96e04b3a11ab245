from __future__ import annotations

from typing import Any

VALIDATION = "validation"
NOT_FOUND = "not_found"
OWNERSHIP = "ownership"
PERMISSION = "permission"
CONFLICT = "conflict"
INVARIANT = "invariant"
UNEXPECTED = "unexpected"

KINDS = (VALIDATION, NOT_FOUND, OWNERSHIP, PERMISSION, CONFLICT, INVARIANT, UNEXPECTED)


class StoryMapError(Exception):
    """Domain failure raised by the story map services.

    ``kind`` is what the transport layer maps to a status or socket error
    code, ``context`` carries the ids involved and only ever goes to the log.
    """

    entity = "record"

    def __init__(
        self,
        message: str,
        *,
        kind: str = UNEXPECTED,
        cause: BaseException | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        if kind not in KINDS:
            raise ValueError(f"unknown error kind: {kind}")
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.cause = cause
        self.context = dict(context or {})

    def __str__(self) -> str:
        return self.message

    @classmethod
    def validation(cls, message: str, **context: Any) -> "StoryMapError":
        return cls(message, kind=VALIDATION, context=context)

    @classmethod
    def not_found(cls, message: str | None = None, **context: Any) -> "StoryMapError":
        return cls(message or f"{cls.entity.capitalize()} not found", kind=NOT_FOUND, context=context)

    @classmethod
    def ownership(cls, message: str, **context: Any) -> "StoryMapError":
        return cls(message, kind=OWNERSHIP, context=context)

    @classmethod
    def permission(cls, message: str, **context: Any) -> "StoryMapError":
        return cls(message, kind=PERMISSION, context=context)

    @classmethod
    def conflict(cls, message: str, *, cause: BaseException | None = None, **context: Any) -> "StoryMapError":
        return cls(message, kind=CONFLICT, cause=cause, context=context)

    @classmethod
    def invariant(cls, message: str, **context: Any) -> "StoryMapError":
        return cls(message, kind=INVARIANT, context=context)

    @classmethod
    def unexpected(cls, message: str, *, cause: BaseException | None = None, **context: Any) -> "StoryMapError":
        return cls(message, kind=UNEXPECTED, cause=cause, context=context)


class WorkspaceError(StoryMapError):
    entity = "story map"


class JourneyError(StoryMapError):
    entity = "journey"


class StepError(StoryMapError):
    entity = "step"


class ReleaseError(StoryMapError):
    entity = "release"


class StoryError(StoryMapError):
    entity = "story"


class StoryLinkError(StoryMapError):
    entity = "story link"


class TagError(StoryMapError):
    entity = "tag"


class PersonaError(StoryMapError):
    entity = "persona"


class CommentError(StoryMapError):
    entity = "comment"
