from .errors import (
    CommentError,
    JourneyError,
    PersonaError,
    ReleaseError,
    StepError,
    StoryError,
    StoryLinkError,
    StoryMapError,
    TagError,
    WorkspaceError,
)
from .txn import transaction, translate_integrity_error
from .wire import from_wire, to_wire

__all__ = [
    "StoryMapError",
    "WorkspaceError",
    "JourneyError",
    "StepError",
    "ReleaseError",
    "StoryError",
    "StoryLinkError",
    "TagError",
    "PersonaError",
    "CommentError",
    "transaction",
    "translate_integrity_error",
    "to_wire",
    "from_wire",
]
