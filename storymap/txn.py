from __future__ import annotations

import logging
import re
import time
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import StoryMapError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
FOREIGN_KEY_VIOLATION = "23503"

_CONSTRAINT_FIELDS = {
    "uq_journeys_story_map_name": "name",
    "uq_tags_story_map_name": "name",
    "uq_personas_story_map_name": "name",
    "uq_story_links_source_target_type": "source_story_id, target_story_id, link_type",
    "releases_story_map_id_unassigned_key": "is_unassigned",
    "story_tags_pkey": "story_id, tag_id",
    "story_personas_pkey": "story_id, persona_id",
}

_SQLITE_UNIQUE = re.compile(r"UNIQUE constraint failed: (?P<columns>[\w., ]+)")


def _sqlstate(orig: BaseException | None) -> str | None:
    for attr in ("sqlstate", "pgcode"):
        value = getattr(orig, attr, None)
        if value:
            return str(value)
    return None


def _unique_field(orig: BaseException | None) -> str:
    diag = getattr(orig, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if constraint:
        return _CONSTRAINT_FIELDS.get(constraint, constraint)
    match = _SQLITE_UNIQUE.search(str(orig))
    if match is None:
        return "value"
    columns = [part.strip().split(".")[-1] for part in match.group("columns").split(",")]
    scoped = [column for column in columns if column != "story_map_id"]
    return ", ".join(scoped or columns)


def translate_integrity_error(
    exc: IntegrityError,
    error: type[StoryMapError] = StoryMapError,
    context: dict[str, Any] | None = None,
) -> StoryMapError:
    context = dict(context or {})
    orig = exc.orig
    state = _sqlstate(orig)
    text = str(orig)
    if state == UNIQUE_VIOLATION or "UNIQUE constraint failed" in text:
        field = _unique_field(orig)
        return error.conflict(f"A record with this {field} already exists", cause=exc, field=field, **context)
    if state == FOREIGN_KEY_VIOLATION or "FOREIGN KEY constraint failed" in text:
        err = error.not_found("Related record not found", **context)
        err.cause = exc
        return err
    return error.unexpected("Operation failed unexpectedly", cause=exc, **context)


@contextmanager
def transaction(
    session: Session,
    operation: str,
    *,
    error: type[StoryMapError] = StoryMapError,
    context: dict[str, Any] | None = None,
) -> Iterator[Session]:
    """Run the block as one unit of work and commit it.

    Any exception rolls everything back. Domain errors pass through as raised,
    constraint violations become ``error`` conflicts or not-found errors and
    every other storage failure surfaces as "Transaction failed".
    """
    context = dict(context or {})
    started = time.perf_counter()
    logger.debug("starting %s %s", operation, context)
    try:
        yield session
        session.commit()
    except StoryMapError as exc:
        session.rollback()
        logger.warning("%s rolled back: %s (%s) %s", operation, exc.message, exc.kind, context)
        raise
    except IntegrityError as exc:
        session.rollback()
        translated = translate_integrity_error(exc, error, context)
        logger.warning("%s rejected by constraint: %s %s", operation, translated.message, context)
        raise translated from exc
    except SQLAlchemyError as exc:
        session.rollback()
        logger.error("%s failed in storage: %s %s", operation, exc, context)
        raise error.unexpected("Transaction failed", cause=exc, operation=operation, **context) from exc
    except Exception:
        session.rollback()
        logger.exception("%s failed %s", operation, context)
        raise
    logger.info("%s completed in %.1fms", operation, (time.perf_counter() - started) * 1000)
