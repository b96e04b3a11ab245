"""Story comments.

The author name and avatar are copied from the caller's token when the
comment is written and are not refreshed from the profile afterwards.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, desc, select
from sqlalchemy.orm import Session

from db.models import Comment, Story
from .errors import CommentError
from .ownership import load_in_workspace
from .txn import transaction
from .wire import to_wire


def serialize_comment(comment: Comment, user_id: UUID) -> dict:
    return to_wire("comment", comment, is_current_user=comment.author_id == user_id)


def _check_content(content: str | None, **context) -> str:
    if content is None or not content.strip():
        raise CommentError.validation("content is required", **context)
    return content.strip()


def list_comments(session: Session, story_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> list[Comment]:
    story = load_in_workspace(session, Story, story_id, user_id=user_id, story_map_id=story_map_id, error=CommentError)
    stmt = select(Comment).where(Comment.story_id == story.id).order_by(desc(Comment.created_at))
    return list(session.execute(stmt).scalars().all())


def get_comment(session: Session, comment_id: UUID, *, user_id: UUID, story_map_id: UUID | None = None) -> Comment:
    return load_in_workspace(
        session, Comment, comment_id, user_id=user_id, story_map_id=story_map_id, error=CommentError
    )


def create_comment(
    session: Session,
    story_id: UUID,
    *,
    user_id: UUID,
    author: str,
    avatar_url: str | None,
    content: str,
    story_map_id: UUID | None = None,
) -> Comment:
    context = {"story_id": str(story_id)}
    content = _check_content(content, **context)
    with transaction(session, "comments.create", error=CommentError, context=context):
        story = load_in_workspace(
            session, Story, story_id, user_id=user_id, story_map_id=story_map_id, error=CommentError
        )
        comment = Comment(
            story_id=story.id,
            author_id=user_id,
            author=author,
            avatar_url=avatar_url,
            content=content,
        )
        session.add(comment)
    return comment


def _own_comment(session: Session, comment_id: UUID, *, user_id: UUID, story_map_id: UUID | None, action: str) -> Comment:
    comment = get_comment(session, comment_id, user_id=user_id, story_map_id=story_map_id)
    if comment.author_id != user_id:
        raise CommentError.permission(f"You can only {action} your own comments", comment_id=str(comment_id))
    return comment


def update_comment(
    session: Session, comment_id: UUID, *, user_id: UUID, content: str, story_map_id: UUID | None = None
) -> Comment:
    context = {"comment_id": str(comment_id)}
    content = _check_content(content, **context)
    with transaction(session, "comments.update", error=CommentError, context=context):
        comment = _own_comment(session, comment_id, user_id=user_id, story_map_id=story_map_id, action="update")
        comment.content = content
    return comment


def delete_comment(
    session: Session,
    comment_id: UUID,
    *,
    user_id: UUID,
    story_map_id: UUID | None = None,
    story_id: UUID | None = None,
) -> dict:
    context = {"comment_id": str(comment_id)}
    with transaction(session, "comments.delete", error=CommentError, context=context):
        comment = _own_comment(session, comment_id, user_id=user_id, story_map_id=story_map_id, action="delete")
        if story_id is not None and comment.story_id != story_id:
            raise CommentError.not_found(**context)
        removed_from = comment.story_id
        session.execute(delete(Comment).where(Comment.id == comment.id))
    return {"success": True, "id": comment_id, "story_id": removed_from}
