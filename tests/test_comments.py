from __future__ import annotations

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest

from db.models import Comment
from storymap import comments, stories
from storymap.errors import CommentError


@pytest.fixture
def story(session, user, board):
    return stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Pay by card"
    )


def test_comment_keeps_author_snapshot(session, user, story) -> None:
    comment = comments.create_comment(
        session,
        story.id,
        user_id=user.id,
        author=user.display_name,
        avatar_url=user.avatar_url,
        content="  Needs a spike  ",
    )

    payload = comments.serialize_comment(comment, user.id)
    assert payload["author"] == "Olivia Owner"
    assert payload["author_id"] == user.id
    assert payload["content"] == "Needs a spike"
    assert payload["is_current_user"] is True
    assert comments.serialize_comment(comment, uuid4())["is_current_user"] is False


def test_comments_are_listed_newest_first(session, user, story) -> None:
    base = datetime(2026, 3, 1, tzinfo=UTC)
    for offset, content in enumerate(["first", "second", "third"]):
        session.add(
            Comment(
                story_id=story.id,
                author_id=user.id,
                author="Olivia Owner",
                content=content,
                created_at=base + timedelta(minutes=offset),
            )
        )
    session.commit()

    rows = comments.list_comments(session, story.id, user_id=user.id)

    assert [row.content for row in rows] == ["third", "second", "first"]


def test_only_the_author_can_edit_or_delete(session, user, story) -> None:
    foreign = Comment(story_id=story.id, author_id=uuid4(), author="Guest", content="hello")
    session.add(foreign)
    session.commit()

    with pytest.raises(CommentError) as update_exc:
        comments.update_comment(session, foreign.id, user_id=user.id, content="edited")
    with pytest.raises(CommentError) as delete_exc:
        comments.delete_comment(session, foreign.id, user_id=user.id)

    assert update_exc.value.kind == "permission"
    assert delete_exc.value.kind == "permission"
    assert session.get(Comment, foreign.id).content == "hello"


def test_delete_checks_the_story_it_was_addressed_to(session, user, board, story) -> None:
    other = stories.create_story(
        session, user_id=user.id, step_id=board.step.id, release_id=board.unassigned.id, title="Other"
    )
    comment = comments.create_comment(
        session, story.id, user_id=user.id, author="Olivia Owner", avatar_url=None, content="note"
    )
    comment_id = comment.id

    with pytest.raises(CommentError) as exc:
        comments.delete_comment(session, comment_id, user_id=user.id, story_id=other.id)
    result = comments.delete_comment(session, comment_id, user_id=user.id, story_id=story.id)

    assert exc.value.kind == "not_found"
    assert result == {"success": True, "id": comment_id, "story_id": story.id}
    assert session.query(Comment).count() == 0


def test_blank_comment_is_rejected(session, user, story) -> None:
    with pytest.raises(CommentError) as exc:
        comments.create_comment(session, story.id, user_id=user.id, author="Olivia", avatar_url=None, content="   ")

    assert exc.value.kind == "validation"
