from __future__ import annotations

from uuid import UUID, uuid4

import pytest
import requests
from fastapi import HTTPException
from fastapi.testclient import TestClient

from api import auth
from db.models import Story


@pytest.fixture
def client(api):
    return TestClient(api.app)


@pytest.fixture
def headers(user, token_for):
    return {"Authorization": f"Bearer {token_for(user)}"}


class FakeResponse:
    def __init__(self, status_code: int, payload: dict | None = None) -> None:
        self.status_code = status_code
        self._payload = payload or {}
        self.text = ""
        self.reason = "Bad Request"

    def json(self) -> dict:
        return self._payload


def test_create_story_map_then_list_releases(api, user) -> None:
    created = api.create_story_map(api.StoryMapCreateRequest(name="Checkout"), user=user)

    releases = api.list_releases(UUID(created["id"]), user=user)

    assert created["name"] == "Checkout"
    assert created["created_by"] == str(user.id)
    assert [row["name"] for row in releases] == ["Unassigned"]
    assert releases[0]["is_unassigned"] is True


def test_story_detail_includes_tags_personas_and_dependencies(api, session, user, board) -> None:
    first = api.create_story(
        api.StoryCreateRequest(step_id=board.step.id, release_id=board.unassigned.id, title="Pay"),
        user=user,
    )
    second = api.create_story(
        api.StoryCreateRequest(step_id=board.step.id, release_id=board.unassigned.id, title="Refund"),
        user=user,
    )
    tag = api.create_tag(api.TagCreateRequest(story_map_id=board.story_map.id, name="payments"), user=user)
    api.add_story_tag(UUID(first["id"]), api.StoryTagRequest(tag_id=tag["id"]), user=user)
    api.create_story_link(
        api.StoryLinkCreateRequest(source_story_id=first["id"], target_story_id=second["id"], link_type="BLOCKS"),
        user=user,
    )

    detail = api.get_story(UUID(first["id"]), user=user)

    assert detail["sort_order"] == 1000
    assert second["sort_order"] == 2000
    assert [row["name"] for row in detail["tags"]] == ["payments"]
    assert detail["personas"] == []
    assert detail["dependencies"][0]["target_story"]["title"] == "Refund"


def test_patch_story_ignores_unsent_fields(api, session, user, board) -> None:
    created = api.create_story(
        api.StoryCreateRequest(
            step_id=board.step.id, release_id=board.unassigned.id, title="Pay", description="card only", size=3
        ),
        user=user,
    )

    updated = api.update_story(UUID(created["id"]), api.StoryUpdateRequest(status="READY"), user=user)

    assert updated["status"] == "READY"
    assert updated["description"] == "card only"
    assert updated["size"] == 3


def test_comment_endpoints_mark_the_current_user(api, user, board) -> None:
    story = api.create_story(
        api.StoryCreateRequest(step_id=board.step.id, release_id=board.unassigned.id, title="Pay"),
        user=user,
    )

    created = api.create_story_comment(UUID(story["id"]), api.CommentRequest(content="ship it"), user=user)
    listed = api.list_story_comments(UUID(story["id"]), user=user)

    assert created["author"] == "Olivia Owner"
    assert created["is_current_user"] is True
    assert [row["content"] for row in listed] == ["ship it"]


def test_requests_without_a_token_are_unauthorized(client) -> None:
    response = client.get("/story-maps")

    assert response.status_code == 401
    assert response.json()["detail"] == "Missing bearer token"


def test_expired_token_is_unauthorized(client, user, token_for) -> None:
    token = token_for(user, expires_in=-60)

    response = client.get("/story-maps", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_token_signed_with_another_secret_is_unauthorized(client, user, token_for) -> None:
    token = token_for(user, secret="not-the-configured-secret")

    response = client.get("/story-maps", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_domain_errors_share_one_body_shape(client, headers) -> None:
    response = client.get(f"/story-maps/{uuid4()}", headers=headers)

    body = response.json()
    assert response.status_code == 404
    assert body["status_code"] == 404
    assert body["kind"] == "not_found"
    assert body["message"] == "Story map not found or access denied"
    assert body["path"].startswith("/story-maps/")
    assert "timestamp" in body


def test_status_codes_follow_error_kind(client, headers, board) -> None:
    duplicate = client.post(
        "/journeys", json={"story_map_id": str(board.story_map.id), "name": "Buy"}, headers=headers
    )
    out_of_range = client.post(f"/journeys/{board.journey.id}/reorder", json={"new_sort_order": 5}, headers=headers)
    unassigned = client.delete(
        f"/releases/{board.unassigned.id}", params={"story_map_id": str(board.story_map.id)}, headers=headers
    )

    assert duplicate.status_code == 409
    assert out_of_range.status_code == 400
    assert out_of_range.json()["message"] == "new_sort_order must be less than 1"
    assert unassigned.status_code == 400
    assert unassigned.json()["kind"] == "invariant"


def test_foreign_user_gets_404_over_http(client, session, other_user, token_for, board) -> None:
    story = Story(
        step_id=board.step.id,
        release_id=board.unassigned.id,
        title="Private",
        sort_order=1000,
        created_by=board.story_map.created_by,
        updated_by=board.story_map.created_by,
    )
    session.add(story)
    session.commit()

    response = client.patch(
        f"/stories/{story.id}",
        json={"title": "Mine now"},
        headers={"Authorization": f"Bearer {token_for(other_user)}"},
    )

    assert response.status_code == 404


def test_profile_reads_the_token_claims(client, headers, user) -> None:
    body = client.get("/auth/profile", headers=headers).json()

    assert body["id"] == str(user.id)
    assert body["name"] == "Olivia Owner"
    assert body["email"] == "owner@example.com"


def test_login_proxies_the_identity_provider(monkeypatch) -> None:
    monkeypatch.setenv("IDENTITY_BASE_URL", "https://id.example.test/")
    monkeypatch.setenv("IDENTITY_API_KEY", "anon-key")
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(
            200,
            {
                "access_token": "a",
                "refresh_token": "r",
                "expires_in": 3600,
                "user": {"id": "u1", "email": "owner@example.com", "created_at": "2026-01-01T00:00:00Z"},
            },
        )

    monkeypatch.setattr(auth.requests, "post", fake_post)

    result = auth.login("owner@example.com", "secret123")

    assert result["access_token"] == "a"
    assert result["user"]["email"] == "owner@example.com"
    url, kwargs = calls[0]
    assert url == "https://id.example.test/auth/v1/token"
    assert kwargs["params"] == {"grant_type": "password"}
    assert kwargs["headers"]["apikey"] == "anon-key"


def test_rejected_login_is_unauthorized(monkeypatch) -> None:
    monkeypatch.setenv("IDENTITY_BASE_URL", "https://id.example.test")
    monkeypatch.setenv("IDENTITY_API_KEY", "anon-key")
    monkeypatch.setattr(auth.requests, "post", lambda url, **kwargs: FakeResponse(400, {"error": "invalid_grant"}))

    with pytest.raises(HTTPException) as exc:
        auth.login("owner@example.com", "wrong-password")

    assert exc.value.status_code == 401
    assert exc.value.detail == "Invalid credentials"


def test_unreachable_identity_provider_is_a_bad_gateway(monkeypatch) -> None:
    monkeypatch.setenv("IDENTITY_BASE_URL", "https://id.example.test")
    monkeypatch.setenv("IDENTITY_API_KEY", "anon-key")

    def refuse(url, **kwargs):
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(auth.requests, "post", refuse)

    with pytest.raises(HTTPException) as exc:
        auth.signup("owner@example.com", "secret123")

    assert exc.value.status_code == 502


def test_display_name_falls_back_through_metadata_and_email() -> None:
    assert auth.Identity(id=uuid4(), email="a@b.c", user_metadata={"full_name": "Ada"}).display_name == "Ada"
    assert auth.Identity(id=uuid4(), email="a@b.c").display_name == "a@b.c"
    assert auth.Identity(id=uuid4()).display_name == "Unknown User"


def test_provider_error_body_that_is_not_an_object_is_a_bad_request(monkeypatch) -> None:
    monkeypatch.setenv("IDENTITY_BASE_URL", "https://id.example.test")
    monkeypatch.setenv("IDENTITY_API_KEY", "anon-key")
    rejected = FakeResponse(422, ["email", "already", "registered"])
    monkeypatch.setattr(auth.requests, "post", lambda url, **kwargs: rejected)

    with pytest.raises(HTTPException) as exc:
        auth.signup("owner@example.com", "secret123")

    assert exc.value.status_code == 400
    assert exc.value.detail == "Bad Request"
