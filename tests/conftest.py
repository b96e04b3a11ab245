from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from types import SimpleNamespace
from uuid import uuid4

os.environ.setdefault("DATABASE_URL", "sqlite://")

import jwt
import pytest

import api.main as api_main
from api.auth import Identity
from db.base import Base
from db.session import build_engine, build_sessionmaker
from storymap import journeys, maps, steps
from storymap.releases import unassigned_release

JWT_SECRET = "test-secret-for-storymap"


@pytest.fixture
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'storymap.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_sessionmaker(engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def api(monkeypatch, session_factory):
    monkeypatch.setattr(api_main, "SessionLocal", session_factory)
    return api_main


@pytest.fixture(autouse=True)
def jwt_env(monkeypatch) -> None:
    monkeypatch.setenv("AUTH_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("AUTH_JWT_AUDIENCE", "authenticated")
    monkeypatch.delenv("AUTH_JWT_ISSUER", raising=False)


@pytest.fixture
def user() -> Identity:
    return Identity(id=uuid4(), email="owner@example.com", user_metadata={"name": "Olivia Owner"})


@pytest.fixture
def other_user() -> Identity:
    return Identity(id=uuid4(), email="intruder@example.com", user_metadata={})


@pytest.fixture
def token_for():
    def _mint(identity: Identity, *, secret: str = JWT_SECRET, expires_in: int = 3600, **claims) -> str:
        payload = {
            "sub": str(identity.id),
            "email": identity.email,
            "aud": "authenticated",
            "user_metadata": identity.user_metadata,
            "exp": datetime.now(UTC) + timedelta(seconds=expires_in),
        }
        payload.update(claims)
        return jwt.encode(payload, secret, algorithm="HS256")

    return _mint


def build_board(session, owner: Identity, name: str = "Checkout") -> SimpleNamespace:
    story_map = maps.create_story_map(session, user_id=owner.id, name=name)
    journey = journeys.create_journey(session, user_id=owner.id, story_map_id=story_map.id, name="Buy")
    step = steps.create_step(session, user_id=owner.id, journey_id=journey.id, name="Pay")
    return SimpleNamespace(
        story_map=story_map,
        journey=journey,
        step=step,
        unassigned=unassigned_release(session, story_map.id),
    )


@pytest.fixture
def board(session, user) -> SimpleNamespace:
    return build_board(session, user)


@pytest.fixture
def foreign_board(session, other_user) -> SimpleNamespace:
    return build_board(session, other_user, name="Someone else's map")


@pytest.fixture
def make_board(session):
    def _make(owner: Identity, name: str = "Checkout") -> SimpleNamespace:
        return build_board(session, owner, name=name)

    return _make
