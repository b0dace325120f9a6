import asyncio

import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

import main
from dependencies import SESSION_COOKIE, limiter
from models.user import GitHubProfile
from services import auth_service


@pytest.fixture
def db():
    return AsyncMongoMockClient()["ledger_test"]


@pytest.fixture
def client(db):
    main.app_state.update({
        "users_collection": db["users"],
        "sessions_collection": db["sessions"],
        "transactions_collection": db["transactions"],
        "save_at_front": True,
    })
    limiter.enabled = False
    # No context manager: the lifespan would try to reach a real MongoDB
    yield TestClient(main.app)
    main.app_state.clear()
    limiter.enabled = True


def sign_in(client, db, github_id="1001", login="octocat"):
    """Creates a user plus session directly in the database and attaches the cookie."""
    profile = GitHubProfile(github_id=github_id, login=login, name=login.title(), avatar_url=None)
    user = asyncio.run(auth_service.upsert_github_user(db["users"], profile))
    session = asyncio.run(auth_service.create_session(db["sessions"], user.id, ttl_days=7))
    client.cookies.set(SESSION_COOKIE, session.id)
    return user


@pytest.fixture
def user(client, db):
    return sign_in(client, db)


def make_payload(**overrides):
    payload = {
        "amount": 45.0,
        "type": "EXPENSE",
        "category": "餐饮",
        "description": "Lunch",
        "date": "2025-12-03",
    }
    payload.update(overrides)
    return payload
