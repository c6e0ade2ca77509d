"""
Shared fixtures: throwaway SQLite database, fake identity provider and fake news stream.
"""

import asyncio
import os

os.environ.setdefault("ENCRYPTION_SECRET", "test-encryption-secret")
os.environ.setdefault("ENCRYPTION_KDF_ITERATIONS", "1000")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./newsdesk-test.db")

import pytest
from fastapi.testclient import TestClient

from newsdesk.main import app
from newsdesk.auth import AuthenticatedUser, get_session_verifier
from newsdesk.ai.news_stream import get_news_streamer
from newsdesk.db.postgres import DatabaseManager, get_db_session

ALICE = AuthenticatedUser(id="user-alice", email="alice@example.com")
BOB = AuthenticatedUser(id="user-bob", email="bob@example.com")

TOKENS = {
    "token-alice": ALICE,
    "token-bob": BOB,
}


class FakeVerifier:
    """Resolves the fixed test tokens without calling the auth service."""

    async def verify(self, token):
        return TOKENS.get(token)


class FakeNewsStreamer:
    """Records stream requests and replays canned chunks."""

    def __init__(self, chunks=None, error=None):
        self.chunks = chunks if chunks is not None else []
        self.error = error
        self.calls = []

    async def open_stream(self, topic, api_key):
        self.calls.append((topic, api_key))
        if self.error is not None:
            raise self.error
        return self._relay()

    async def _relay(self):
        for chunk in self.chunks:
            yield chunk


def auth_headers(token="token-alice"):
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'newsdesk.db'}"


@pytest.fixture
def database(db_url):
    """Database manager with fresh tables, for synchronous API tests."""
    manager = DatabaseManager(db_url)

    async def setup():
        await manager.initialize()
        await manager.create_tables()

    asyncio.run(setup())
    yield manager
    asyncio.run(manager.close())


@pytest.fixture
def streamer():
    return FakeNewsStreamer(chunks=["Hello", ", ", "world"])


@pytest.fixture
def client(database, streamer):
    async def override_session():
        async with database.get_session() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_session
    app.dependency_overrides[get_session_verifier] = lambda: FakeVerifier()
    app.dependency_overrides[get_news_streamer] = lambda: streamer
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
