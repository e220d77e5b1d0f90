import base64
from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine

from app.ai_feature.bridge import StreamBridge
from app.ai_feature.service import ConversationFlow
from app.api.endpoints.chat import get_stream_bridge
from app.core import models  # noqa: F401  registers chat_sessions on Base
from app.core.config import settings
from app.core.database import Base, build_session_factory
from app.core.session_store import SessionStore
from app.main import app
from tests.fakes import FakeModel, InMemoryStore


# Fresh sqlite file per test, with the real chat_sessions table
@pytest_asyncio.fixture(scope="function")
async def sqlite_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_store(sqlite_engine):
    return SessionStore(build_session_factory(sqlite_engine))


@pytest.fixture
def memory_store():
    return InMemoryStore()


@pytest.fixture
def fake_model():
    return FakeModel(chunks=["Hel", "lo"], final="Hello")


# Signing key pair; the public half is what the app verifies against
@pytest.fixture(scope="session")
def rsa_private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def public_key_setting(rsa_private_key, monkeypatch):
    der = rsa_private_key.public_key().public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    encoded = base64.b64encode(der).decode()
    monkeypatch.setattr(settings, "PUBLIC_KEY", encoded)
    return encoded


@pytest.fixture
def make_token(rsa_private_key, public_key_setting):
    def _make(sub="user-1", expires_in=timedelta(minutes=5), **claims):
        payload = {"exp": datetime.now(timezone.utc) + expires_in, **claims}
        if sub is not None:
            payload["sub"] = sub
        return jwt.encode(payload, rsa_private_key, algorithm="RS256")

    return _make


@pytest.fixture
def auth_headers(make_token):
    return {"Authorization": f"Bearer {make_token()}"}


# Client with the chat pipeline swapped for in-memory collaborators
@pytest_asyncio.fixture(scope="function")
async def client(memory_store, fake_model):
    bridge = StreamBridge(ConversationFlow(memory_store, fake_model, tools=[]))
    app.dependency_overrides[get_stream_bridge] = lambda: bridge

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
