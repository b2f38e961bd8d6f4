"""
Shared fixtures: a throwaway SQLite database per test, a captured email
outbox and helpers for signing users in.
"""

from __future__ import annotations

import asyncio
import os
import tempfile
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

_TMP_DIR = tempfile.mkdtemp(prefix="taskhub-tests-")

os.environ.setdefault("TH_DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/taskhub-test.db")
os.environ.setdefault("TH_BCRYPT_ROUNDS", "4")
os.environ.setdefault("TH_ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("TH_APP_URL", "https://taskhub.test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import app.models  # noqa: E402,F401
from app.core import email  # noqa: E402
from app.core.database import engine, system_session  # noqa: E402
from app.core.security import get_hasher  # noqa: E402
from app.main import app as fastapi_app  # noqa: E402
from app.models.user import User  # noqa: E402
from app.services import api_keys as api_key_service  # noqa: E402
from app.services import tenants as tenant_service  # noqa: E402

ADMIN_KEY = "test-admin-key"
PASSWORD = "correct-horse-battery"


@pytest.fixture(autouse=True)
async def database(outbox):
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)
    yield
    # deliveries must finish on this test's loop
    if email._pending:
        await asyncio.gather(*list(email._pending), return_exceptions=True)
    await engine.dispose()


# ---------------------------------------------------------------------------
# Email
# ---------------------------------------------------------------------------

@dataclass
class SentEmail:
    to: str
    subject: str
    text: str
    html: str


class Outbox:
    """Stands in for the SMTP sender and records every message."""

    def __init__(self):
        self.messages: list[SentEmail] = []

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        self.messages.append(SentEmail(to=to, subject=subject, text=text, html=html))

    async def flush(self) -> list[SentEmail]:
        """Wait for scheduled deliveries, then return everything sent."""
        if email._pending:
            await asyncio.gather(*list(email._pending))
        return self.messages

    def to(self, address: str) -> list[SentEmail]:
        return [m for m in self.messages if m.to == address]


@pytest.fixture(autouse=True)
def outbox(monkeypatch) -> Outbox:
    box = Outbox()
    monkeypatch.setattr(email, "get_email_sender", lambda: box)
    return box


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------

@dataclass
class SignedInClient:
    """A client carrying one user's session and CSRF cookies."""
    http: AsyncClient
    user: dict
    organization: Optional[dict]
    session_token: str

    @property
    def user_id(self) -> str:
        return self.user["id"]

    @property
    def tenant_id(self) -> Optional[str]:
        return self.organization["id"] if self.organization else None


def make_client() -> AsyncClient:
    # https so the Secure cookies round-trip
    return AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="https://test")


@pytest.fixture
async def client():
    async with make_client() as ac:
        yield ac


@pytest.fixture
async def clients():
    """Factory for independent clients, closed at teardown."""
    opened: list[AsyncClient] = []

    def _new() -> AsyncClient:
        ac = make_client()
        opened.append(ac)
        return ac

    yield _new
    for ac in opened:
        await ac.aclose()


async def sign_up(http: AsyncClient, username: str, address: Optional[str] = None) -> SignedInClient:
    response = await http.post(
        "/auth/signup",
        json={
            "email": address or f"{username}@example.com",
            "username": username,
            "password": PASSWORD,
        },
    )
    assert response.status_code == 201, response.text
    body = response.json()
    http.headers["X-CSRF-Token"] = http.cookies.get("csrf_token")
    return SignedInClient(
        http=http,
        user=body["user"],
        organization=body["organization"],
        session_token=body["session_token"],
    )


@pytest.fixture
def signup(clients):
    """``await signup("alice")`` gives a fresh client signed in as alice."""

    async def _signup(username: str, address: Optional[str] = None) -> SignedInClient:
        return await sign_up(clients(), username, address)

    return _signup


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {ADMIN_KEY}"}


def bearer(key: str) -> dict:
    return {"Authorization": f"Bearer {key}"}


async def issue_api_key(
    tenant_id: str | uuid.UUID,
    *,
    user_id: str | uuid.UUID | None = None,
    expires_at: Optional[datetime] = None,
    name: str = "test key",
) -> str:
    """Provision and commit an API key, returning the raw key."""
    async with system_session() as session:
        raw_key, _ = await api_key_service.create_api_key_for_tenant(
            uuid.UUID(str(tenant_id)),
            session,
            name=name,
            expires_at=expires_at,
            user_id=uuid.UUID(str(user_id)) if user_id else None,
        )
    return raw_key


@dataclass
class SeededTenant:
    tenant_id: uuid.UUID
    owner_id: uuid.UUID


async def seed_tenant(name: str) -> SeededTenant:
    """Insert a user who owns a fresh tenant, bypassing the HTTP layer."""
    username = name.lower().replace(" ", "_")
    async with system_session() as session:
        user = User(
            email=f"{username}@example.com",
            username=username,
            password_hash=get_hasher().hash_sync(PASSWORD),
        )
        session.add(user)
        await session.flush()
        tenant, _ = await tenant_service.create_organization(user.id, name, session)
    return SeededTenant(tenant_id=tenant.id, owner_id=user.id)


@pytest.fixture
async def two_tenants() -> tuple[SeededTenant, SeededTenant]:
    return await seed_tenant("Acme"), await seed_tenant("Globex")
