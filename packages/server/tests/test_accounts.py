"""
Tests for signup, signin, signout and password reset.

Covers:
- Signup creates the user, a default organization with the user as owner,
  and a session carried in cookies
- Duplicate email/username conflicts; password confirmation
- Signin by email or username; uniform failure message
- Signout ends the session
- Password reset: token lifecycle, single use, all sessions revoked
- Reset email is only sent once the token is committed
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import update
from sqlmodel import select

from app.core.database import system_session
from app.models.base import utcnow
from app.models.membership import UserTenant
from app.models.password_reset import PasswordResetToken
from app.models.session import UserSession
from app.services import accounts as account_service

from conftest import PASSWORD, sign_up


class TestSignup:
    async def test_creates_user_organization_and_session(self, client, outbox):
        account = await sign_up(client, "alice")

        assert account.user["username"] == "alice"
        assert account.user["email"] == "alice@example.com"
        assert "password_hash" not in account.user
        assert account.organization["name"] == "alice's Organization"
        assert account.organization["slug"] == "alice-s-organization"
        assert client.cookies.get("session_token") == account.session_token
        assert client.cookies.get("csrf_token")

        async with system_session() as session:
            membership = (await session.execute(select(UserTenant))).scalar_one()
        assert membership.role == "owner"
        assert str(membership.tenant_id) == account.tenant_id

        sent = await outbox.flush()
        assert [m.subject for m in sent] == ["Welcome to TaskHub!"]

    async def test_email_is_case_insensitive(self, client, clients):
        await sign_up(client, "alice", "Alice@Example.com")
        response = await clients().post(
            "/auth/signup",
            json={"email": "alice@example.com", "username": "alice2", "password": PASSWORD},
        )
        assert response.status_code == 409
        assert response.json()["error"]["message"] == "Email already in use"

    async def test_duplicate_username(self, client, clients):
        await sign_up(client, "alice")
        response = await clients().post(
            "/auth/signup",
            json={"email": "other@example.com", "username": "alice", "password": PASSWORD},
        )
        assert response.status_code == 409
        assert response.json()["error"]["message"] == "Username already taken"

    async def test_password_confirmation_must_match(self, client):
        response = await client.post(
            "/auth/signup",
            json={
                "email": "a@example.com",
                "username": "alice",
                "password": PASSWORD,
                "confirm_password": "something-else",
            },
        )
        assert response.status_code == 422

    async def test_short_password_rejected(self, client):
        response = await client.post(
            "/auth/signup",
            json={"email": "a@example.com", "username": "alice", "password": "short"},
        )
        assert response.status_code == 422

    async def test_duplicate_slug_gets_suffix(self, clients):
        await sign_up(clients(), "bob")
        bob2 = await sign_up(clients(), "bob_2")
        created = await bob2.http.post("/api/v1/organizations", json={"name": "bob's Organization"})
        assert created.status_code == 201
        assert created.json()["slug"] == "bob-s-organization-1"


class TestSignin:
    async def test_signin_by_email_and_username(self, clients):
        await sign_up(clients(), "alice")
        for identifier in ("alice@example.com", "ALICE@example.com", "alice"):
            http = clients()
            response = await http.post(
                "/auth/signin", json={"identifier": identifier, "password": PASSWORD}
            )
            assert response.status_code == 200, identifier
            body = response.json()
            assert body["user"]["username"] == "alice"
            assert body["organization"]["name"] == "alice's Organization"
            assert http.cookies.get("session_token") == body["session_token"]

    async def test_each_signin_creates_a_new_session(self, clients):
        account = await sign_up(clients(), "alice")
        response = await clients().post(
            "/auth/signin", json={"identifier": "alice", "password": PASSWORD}
        )
        assert response.json()["session_token"] != account.session_token

    async def test_wrong_password_and_unknown_user_look_the_same(self, clients):
        await sign_up(clients(), "alice")
        wrong = await clients().post("/auth/signin", json={"identifier": "alice", "password": "nope-nope"})
        unknown = await clients().post("/auth/signin", json={"identifier": "nobody", "password": "nope-nope"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["message"] == "Invalid credentials"


class TestSessionEndpoints:
    async def test_me(self, signup):
        alice = await signup("alice")
        response = await alice.http.get("/auth/me")
        assert response.status_code == 200
        body = response.json()
        assert body["user"]["id"] == alice.user_id
        assert body["organization"]["id"] == alice.tenant_id
        assert body["role"] == "owner"

    async def test_signout(self, signup):
        alice = await signup("alice")
        response = await alice.http.post("/auth/signout")
        assert response.status_code == 200

        async with system_session() as session:
            remaining = (await session.execute(select(UserSession))).first()
        assert remaining is None
        assert (await alice.http.get("/auth/me")).status_code == 401

    async def test_signout_requires_csrf_token(self, signup):
        alice = await signup("alice")
        del alice.http.headers["X-CSRF-Token"]
        response = await alice.http.post("/auth/signout")
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "CSRF_VALIDATION_FAILED"


class TestPasswordReset:
    async def _request(self, http, outbox, address="alice@example.com") -> str:
        response = await http.post("/auth/password-reset/request", json={"email": address})
        assert response.status_code == 200
        await outbox.flush()
        async with system_session() as session:
            reset = (
                await session.execute(
                    select(PasswordResetToken).order_by(PasswordResetToken.created_at.desc())
                )
            ).scalars().first()
        return reset.token

    async def test_unknown_email_reports_success(self, client, outbox):
        response = await client.post(
            "/auth/password-reset/request", json={"email": "ghost@example.com"}
        )
        assert response.status_code == 200
        assert "If an account exists" in response.json()["message"]
        assert await outbox.flush() == []

    async def test_full_reset_flow(self, clients, outbox):
        alice = await sign_up(clients(), "alice")
        second = await clients().post("/auth/signin", json={"identifier": "alice", "password": PASSWORD})
        assert second.status_code == 200

        http = clients()
        token = await self._request(http, outbox)
        reset_mail = outbox.to("alice@example.com")[-1]
        assert token in reset_mail.text
        assert reset_mail.subject == "Reset your password - TaskHub"

        status = await http.get(f"/auth/password-reset/{token}")
        assert status.json() == {"valid": True}

        confirm = await http.post(
            "/auth/password-reset/confirm",
            json={"token": token, "password": "brand-new-password"},
        )
        assert confirm.status_code == 200

        # every session of the user is gone
        assert (await alice.http.get("/auth/me")).status_code == 401
        async with system_session() as session:
            assert (await session.execute(select(UserSession))).first() is None

        old = await clients().post("/auth/signin", json={"identifier": "alice", "password": PASSWORD})
        assert old.status_code == 401
        new = await clients().post(
            "/auth/signin", json={"identifier": "alice", "password": "brand-new-password"}
        )
        assert new.status_code == 200

    async def test_token_is_single_use(self, clients, outbox):
        await sign_up(clients(), "alice")
        http = clients()
        token = await self._request(http, outbox)
        first = await http.post(
            "/auth/password-reset/confirm", json={"token": token, "password": "brand-new-password"}
        )
        assert first.status_code == 200
        again = await http.post(
            "/auth/password-reset/confirm", json={"token": token, "password": "another-password"}
        )
        assert again.status_code == 400
        assert again.json()["error"]["message"] == "Invalid or expired reset token"
        assert (await http.get(f"/auth/password-reset/{token}")).json() == {"valid": False}

    async def test_expired_token(self, clients, outbox):
        await sign_up(clients(), "alice")
        http = clients()
        token = await self._request(http, outbox)
        async with system_session() as session:
            await session.execute(
                update(PasswordResetToken)
                .values(expires_at=utcnow() - timedelta(minutes=1))
                .execution_options(synchronize_session=False)
            )
        assert (await http.get(f"/auth/password-reset/{token}")).json() == {"valid": False}
        response = await http.post(
            "/auth/password-reset/confirm", json={"token": token, "password": "brand-new-password"}
        )
        assert response.status_code == 400

    async def test_unknown_token(self, client):
        assert (await client.get("/auth/password-reset/nope")).json() == {"valid": False}

    async def test_rolled_back_request_sends_nothing(self, clients, outbox):
        await sign_up(clients(), "alice")
        await outbox.flush()
        before = len(outbox.to("alice@example.com"))

        with pytest.raises(RuntimeError):
            async with system_session() as session:
                issued = await account_service.request_password_reset("alice@example.com", session)
                assert issued is not None
                raise RuntimeError("rolled back")

        await outbox.flush()
        assert len(outbox.to("alice@example.com")) == before
        async with system_session() as session:
            assert (await session.execute(select(PasswordResetToken))).first() is None
