"""
Request authorization for TaskHub.

Every request is resolved into one ``AuthorizationContext``. Credentials are
tried in a fixed order:

1. ``Authorization: Bearer <admin key>`` (constant-time comparison)
2. ``Authorization: Bearer <api key>``
3. the session cookie

Missing or unknown credentials produce the unauthenticated context; the
endpoint-category dependencies below decide what each route requires.
"""

from __future__ import annotations

import hmac
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import structlog
from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.database import system_session
from app.core.errors import Forbidden, Unauthenticated, ValidationFailed
from app.core.isolation import tenant_transaction
from app.models.api_key import ApiKey
from app.models.session import UserSession
from app.models.tenant import Tenant
from app.models.user import User
from app.services import api_keys as api_key_service
from app.services import sessions as session_service

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="Authorization", auto_error=False)


class AuthMethod(str, Enum):
    NONE = "none"
    SESSION = "session"
    API_KEY = "api_key"
    ADMIN = "admin"


@dataclass
class AuthorizationContext:
    method: AuthMethod = AuthMethod.NONE
    user: Optional[User] = None
    tenant: Optional[Tenant] = None
    session: Optional[UserSession] = None
    api_key: Optional[ApiKey] = None
    is_admin: bool = False

    @property
    def is_authenticated(self) -> bool:
        return self.method is not AuthMethod.NONE


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from ``Bearer <token>``; ``None`` when no header."""
    if authorization is None:
        return None
    scheme, _, token = authorization.partition(" ")
    token = token.strip()
    if scheme != "Bearer" or not token:
        raise ValidationFailed("Authorization header must use the Bearer scheme")
    return token


def is_admin_key(token: str) -> bool:
    admin_key = get_settings().admin_api_key
    if not admin_key:
        return False
    return hmac.compare_digest(token.encode(), admin_key.encode())


async def resolve_credentials(
    authorization: Optional[str],
    session_token: Optional[str],
    session: AsyncSession,
) -> AuthorizationContext:
    """Turn raw credential material into an ``AuthorizationContext``.

    ``session`` must be a system session; API key lookups span tenants.
    """
    bearer = parse_bearer(authorization)

    if bearer is not None:
        if is_admin_key(bearer):
            return AuthorizationContext(method=AuthMethod.ADMIN, is_admin=True)

        key_auth = await api_key_service.validate_api_key(bearer, session)
        if key_auth is not None:
            return AuthorizationContext(
                method=AuthMethod.API_KEY,
                user=key_auth.user,
                tenant=key_auth.tenant,
                api_key=key_auth.api_key,
            )

    if session_token:
        session_auth = await session_service.validate_session(session_token, session)
        if session_auth is not None:
            return AuthorizationContext(
                method=AuthMethod.SESSION,
                user=session_auth.user,
                tenant=session_auth.tenant,
                session=session_auth.session,
            )

    return AuthorizationContext()


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------

async def get_auth_context(
    request: Request,
    authorization: Optional[str] = Depends(api_key_header),
) -> AuthorizationContext:
    """Resolve the request's credentials once per request."""
    session_token = request.cookies.get(get_settings().session_cookie_name)
    async with system_session() as session:
        ctx = await resolve_credentials(authorization, session_token, session)
    request.state.auth = ctx
    return ctx


async def require_user(
    ctx: AuthorizationContext = Depends(get_auth_context),
) -> AuthorizationContext:
    """Session or user-bound API key."""
    if ctx.user is None:
        if ctx.method is AuthMethod.API_KEY:
            raise Unauthenticated("API key must be associated with a user for this endpoint")
        raise Unauthenticated(
            "Authentication required. Provide either session cookie or API key."
        )
    return ctx


async def require_tenant_context(
    ctx: AuthorizationContext = Depends(require_user),
) -> AuthorizationContext:
    """User-scoped and bound to an active organization."""
    if ctx.tenant is None:
        raise ValidationFailed("No organization context. Please select an organization.")
    return ctx


async def require_tenant_key(
    ctx: AuthorizationContext = Depends(get_auth_context),
    authorization: Optional[str] = Depends(api_key_header),
) -> AuthorizationContext:
    """Any valid API key, including keys without a user."""
    if ctx.method is not AuthMethod.API_KEY:
        if authorization is None:
            raise Unauthenticated("Missing or invalid Authorization header")
        raise Unauthenticated("Invalid or expired API key")
    return ctx


async def require_admin(
    ctx: AuthorizationContext = Depends(get_auth_context),
    authorization: Optional[str] = Depends(api_key_header),
) -> AuthorizationContext:
    if not ctx.is_admin:
        if authorization is None:
            raise Unauthenticated("Missing or invalid Authorization header")
        log.warning("auth.admin_denied", method=ctx.method.value)
        raise Forbidden("Admin access required")
    return ctx


async def require_session(
    ctx: AuthorizationContext = Depends(get_auth_context),
) -> AuthorizationContext:
    """Cookie session only; API keys and the admin key are rejected."""
    if ctx.session is None:
        if ctx.method in (AuthMethod.API_KEY, AuthMethod.ADMIN):
            raise Unauthenticated("This operation requires session authentication")
        raise Unauthenticated("Not authenticated")
    return ctx


async def get_tenant_db(
    ctx: AuthorizationContext = Depends(require_tenant_context),
) -> AsyncGenerator[AsyncSession, None]:
    """Database session bound to the caller's organization."""
    async with tenant_transaction(ctx.tenant.id) as session:
        yield session


async def get_tenant_key_db(
    ctx: AuthorizationContext = Depends(require_tenant_key),
) -> AsyncGenerator[AsyncSession, None]:
    async with tenant_transaction(ctx.tenant.id) as session:
        yield session
