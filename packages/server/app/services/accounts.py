"""
Account service: signup, signin and password reset.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import structlog
from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core import email
from app.core.config import get_settings
from app.core.errors import Conflict, Unauthenticated, ValidationFailed
from app.core.security import get_hasher
from app.models.base import utcnow
from app.models.password_reset import PasswordResetToken
from app.models.session import UserSession
from app.models.tenant import Tenant
from app.models.user import User
from app.services import memberships as membership_service
from app.services import sessions as session_service
from app.services import tenants as tenant_service

from taskhub_shared.schemas.auth import SignupRequest

log = structlog.get_logger()


@dataclass
class SignedIn:
    user: User
    tenant: Optional[Tenant]
    session: UserSession


async def find_user_by_email(address: str, session: AsyncSession) -> Optional[User]:
    result = await session.execute(select(User).where(User.email == address.lower()))
    return result.scalar_one_or_none()


async def signup(req: SignupRequest, session: AsyncSession) -> SignedIn:
    """Create user, default organization, owner membership and session.

    Everything is flushed in the caller's transaction; nothing persists
    unless the caller commits.
    """
    address = req.email.lower()
    if await find_user_by_email(address, session) is not None:
        raise Conflict("Email already in use")
    existing = await session.execute(select(User.id).where(User.username == req.username))
    if existing.first() is not None:
        raise Conflict("Username already taken")

    user = User(
        email=address,
        username=req.username,
        password_hash=await get_hasher().hash(req.password),
    )
    session.add(user)
    try:
        await session.flush()
    except IntegrityError:
        raise Conflict("Email or username already in use")

    tenant, _ = await tenant_service.create_organization(
        user.id, f"{user.username}'s Organization", session
    )
    user_session = await session_service.create_session(user.id, tenant.id, session)

    log.info("auth.signup", user_id=str(user.id), tenant_id=str(tenant.id))
    return SignedIn(user=user, tenant=tenant, session=user_session)


async def signin(identifier: str, password: str, session: AsyncSession) -> SignedIn:
    """Authenticate by email or username. Every failure reads "Invalid credentials"."""
    result = await session.execute(
        select(User).where(or_(User.email == identifier.lower(), User.username == identifier))
    )
    user = result.scalars().first()
    if user is None or not await get_hasher().verify(password, user.password_hash):
        log.info("auth.signin_failed")
        raise Unauthenticated("Invalid credentials")

    tenant = await membership_service.get_default_organization(user.id, session)
    user_session = await session_service.create_session(
        user.id, tenant.id if tenant else None, session
    )
    log.info("auth.signin_success", user_id=str(user.id))
    return SignedIn(user=user, tenant=tenant, session=user_session)


def send_welcome_email(user: User) -> None:
    email.send_in_background(user.email, "welcome", username=user.username)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------

async def request_password_reset(
    address: str, session: AsyncSession
) -> Optional[tuple[User, PasswordResetToken]]:
    """Issue a reset token when the account exists.

    The HTTP layer reports success either way so callers cannot discover
    registered addresses. Caller commits, then calls ``send_password_reset_email``.
    """
    user = await find_user_by_email(address, session)
    if user is None:
        return None

    settings = get_settings()
    reset = PasswordResetToken(
        user_id=user.id,
        expires_at=utcnow() + timedelta(hours=settings.password_reset_expiry_hours),
    )
    session.add(reset)
    await session.flush()

    log.info("auth.password_reset_requested", user_id=str(user.id))
    return user, reset


def send_password_reset_email(user: User, reset: PasswordResetToken) -> None:
    settings = get_settings()
    email.send_in_background(
        user.email,
        "password_reset",
        username=user.username,
        reset_url=f"{settings.app_url}/reset-password/{reset.token}",
        expiry_hours=settings.password_reset_expiry_hours,
    )


async def _usable_reset_token(
    token: str, session: AsyncSession, *, for_update: bool = False
) -> Optional[PasswordResetToken]:
    stmt = (
        select(PasswordResetToken)
        .where(PasswordResetToken.token == token)
        .where(PasswordResetToken.expires_at > utcnow())
        .where(PasswordResetToken.used_at.is_(None))
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def validate_reset_token(token: str, session: AsyncSession) -> bool:
    return await _usable_reset_token(token, session) is not None


async def reset_password(token: str, new_password: str, session: AsyncSession) -> None:
    """Set a new password, burn the token and end every session of the user."""
    reset = await _usable_reset_token(token, session, for_update=True)
    if reset is None:
        raise ValidationFailed("Invalid or expired reset token")

    now = utcnow()
    await session.execute(
        update(User)
        .where(User.id == reset.user_id)
        .values(password_hash=await get_hasher().hash(new_password), updated_at=now)
        .execution_options(synchronize_session=False)
    )
    reset.used_at = now
    session.add(reset)
    await session.flush()
    await session_service.delete_all_user_sessions(reset.user_id, session)

    log.info("auth.password_reset", user_id=str(reset.user_id))
