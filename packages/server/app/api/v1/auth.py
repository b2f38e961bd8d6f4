"""
Authentication endpoints.

POST /auth/signup                  Create account, default organization and session
POST /auth/signin                  Sign in with email or username
POST /auth/signout                 End the current session (session only)
GET  /auth/me                      Current user and organization (session only)
POST /auth/password-reset/request  Email a reset link (always succeeds)
GET  /auth/password-reset/{token}  Check whether a reset token is usable
POST /auth/password-reset/confirm  Set a new password with a reset token
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.v1.responses import organization_response, user_public
from app.core.auth import AuthorizationContext, require_session
from app.core.config import get_settings
from app.core.database import get_session
from app.core.security import generate_csrf_token
from app.services import accounts as account_service
from app.services import memberships as membership_service
from app.services import sessions as session_service

from taskhub_shared.schemas.auth import (
    AuthResponse,
    MeResponse,
    PasswordResetConfirm,
    PasswordResetRequest,
    ResetTokenStatus,
    SigninRequest,
    SignupRequest,
)
from taskhub_shared.schemas.common import SuccessResponse

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()


def _set_session_cookies(response: Response, token: str) -> None:
    max_age = settings.session_duration_days * 24 * 60 * 60
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=max_age,
    )
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=generate_csrf_token(),
        httponly=False,  # read by the browser and echoed in X-CSRF-Token
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=max_age,
    )


def _clear_session_cookies(response: Response) -> None:
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")


@router.post("/signup", response_model=AuthResponse, status_code=201)
async def signup(
    body: SignupRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    signed_in = await account_service.signup(body, session)
    await session.commit()

    account_service.send_welcome_email(signed_in.user)
    _set_session_cookies(response, signed_in.session.session_token)
    return AuthResponse(
        user=user_public(signed_in.user),
        organization=organization_response(signed_in.tenant),
        session_token=signed_in.session.session_token,
    )


@router.post("/signin", response_model=AuthResponse)
async def signin(
    body: SigninRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    signed_in = await account_service.signin(body.identifier, body.password, session)
    await session.commit()

    _set_session_cookies(response, signed_in.session.session_token)
    return AuthResponse(
        user=user_public(signed_in.user),
        organization=organization_response(signed_in.tenant),
        session_token=signed_in.session.session_token,
    )


@router.post("/signout", response_model=SuccessResponse)
async def signout(
    response: Response,
    ctx: AuthorizationContext = Depends(require_session),
    session: AsyncSession = Depends(get_session),
):
    await session_service.delete_session(ctx.session.session_token, session)
    await session.commit()

    _clear_session_cookies(response)
    log.info("auth.signout", user_id=str(ctx.user.id))
    return SuccessResponse()


@router.get("/me", response_model=MeResponse)
async def me(
    ctx: AuthorizationContext = Depends(require_session),
    session: AsyncSession = Depends(get_session),
):
    role = None
    if ctx.tenant is not None:
        role = await membership_service.get_role(ctx.user.id, ctx.tenant.id, session)
    return MeResponse(
        user=user_public(ctx.user),
        organization=organization_response(ctx.tenant),
        role=role,
    )


@router.post("/password-reset/request", response_model=SuccessResponse)
async def request_password_reset(
    body: PasswordResetRequest,
    session: AsyncSession = Depends(get_session),
):
    issued = await account_service.request_password_reset(body.email, session)
    await session.commit()
    if issued is not None:
        account_service.send_password_reset_email(*issued)
    return SuccessResponse(
        message="If an account exists for this email, a password reset link has been sent."
    )


@router.get("/password-reset/{token}", response_model=ResetTokenStatus)
async def validate_reset_token(
    token: str,
    session: AsyncSession = Depends(get_session),
):
    return ResetTokenStatus(valid=await account_service.validate_reset_token(token, session))


@router.post("/password-reset/confirm", response_model=SuccessResponse)
async def confirm_password_reset(
    body: PasswordResetConfirm,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    await account_service.reset_password(body.token, body.password, session)
    await session.commit()

    _clear_session_cookies(response)
    return SuccessResponse(message="Password has been reset. Please sign in again.")
