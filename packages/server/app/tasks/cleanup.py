"""
ARQ background task: purge expired sessions and spent password-reset tokens.

Run with ``arq app.tasks.cleanup.WorkerSettings``; the cron job fires at the
top of every hour.
"""

from __future__ import annotations

import structlog
from arq import cron
from arq.connections import RedisSettings
from sqlalchemy import delete, or_

from app.core.config import get_settings
from app.core.database import system_session
from app.models.base import utcnow
from app.models.password_reset import PasswordResetToken
from app.services.sessions import purge_expired_sessions

log = structlog.get_logger()


async def purge_expired_credentials(ctx: dict) -> dict[str, int]:
    """Delete expired sessions and expired or used reset tokens.

    Returns the number of rows removed per table.
    """
    async with system_session() as session:
        sessions_removed = await purge_expired_sessions(session)
        result = await session.execute(
            delete(PasswordResetToken)
            .where(
                or_(
                    PasswordResetToken.expires_at <= utcnow(),
                    PasswordResetToken.used_at.is_not(None),
                )
            )
            .execution_options(synchronize_session=False)
        )
        tokens_removed = result.rowcount

    if sessions_removed or tokens_removed:
        log.info(
            "cleanup.credentials_purged",
            sessions=sessions_removed,
            reset_tokens=tokens_removed,
        )
    return {"sessions": sessions_removed, "reset_tokens": tokens_removed}


class WorkerSettings:
    """ARQ worker configuration."""

    functions = [purge_expired_credentials]
    cron_jobs = [cron(purge_expired_credentials, minute=0, run_at_startup=True)]
    redis_settings = RedisSettings.from_dsn(get_settings().redis_url)
