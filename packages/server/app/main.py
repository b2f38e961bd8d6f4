"""
TaskHub API Server

Entry point for the FastAPI application.
"""

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core import isolation  # noqa: F401  registers the tenant isolation listeners
from app.core.config import get_settings
from app.core.database import check_database_health, engine
from app.core.errors import register_error_handlers
from app.core.middleware import CSRFMiddleware, SecurityHeadersMiddleware
from app.api.v1 import router as api_v1_router
from app.api.v1.auth import router as auth_router

settings = get_settings()
log = structlog.get_logger()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="TaskHub",
        description="Multi-tenant task tracking with organizations, members and invitations.",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # Middleware (outermost last)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(CSRFMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PATCH", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    )

    register_error_handlers(app)

    app.include_router(auth_router, prefix="/auth", tags=["Authentication"])
    app.include_router(api_v1_router, prefix="/api/v1")

    @app.get("/health", tags=["System"])
    async def health_check():
        """Liveness check."""
        return {"status": "ok"}

    @app.get("/ready", tags=["System"])
    async def readiness_check():
        """Readiness check: the database must answer."""
        if not await check_database_health():
            return JSONResponse(status_code=503, content={"status": "unavailable", "database": False})
        return {"status": "ready", "database": True}

    @app.on_event("startup")
    async def on_startup():
        log.info("taskhub.starting", database=engine.dialect.name, debug=settings.debug)

    @app.on_event("shutdown")
    async def on_shutdown():
        log.info("taskhub.stopping")
        await engine.dispose()

    return app


app = create_app()
