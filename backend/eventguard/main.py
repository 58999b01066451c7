"""
EventGuard: FastAPI application factory.

Application lifecycle:
  startup  → configure logging, run DB migrations, seed the admin account
  shutdown → dispose DB engine pool
"""

from __future__ import annotations

from pathlib import Path

import sqlalchemy as sa
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventguard.api.v1.router import router as v1_router
from eventguard.config.logging_config import configure_logging
from eventguard.config.settings import Settings, get_settings
from eventguard.core.errors import AppError
from eventguard.core.middleware import (
    CorrelationIDMiddleware,
    RequestContextMiddleware,
    SecurityHeadersMiddleware,
    app_error_handler,
    unhandled_exception_handler,
)
from eventguard.core.security import hash_password
from eventguard.db.models.user import RoleEnum
from eventguard.db.repositories.users import UserRepository
from eventguard.db.session import dispose_engine, get_session_factory
from eventguard.services.container import SecurityServices

_log = structlog.get_logger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parent.parent / "alembic.ini"


def _create_limiter(settings: Settings) -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        default_limits=[settings.rate_limit_default],
        storage_uri=settings.rate_limit_storage_uri,
    )


def run_migrations(settings: Settings) -> None:
    """Upgrade the configured database to the latest revision."""
    from alembic import command
    from alembic.config import Config

    alembic_cfg = Config(str(ALEMBIC_INI))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", str(settings.database_url))
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


async def seed_admin(services: SecurityServices) -> None:
    """Create the bootstrap admin account if no user has the admin email."""
    settings = services.settings
    async with services.session_factory() as db:
        users = UserRepository(db, services.codec)
        if await users.find_by_email(settings.admin_email) is not None:
            return
        await users.create(
            name="Administrator",
            email=settings.admin_email,
            password_hash=hash_password(settings.admin_password.get_secret_value()),
            role=RoleEnum.ADMIN,
        )
        await db.commit()
    _log.info("admin_bootstrapped")


async def _startup(app: FastAPI) -> None:
    settings: Settings = app.state.settings
    configure_logging(log_level=settings.log_level.value, json_logs=settings.log_json)
    _log.info(
        "eventguard_starting",
        version=settings.app_version,
        environment=settings.environment.value,
    )

    if not settings.encryption_key_material:
        _log.warning("field_encryption_unconfigured")

    if settings.run_migrations_on_startup:
        try:
            run_migrations(settings)
            _log.info("migrations_applied")
        except (SQLAlchemyError, OSError) as exc:
            _log.warning("migration_warning", error=str(exc))

    await seed_admin(app.state.services)
    _log.info("eventguard_ready", host=settings.host, port=settings.port)


async def _shutdown() -> None:
    await dispose_engine()
    _log.info("eventguard_shutdown")


def create_app(
    settings: Settings | None = None,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> FastAPI:
    """Application factory. Returns a configured FastAPI instance."""
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory(settings)
    is_production = settings.environment.value == "production"

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Event management API with an application security substrate.",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
    )
    app.state.settings = settings
    app.state.services = SecurityServices.build(settings, session_factory)

    # ── Startup / Shutdown ────────────────────────────────────────────── #
    @app.on_event("startup")
    async def on_startup() -> None:
        await _startup(app)

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await _shutdown()

    # ── Rate Limiting ─────────────────────────────────────────────────── #
    app.state.limiter = _create_limiter(settings)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # ── CORS ──────────────────────────────────────────────────────────── #
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-Correlation-ID",
            "Retry-After",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
        ],
    )

    # ── Custom Middleware (applied in reverse order) ───────────────────── #
    app.add_middleware(
        SecurityHeadersMiddleware,
        require_https=is_production,
    )
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    # ── Exception Handlers ────────────────────────────────────────────── #
    app.add_exception_handler(AppError, app_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    # ── Routes ────────────────────────────────────────────────────────── #
    app.include_router(v1_router)

    # ── Health ────────────────────────────────────────────────────────── #
    @app.get("/health", tags=["health"], summary="Health check")
    async def health() -> dict[str, object]:
        """Returns service health including database reachability and key status."""
        db_ok = False
        try:
            async with session_factory() as db:
                await db.execute(sa.text("SELECT 1"))
            db_ok = True
        except (SQLAlchemyError, OSError) as exc:
            _log.warning("health_db_unavailable", error=str(exc))

        return {
            "status": "healthy" if db_ok else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "field_encryption": (
                "configured" if settings.encryption_key_material else "unconfigured"
            ),
            "version": settings.app_version,
        }

    # ── Metrics (Prometheus) ──────────────────────────────────────────── #
    @app.get("/metrics", tags=["observability"], summary="Prometheus metrics")
    async def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "eventguard.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        workers=settings.workers,
        reload=settings.reload,
    )
