"""
FastAPI dependency providers.

All authentication, authorization and throttling logic lives here, not in
routes.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

import structlog
from fastapi import Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from eventguard.core.context import bind_identity, current_context
from eventguard.core.errors import AuthError, ErrorCode, ForbiddenError, RateLimitedError
from eventguard.core.metrics import RATE_LIMIT_REJECTIONS
from eventguard.core.security import decode_token
from eventguard.db.models.user import RoleEnum
from eventguard.db.repositories.events import EventRepository
from eventguard.db.repositories.users import UserAccount, UserRepository
from eventguard.services.container import SecurityServices
from eventguard.services.ratelimit.limiter import request_signature

_log = structlog.get_logger(__name__)
_bearer = HTTPBearer(auto_error=False)


def get_services(request: Request) -> SecurityServices:
    return request.app.state.services


Services = Annotated[SecurityServices, Depends(get_services)]


async def get_db(services: Services) -> AsyncGenerator[AsyncSession, None]:
    """
    Yield a database session from the application's session factory.

    Commits on success, rolls back on exception.
    """
    async with services.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_user_repository(services: Services, db: DbSession) -> UserRepository:
    return UserRepository(db, services.codec)


def get_event_repository(services: Services, db: DbSession) -> EventRepository:
    return EventRepository(db, services.codec, services.audit)


Users = Annotated[UserRepository, Depends(get_user_repository)]
Events = Annotated[EventRepository, Depends(get_event_repository)]


async def get_current_user(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer)],
    services: Services,
    users: Users,
) -> UserAccount:
    """
    Validate the JWT Bearer token and return the authenticated account.

    Raises AuthError on any token problem.
    """
    if credentials is None:
        raise AuthError(
            ErrorCode.AUTH_TOKEN_INVALID, "Authorization header missing or not Bearer type"
        )

    payload = decode_token(credentials.credentials, services.settings)
    if payload.get("type") != "access":
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token is not an access token")

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "Token missing subject")

    user = await users.load(int(subject))
    if user is None:
        raise AuthError(ErrorCode.AUTH_TOKEN_INVALID, "User not found")
    if not user.is_active:
        raise AuthError(ErrorCode.AUTH_USER_INACTIVE, "Account is deactivated")

    bind_identity(user.id, user.email)
    structlog.contextvars.bind_contextvars(user_id=user.id, role=user.role)
    return user


CurrentUser = Annotated[UserAccount, Depends(get_current_user)]


def require_roles(*roles: RoleEnum):
    """Return a dependency callable that enforces role membership."""
    allowed = [r.value for r in roles]

    async def _check(user: CurrentUser, services: Services) -> UserAccount:
        if user.role not in allowed:
            ctx = current_context()
            await services.audit.log_access_denied(
                user, "route", None, f"Requires one of {allowed}: {ctx.path}"
            )
            raise ForbiddenError(
                f"This action requires one of: {allowed}. Your role is: {user.role}"
            )
        return user

    return _check


AdminUser = Depends(require_roles(RoleEnum.ADMIN))


async def _request_identity(request: Request) -> str | None:
    """Email (or username) from a JSON body, used to key the throttle."""
    try:
        body = await request.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    identity = body.get("email") or body.get("username")
    return str(identity).lower() if identity else None


class ThrottleAuth:
    """
    Brute-force gate for authentication endpoints.

    Counts every request per (client IP, submitted email, path). Once the
    count passes ``max_attempts`` within the window the request is rejected
    with 429 before the handler runs. Handler ``AuthError``s are recorded as
    failed attempts and re-raised.

    Usage::

        @router.post("/login", dependencies=[Depends(ThrottleAuth())])
    """

    def __init__(self, max_attempts: int | None = None, decay_minutes: int | None = None) -> None:
        self._max_attempts = max_attempts
        self._decay_minutes = decay_minutes

    async def __call__(
        self, request: Request, response: Response, services: Services
    ) -> AsyncGenerator[None, None]:
        settings = services.settings
        max_attempts = self._max_attempts or settings.auth_max_attempts
        window = (self._decay_minutes or settings.auth_decay_minutes) * 60

        identity = await _request_identity(request)
        path = request.url.path
        client_ip = request.client.host if request.client else current_context().ip
        key = request_signature(client_ip, identity, path)

        decision = services.rate_limiter.attempt(key, max_attempts, window)
        if not decision.allowed:
            RATE_LIMIT_REJECTIONS.labels(endpoint=path).inc()
            _log.warning(
                "rate_limit_exceeded",
                ip=client_ip,
                endpoint=path,
                attempts=decision.attempts,
                retry_after=decision.retry_after,
            )
            await services.audit.log(
                "auth.rate_limited",
                metadata={
                    "email": identity,
                    "endpoint": path,
                    "attempts": decision.attempts,
                    "retry_after": decision.retry_after,
                },
            )
            raise RateLimitedError(retry_after=decision.retry_after, limit=decision.limit)

        response.headers["X-RateLimit-Limit"] = str(decision.limit)
        response.headers["X-RateLimit-Remaining"] = str(decision.remaining)

        try:
            yield
        except AuthError:
            await services.audit.log(
                "auth.failed_attempt",
                metadata={"email": identity, "endpoint": path, "attempts": decision.attempts},
            )
            raise
