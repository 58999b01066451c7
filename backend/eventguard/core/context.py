"""
Ambient request context.

The middleware stores the client address and user agent of the current
request in a ContextVar; dependencies add the authenticated identity.
Services read it instead of receiving the request object.
"""

from __future__ import annotations

from contextvars import ContextVar, Token
from dataclasses import dataclass, replace

UNKNOWN_IP = "0.0.0.0"


@dataclass(frozen=True)
class RequestContext:
    ip: str = UNKNOWN_IP
    user_agent: str = ""
    path: str = ""
    user_id: int | None = None
    user_email: str | None = None


_current: ContextVar[RequestContext] = ContextVar("request_context", default=RequestContext())


def current_context() -> RequestContext:
    return _current.get()


def set_context(ctx: RequestContext) -> Token[RequestContext]:
    return _current.set(ctx)


def reset_context(token: Token[RequestContext]) -> None:
    _current.reset(token)


def bind_identity(user_id: int | None, user_email: str | None) -> None:
    """Attach the authenticated identity to the current request context."""
    _current.set(replace(_current.get(), user_id=user_id, user_email=user_email))
