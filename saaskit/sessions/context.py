"""
SaasKit Sessions - Request-scoped session access.

The session middleware attaches the resolved session to the request (and to
the RequestCtx when one is passed); handlers read it back with these helpers.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING, Optional

from .core import Session
from .faults import SessionRequiredFault

if TYPE_CHECKING:
    from saaskit.middleware import RequestCtx
    from saaskit.request import Request


class _SessionKey:
    """Private key type: no other module can produce an equal key."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "<session>"


_SESSION_KEY = _SessionKey()


def with_session(
    request: Request,
    session: Session,
    ctx: Optional[RequestCtx] = None,
) -> None:
    """Attach a session to the request (and its context, if given)."""
    request.state[_SESSION_KEY] = session
    if ctx is not None:
        ctx.session = session


def from_request(request: Request) -> Optional[Session]:
    """Current session, or None when no middleware attached one."""
    return request.state.get(_SESSION_KEY)


def must_from_request(request: Request) -> Session:
    """
    Current session for handlers behind RequireAuth/EnsureSession.

    Raises:
        SessionRequiredFault: No session attached (middleware missing)
    """
    session = from_request(request)
    if session is None:
        raise SessionRequiredFault()
    return session


def user_id_from_request(request: Request) -> Optional[uuid.UUID]:
    """Authenticated user of the current session, or None."""
    session = from_request(request)
    if session is None:
        return None
    return session.user_id
