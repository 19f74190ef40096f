"""
SaasKit Sessions - Middleware integration.

Three request-lifecycle behaviours built on SessionManager:
- SessionMiddleware: optional session, never fails the request
- RequireAuthMiddleware: 401 unless an authenticated session is present
- EnsureSessionMiddleware: always provides a session (creates one if needed)

Example:
    >>> stack = MiddlewareStack()
    >>> stack.add(SessionMiddleware(manager), priority=15)
    >>> protected = MiddlewareStack()
    >>> protected.add(RequireAuthMiddleware(manager), priority=15)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from saaskit.faults import Fault
from saaskit.middleware import Handler, RequestCtx
from saaskit.request import Request
from saaskit.response import InternalError, Response, Unauthorized

from .context import with_session

if TYPE_CHECKING:
    from .manager import SessionManager


# Headers of the staging response that must not leak onto the handler's
_STAGING_ONLY_HEADERS = frozenset({"content-type", "content-length"})


class SessionMiddleware:
    """
    Attaches the request's session when there is a valid one.

    Missing, expired or invalid sessions are not errors here: the handler
    simply runs without a session. Activity updates are queued when due.
    """

    def __init__(self, manager: SessionManager):
        self.manager = manager
        self.logger = logging.getLogger("saaskit.middleware.session")

    async def __call__(
        self,
        request: Request,
        ctx: RequestCtx,
        next_handler: Handler,
    ) -> Response:
        try:
            session = await self.manager.get(request)
        except Fault as e:
            self.logger.debug(f"No session for {request.path}: {e.code}")
            return await next_handler(request, ctx)

        with_session(request, session, ctx)
        self.manager.touch_if_due(session)
        return await next_handler(request, ctx)


class RequireAuthMiddleware:
    """
    Short-circuits with 401 unless the request has an authenticated session.

    Activity updates are queued when due, as in SessionMiddleware.
    """

    def __init__(self, manager: SessionManager, message: str = "Unauthorized"):
        self.manager = manager
        self.message = message
        self.logger = logging.getLogger("saaskit.middleware.session")

    async def __call__(
        self,
        request: Request,
        ctx: RequestCtx,
        next_handler: Handler,
    ) -> Response:
        try:
            session = await self.manager.get(request)
        except Fault as e:
            self.logger.debug(f"Rejected {request.method} {request.path}: {e.code}")
            return Unauthorized(self.message)

        if not session.is_authenticated:
            self.logger.debug(f"Rejected {request.method} {request.path}: anonymous session")
            return Unauthorized(self.message)

        with_session(request, session, ctx)
        self.manager.touch_if_due(session)
        return await next_handler(request, ctx)


class EnsureSessionMiddleware:
    """
    Guarantees a session, creating an anonymous one when needed.

    Cookies and headers written while ensuring are carried over onto the
    handler's response. A failure to create a session is an infrastructure
    problem and yields a 500.
    """

    def __init__(self, manager: SessionManager):
        self.manager = manager
        self.logger = logging.getLogger("saaskit.middleware.session")

    async def __call__(
        self,
        request: Request,
        ctx: RequestCtx,
        next_handler: Handler,
    ) -> Response:
        staged = Response()
        try:
            session = await self.manager.ensure(request, staged)
        except Exception as e:
            self.logger.error(f"Failed to ensure session: {e}", exc_info=True)
            return InternalError()

        with_session(request, session, ctx)
        response = await next_handler(request, ctx)
        self._merge_headers(staged, response)
        return response

    @staticmethod
    def _merge_headers(staged: Response, response: Response) -> None:
        for name, value in staged.headers.items():
            if name in _STAGING_ONLY_HEADERS:
                continue
            values = value if isinstance(value, list) else [value]
            if name == "set-cookie":
                # Prepended so cookies the handler set itself win
                existing = response.cookies
                response.unset_header(name)
                for v in values + existing:
                    response.add_header(name, v)
            elif response.get_header(name) is None:
                for v in values:
                    response.add_header(name, v)
