"""
ASGI adapter - Runs a handler behind a middleware stack as an ASGI app.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List, Optional

from .middleware import Handler, MiddlewareStack, RequestCtx
from .request import Request
from .response import Response


class ASGIAdapter:
    """
    Minimal ASGI 3 application.

    Builds the middleware chain once, wraps every HTTP scope in a Request
    and a RequestCtx, and runs shutdown hooks on ``lifespan.shutdown`` so
    background workers (session activity updates, store sweepers) stop
    cleanly.

    Example:
        >>> stack = MiddlewareStack()
        >>> stack.add(SessionMiddleware(manager), priority=10)
        >>> app = ASGIAdapter(handler, stack, on_shutdown=[manager.close])
    """

    def __init__(
        self,
        handler: Handler,
        middleware_stack: Optional[MiddlewareStack] = None,
        *,
        on_shutdown: Optional[List[Callable[[], Awaitable[None]]]] = None,
        trust_proxy: bool = False,
    ):
        self.middleware_stack = middleware_stack or MiddlewareStack()
        self.on_shutdown = list(on_shutdown or [])
        self.trust_proxy = trust_proxy
        self.logger = logging.getLogger("saaskit.asgi")
        self._chain = self.middleware_stack.build_handler(handler)

    async def __call__(self, scope: dict, receive: Callable, send: Callable):
        scope_type = scope["type"]
        if scope_type == "http":
            await self.handle_http(scope, receive, send)
        elif scope_type == "lifespan":
            await self.handle_lifespan(scope, receive, send)

    async def handle_http(self, scope: dict, receive: Callable, send: Callable):
        request = Request(scope, receive, send, trust_proxy=self.trust_proxy)
        ctx = RequestCtx(request=request)

        try:
            response = await self._chain(request, ctx)
        except Exception as e:
            self.logger.error(f"Critical error in request pipeline: {e}", exc_info=True)
            response = Response.json({"error": "Internal server error"}, status=500)

        await response.send_asgi(send)

    async def handle_lifespan(self, scope: dict, receive: Callable, send: Callable):
        """Handle ASGI lifespan events."""
        while True:
            message = await receive()

            if message["type"] == "lifespan.startup":
                await send({"type": "lifespan.startup.complete"})

            elif message["type"] == "lifespan.shutdown":
                try:
                    for hook in self.on_shutdown:
                        await hook()
                    await send({"type": "lifespan.shutdown.complete"})
                except Exception as e:
                    self.logger.error(f"Shutdown error: {e}", exc_info=True)
                    await send({"type": "lifespan.shutdown.failed", "message": str(e)})
                break
