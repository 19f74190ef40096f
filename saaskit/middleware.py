"""
Middleware system - Composable, async-first middleware.

A middleware is any async callable ``(request, ctx, next_handler)`` that
returns a Response. ``MiddlewareStack`` orders them by priority and wraps a
final handler into a single chain.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, TYPE_CHECKING

from .request import Request
from .response import Response

if TYPE_CHECKING:
    from .sessions.core import Session


# ============================================================================
# Request Context
# ============================================================================

@dataclass
class RequestCtx:
    """
    Request context passed through the middleware chain.

    Attributes:
        request: The HTTP request
        session: Active session (set by the session middleware)
        state: Additional state dictionary
    """

    request: Request
    session: Optional["Session"] = None
    state: Dict[str, Any] = field(default_factory=dict)

    @property
    def path(self) -> str:
        return self.request.path

    @property
    def method(self) -> str:
        return self.request.method


# Type aliases
Handler = Callable[[Request, RequestCtx], Awaitable[Response]]
Middleware = Callable[[Request, RequestCtx, Handler], Awaitable[Response]]


# ============================================================================
# Middleware Stack
# ============================================================================

@dataclass
class MiddlewareDescriptor:
    """Descriptor for middleware registration."""
    middleware: Middleware
    priority: int
    name: str


class MiddlewareStack:
    """
    Manages middleware stack with deterministic ordering.

    Lower priority runs first (outermost). Ties keep registration order.
    """

    def __init__(self):
        self.middlewares: List[MiddlewareDescriptor] = []

    def add(
        self,
        middleware: Middleware,
        priority: int = 50,
        name: Optional[str] = None,
    ) -> None:
        """Add middleware to stack."""
        if name is None:
            name = getattr(middleware, "__name__", type(middleware).__name__)

        self.middlewares.append(
            MiddlewareDescriptor(middleware=middleware, priority=priority, name=name)
        )

    def build_handler(self, final_handler: Handler) -> Handler:
        """Build middleware chain wrapping the final handler."""
        ordered = sorted(self.middlewares, key=lambda desc: desc.priority)

        handler = final_handler
        # Wrap in reverse order so first middleware is outermost
        for desc in reversed(ordered):
            handler = self._wrap_middleware(desc.middleware, handler)

        return handler

    @staticmethod
    def _wrap_middleware(middleware: Middleware, next_handler: Handler) -> Handler:
        async def wrapped(request: Request, ctx: RequestCtx) -> Response:
            return await middleware(request, ctx, next_handler)

        return wrapped

    def __len__(self) -> int:
        return len(self.middlewares)
