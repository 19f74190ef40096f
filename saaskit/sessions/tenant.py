"""
SaasKit Sessions - Tenant resolution from session data.

For multi-tenant apps where users switch tenants at runtime, the active
tenant is kept in the session under ``tenant_id``.
"""

from __future__ import annotations

import inspect
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from .core import Session
from .faults import SessionConfigurationFault

if TYPE_CHECKING:
    from saaskit.request import Request


TENANT_KEY = "tenant_id"

SessionGetter = Callable[
    ["Request"],
    Union[Optional[Session], Awaitable[Optional[Session]]],
]


class TenantResolver:
    """
    Reads the tenant identifier from the request's session.

    ``get_session`` may be sync or async, e.g. ``manager.get`` or
    ``saaskit.sessions.from_request``.

    Example:
        >>> resolver = TenantResolver(from_request)
        >>> tenant_id = await resolver.resolve(request)
    """

    def __init__(self, get_session: Optional[SessionGetter], key: str = TENANT_KEY):
        self.get_session = get_session
        self.key = key

    async def resolve(self, request: Request) -> str:
        """
        Return the tenant id, or ``""`` when there is no session or no
        string value under the key.

        Raises:
            SessionConfigurationFault: No session getter configured
        """
        if self.get_session is None:
            raise SessionConfigurationFault(message="Tenant resolver has no session getter")

        result: Any = self.get_session(request)
        if inspect.isawaitable(result):
            result = await result

        if result is None:
            return ""

        tenant_id, found = result.get_string(self.key)
        return tenant_id if found else ""
