"""
SaasKit Sessions - Transport adapters.

Handles session token extraction and injection across different transports:
- CookieTransport: encrypted HTTP cookie (browsers)
- HeaderTransport: custom header with prefix (APIs, mobile apps)
- CompositeTransport: ordered fallback across several transports
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, List, Optional, Protocol

from saaskit.cookies import CookieFault, CookieManager
from saaskit.faults import Fault

from .core import utcnow
from .faults import SessionConfigurationFault, SessionNotFoundFault

if TYPE_CHECKING:
    from saaskit.request import Request
    from saaskit.response import Response

logger = logging.getLogger("saaskit.sessions.transport")


# ============================================================================
# SessionTransport Protocol
# ============================================================================

class SessionTransport(Protocol):
    """
    Abstract transport interface for session token delivery.

    Transports are responsible for:
    - Extracting the token from requests
    - Writing the token to responses
    - Clearing the token from responses

    Transports do NOT validate sessions or talk to the store
    (that's SessionManager).
    """

    def get_token(self, request: Request) -> str:
        """
        Extract the session token from a request.

        Raises:
            SessionNotFoundFault: No token present, or it cannot be decoded
        """
        ...

    def set_token(self, response: Response, token: str, ttl: timedelta) -> None:
        """
        Write the token so the next request carries it.

        Args:
            response: Outgoing response
            token: Session token
            ttl: Lifetime hint (cookie Max-Age / advisory expiry header)
        """
        ...

    def clear_token(self, response: Response) -> None:
        """Remove or invalidate the token on the client (logout)."""
        ...


# ============================================================================
# CookieTransport - Encrypted HTTP Cookie
# ============================================================================

class CookieTransport:
    """
    Cookie-based session transport.

    The token is encrypted (AES-GCM) by the cookie manager, so the raw store
    key never appears on the wire. Attributes default to the manager's
    (HttpOnly, Path=/, SameSite=Lax); ``secure=True`` forces the Secure flag.

    Example:
        >>> transport = CookieTransport(cookie_manager, "sid", secure=True)
        >>> transport.set_token(response, token, timedelta(minutes=30))
    """

    def __init__(
        self,
        cookie_manager: CookieManager,
        cookie_name: str = "sid",
        secure: bool = False,
        **cookie_options: Any,
    ):
        """
        Initialize cookie transport.

        Args:
            cookie_manager: Cookie manager used to encrypt the token
            cookie_name: Name of the session cookie
            secure: Force the Secure attribute
            **cookie_options: CookieOptions overrides (domain, samesite, ...)

        Raises:
            SessionConfigurationFault: No cookie manager given
        """
        if cookie_manager is None:
            raise SessionConfigurationFault(
                message="Cookie transport requires a cookie manager"
            )
        self.cookie_manager = cookie_manager
        self.cookie_name = cookie_name or "sid"
        self.options = dict(cookie_options)
        if secure:
            self.options["secure"] = True

    def get_token(self, request: Request) -> str:
        try:
            token = self.cookie_manager.get_encrypted(request, self.cookie_name)
        except CookieFault as e:
            # Missing, tampered or foreign-key cookies all mean "no session"
            logger.debug(f"Session cookie unusable: {e.code}")
            raise SessionNotFoundFault()

        if not token:
            raise SessionNotFoundFault()
        return token

    def set_token(self, response: Response, token: str, ttl: timedelta) -> None:
        options = {**self.options, "max_age": int(ttl.total_seconds())}
        self.cookie_manager.set_encrypted(response, self.cookie_name, token, **options)

    def clear_token(self, response: Response) -> None:
        overrides = {k: v for k, v in self.options.items() if k != "max_age"}
        self.cookie_manager.delete(response, self.cookie_name, **overrides)


# ============================================================================
# HeaderTransport - Custom Header
# ============================================================================

class HeaderTransport:
    """
    Header-based session transport (for APIs).

    Stateless towards the client: the caller keeps the header value and
    replays it. When a positive TTL is given, ``<Header>-Expires`` carries
    an advisory RFC 3339 expiry.

    Example:
        >>> transport = HeaderTransport()  # Authorization: Bearer <token>
        >>> transport = HeaderTransport("X-Session-Token", prefix="")
    """

    def __init__(self, header_name: str = "Authorization", prefix: str = "Bearer "):
        self.header_name = header_name or "Authorization"
        self.prefix = prefix

    @property
    def expires_header(self) -> str:
        return f"{self.header_name}-Expires"

    def get_token(self, request: Request) -> str:
        value = request.header(self.header_name) or ""
        if self.prefix and value.startswith(self.prefix):
            value = value[len(self.prefix):]

        token = value.strip()
        if not token:
            raise SessionNotFoundFault()
        return token

    def set_token(self, response: Response, token: str, ttl: timedelta) -> None:
        response.set_header(self.header_name, f"{self.prefix}{token}")
        if ttl > timedelta(0):
            expires_at = utcnow() + ttl
            response.set_header(self.expires_header, expires_at.strftime("%Y-%m-%dT%H:%M:%SZ"))

    def clear_token(self, response: Response) -> None:
        response.unset_header(self.header_name)
        response.unset_header(self.expires_header)


# ============================================================================
# CompositeTransport - Ordered Fallback
# ============================================================================

class CompositeTransport:
    """
    Tries several transports in order.

    Reading is first-match-wins, which allows migrating clients from one
    mechanism to another. Writing and clearing fan out to every transport;
    a failure does not stop the others and the last one is re-raised.

    Example:
        >>> transport = CompositeTransport(
        ...     HeaderTransport(),
        ...     CookieTransport(cookie_manager),
        ... )
    """

    def __init__(self, *transports: SessionTransport):
        if not transports:
            raise SessionConfigurationFault(
                message="Composite transport requires at least one transport"
            )
        self.transports: List[SessionTransport] = list(transports)

    def get_token(self, request: Request) -> str:
        for transport in self.transports:
            try:
                token = transport.get_token(request)
            except Fault as e:
                logger.debug(f"{type(transport).__name__} yielded no token: {e.code}")
                continue
            if token:
                return token
        raise SessionNotFoundFault()

    def set_token(self, response: Response, token: str, ttl: timedelta) -> None:
        last_error: Optional[Exception] = None
        for transport in self.transports:
            try:
                transport.set_token(response, token, ttl)
            except Exception as e:
                logger.warning(f"{type(transport).__name__} failed to set token: {e}")
                last_error = e
        if last_error is not None:
            raise last_error

    def clear_token(self, response: Response) -> None:
        last_error: Optional[Exception] = None
        for transport in self.transports:
            try:
                transport.clear_token(response)
            except Exception as e:
                logger.warning(f"{type(transport).__name__} failed to clear token: {e}")
                last_error = e
        if last_error is not None:
            raise last_error
