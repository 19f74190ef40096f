"""
Request - ASGI request wrapper.

Provides:
- Typed request object wrapping an ASGI scope
- Case-insensitive header access and cookie parsing
- Proxy/trust options for client IP detection
- Per-request ``state`` dict used by middleware to attach values
"""

from __future__ import annotations

import re
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from ._datastructures import Headers


_COOKIE_NAME = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")


def _valid_cookie_value(value: str) -> bool:
    return all(0x20 <= ord(ch) < 0x7F and ch not in '";\\' for ch in value)


def parse_cookie_header(cookie_header: str) -> Dict[str, str]:
    """
    Parse a Cookie request header into name -> value.

    Pairs are parsed independently: a malformed pair (bad name, quote or
    control character in the value, no ``=``) is skipped without affecting
    its neighbours. Surrounding double quotes are stripped. When a name
    repeats, the first occurrence wins.
    """
    cookies: Dict[str, str] = {}
    if not cookie_header:
        return cookies

    for part in cookie_header.split(";"):
        part = part.strip()
        if "=" not in part:
            continue
        name, value = part.split("=", 1)
        name = name.strip()
        value = value.strip()
        if not _COOKIE_NAME.match(name):
            continue
        if len(value) > 1 and value[0] == value[-1] == '"':
            value = value[1:-1]
        if not _valid_cookie_value(value):
            continue
        cookies.setdefault(name, value)

    return cookies


# ============================================================================
# Request Class
# ============================================================================

class Request:
    """
    Request object for the toolkit's middleware and handlers.

    Wraps the ASGI scope lazily: headers and cookies are parsed on first
    access and cached.
    """

    def __init__(
        self,
        scope: Mapping[str, Any],
        receive: Optional[Callable[..., Awaitable[dict]]] = None,
        send: Optional[Callable] = None,
        *,
        trust_proxy: Union[bool, List[str]] = False,
    ):
        """
        Initialize Request.

        Args:
            scope: ASGI scope dict
            receive: ASGI receive callable (optional)
            send: ASGI send callable (optional)
            trust_proxy: Trust proxy headers (True/False or list of proxy IPs)
        """
        self.scope = scope
        self._receive = receive
        self._send = send
        self.trust_proxy = trust_proxy

        # State
        self.state: Dict[Any, Any] = {}

        # Cached values
        self._headers: Optional[Headers] = None
        self._cookies: Optional[Dict[str, str]] = None

    # ========================================================================
    # Basic Properties
    # ========================================================================

    @property
    def method(self) -> str:
        """HTTP method (GET, POST, etc.)."""
        return self.scope.get("method", "GET")

    @property
    def path(self) -> str:
        """Request path (decoded)."""
        return self.scope.get("path", "/")

    @property
    def scheme(self) -> str:
        return self.scope.get("scheme", "http")

    @property
    def client(self) -> Optional[tuple]:
        """Client address (host, port)."""
        return self.scope.get("client")

    # ========================================================================
    # Headers
    # ========================================================================

    @property
    def headers(self) -> Headers:
        """Get parsed headers."""
        if self._headers is None:
            raw_headers = self.scope.get("headers", [])
            self._headers = Headers(raw=list(raw_headers))
        return self._headers

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get single header (case-insensitive)."""
        return self.headers.get(name, default)

    def has_header(self, name: str) -> bool:
        """Check if header exists."""
        return self.headers.has(name)

    # ========================================================================
    # Cookies
    # ========================================================================

    @property
    def cookies(self) -> Mapping[str, str]:
        """Get parsed cookies."""
        if self._cookies is None:
            self._cookies = parse_cookie_header(self.header("cookie", ""))
        return self._cookies

    def cookie(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get single cookie value."""
        return self.cookies.get(name, default)

    # ========================================================================
    # Client IP (with proxy support)
    # ========================================================================

    def client_ip(self) -> str:
        """
        Get client IP address.

        Respects trust_proxy configuration to parse forwarded headers.

        Returns:
            Client IP address as string
        """
        client = self.client
        direct_ip = client[0] if client else "0.0.0.0"

        if not self.trust_proxy:
            return direct_ip

        if isinstance(self.trust_proxy, list) and direct_ip not in self.trust_proxy:
            return direct_ip

        # X-Forwarded-For can be a comma-separated list; first entry is the client
        forwarded_for = self.header("x-forwarded-for")
        if forwarded_for:
            ips = [ip.strip() for ip in forwarded_for.split(",") if ip.strip()]
            if ips:
                return ips[0]

        real_ip = self.header("x-real-ip")
        if real_ip:
            return real_ip.strip()

        # Forwarded header (RFC 7239)
        forwarded = self.header("forwarded")
        if forwarded:
            match = re.search(r'for=([^;,]+)', forwarded)
            if match:
                ip_part = match.group(1).strip('"')
                if ":" in ip_part and "[" not in ip_part:
                    ip_part = ip_part.rsplit(":", 1)[0]
                return ip_part.strip("[]")

        return direct_ip

    def __repr__(self) -> str:
        return f"<Request {self.method} {self.path}>"
