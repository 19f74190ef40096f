"""
Shared test fixtures and helpers for the SaasKit test suite.
"""

from datetime import timedelta
from typing import Any, Dict, List, Optional

import pytest

from saaskit.cookies import CookieManager
from saaskit.request import Request
from saaskit.response import Response
from saaskit.sessions import MemoryStore, SessionConfig, SessionManager


SECRET = "k" * 32
OLD_SECRET = "o" * 32


# ============================================================================
# Request Helpers
# ============================================================================


def make_scope(
    method: str = "GET",
    path: str = "/",
    query_string: str = "",
    headers: Optional[List[tuple]] = None,
    scheme: str = "http",
    client: Optional[tuple] = None,
) -> dict:
    """Build a minimal ASGI HTTP scope."""
    raw_headers = []
    if headers:
        for name, value in headers:
            raw_headers.append(
                (name.encode("latin-1") if isinstance(name, str) else name,
                 value.encode("latin-1") if isinstance(value, str) else value)
            )
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "path": path,
        "raw_path": path.encode("utf-8"),
        "query_string": query_string.encode("utf-8"),
        "headers": raw_headers,
        "scheme": scheme,
        "server": ("127.0.0.1", 8000),
        "client": client or ("127.0.0.1", 12345),
        "root_path": "",
    }


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[List[tuple]] = None,
    cookies: Optional[Dict[str, str]] = None,
    client: Optional[tuple] = None,
    **kwargs,
) -> Request:
    """Build a Request, optionally carrying a Cookie header."""
    headers = list(headers or [])
    if cookies:
        headers.append(("cookie", "; ".join(f"{k}={v}" for k, v in cookies.items())))
    scope = make_scope(method=method, path=path, headers=headers, client=client)
    return Request(scope, **kwargs)


def cookie_pairs(response: Response) -> Dict[str, str]:
    """Map cookie name -> value from a response's Set-Cookie headers (last wins)."""
    pairs: Dict[str, str] = {}
    for header in response.cookies:
        name, _, rest = header.partition("=")
        pairs[name] = rest.split(";", 1)[0]
    return pairs


def cookie_attributes(header: str) -> Dict[str, Any]:
    """Parse one Set-Cookie header's attributes (lower-cased keys)."""
    attrs: Dict[str, Any] = {}
    for part in header.split(";")[1:]:
        key, sep, value = part.strip().partition("=")
        attrs[key.lower()] = value if sep else True
    return attrs


def follow_up(response: Response, **kwargs) -> Request:
    """A request replaying the cookies a response set."""
    return make_request(cookies=cookie_pairs(response), **kwargs)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def cookie_manager() -> CookieManager:
    return CookieManager([SECRET])


@pytest.fixture
def session_config() -> SessionConfig:
    # No sweeper: tests drive delete_expired explicitly
    return SessionConfig(cleanup_interval=timedelta(0))


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def manager(cookie_manager, session_config, store) -> SessionManager:
    return SessionManager(
        store=store,
        config=session_config,
        cookie_manager=cookie_manager,
    )
