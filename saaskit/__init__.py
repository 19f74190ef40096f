"""
SaasKit - Session and cookie toolkit for async Python web services.

Complete integration of:
- Sessions: Server-side sessions with token rotation and activity tracking
- Cookies: Signed, encrypted and flash cookies with secret rotation
- Faults: Structured error handling with fault domains
- Middleware: Composable async middleware and an ASGI adapter
- Config: Environment and .env driven configuration
"""

__version__ = "0.1.0"

# ============================================================================
# Core
# ============================================================================

from .config import ConfigError, ConfigLoader
from .request import Request
from .response import Response
from ._datastructures import Headers
from .middleware import MiddlewareStack, RequestCtx
from .asgi import ASGIAdapter

# ============================================================================
# Faults
# ============================================================================

from .faults import Fault, FaultDomain, Severity

# ============================================================================
# Cookies & Sessions
# ============================================================================

from .cookies import CookieConfig, CookieManager, CookieOptions
from .sessions import (
    EnsureSessionMiddleware,
    MemoryStore,
    RequireAuthMiddleware,
    Session,
    SessionConfig,
    SessionManager,
    SessionMiddleware,
)
from . import fingerprint

__all__ = [
    "__version__",
    "ConfigError",
    "ConfigLoader",
    "Request",
    "Response",
    "Headers",
    "MiddlewareStack",
    "RequestCtx",
    "ASGIAdapter",
    "Fault",
    "FaultDomain",
    "Severity",
    "CookieConfig",
    "CookieManager",
    "CookieOptions",
    "Session",
    "SessionConfig",
    "SessionManager",
    "MemoryStore",
    "SessionMiddleware",
    "RequireAuthMiddleware",
    "EnsureSessionMiddleware",
    "fingerprint",
]
