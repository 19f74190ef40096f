"""
SaasKit Sessions - Server-side session management.

Sessions are server-side records keyed by an opaque random token. The token
travels to the client encrypted in a cookie (or in a header for APIs); the
record itself never leaves the store.

- Anonymous sessions are short-lived; authenticating rotates the token
- Expiry is the earlier of an idle deadline and an absolute lifetime
- Optional fingerprint binding rejects tokens replayed from another client
- Activity updates are batched off the request path
"""

from .config import SessionConfig

from .core import (
    Session,
    calculate_expiry,
    generate_token,
    get_bool,
    get_int,
    get_string,
    get_value,
    is_authenticated,
    is_expired,
    set_value,
    delete_value,
    validate_fingerprint,
)

from .store import (
    MemoryStore,
    SessionStore,
    StoreStats,
)

from .transport import (
    CompositeTransport,
    CookieTransport,
    HeaderTransport,
    SessionTransport,
)

from .manager import FingerprintFunc, SessionManager

from .context import (
    from_request,
    must_from_request,
    user_id_from_request,
    with_session,
)

from .middleware import (
    EnsureSessionMiddleware,
    RequireAuthMiddleware,
    SessionMiddleware,
)

from .tenant import TenantResolver

from .faults import (
    InvalidSessionFault,
    SessionConfigurationFault,
    SessionExpiredFault,
    SessionFault,
    SessionNotFoundFault,
    SessionRequiredFault,
    TokenGenerationFault,
)

__all__ = [
    # Core
    "Session",
    "SessionConfig",
    "generate_token",
    "calculate_expiry",
    "is_authenticated",
    "is_expired",
    "get_value",
    "get_string",
    "get_int",
    "get_bool",
    "set_value",
    "delete_value",
    "validate_fingerprint",
    # Store
    "SessionStore",
    "MemoryStore",
    "StoreStats",
    # Transport
    "SessionTransport",
    "CookieTransport",
    "HeaderTransport",
    "CompositeTransport",
    # Manager
    "SessionManager",
    "FingerprintFunc",
    # Context & middleware
    "with_session",
    "from_request",
    "must_from_request",
    "user_id_from_request",
    "SessionMiddleware",
    "RequireAuthMiddleware",
    "EnsureSessionMiddleware",
    "TenantResolver",
    # Faults
    "SessionFault",
    "InvalidSessionFault",
    "SessionExpiredFault",
    "SessionNotFoundFault",
    "SessionRequiredFault",
    "TokenGenerationFault",
    "SessionConfigurationFault",
]
