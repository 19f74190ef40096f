"""
SaasKit Sessions - Core types.

Defines fundamental session data structures:
- Session: state container keyed by an opaque token
- generate_token: cryptographically random, URL-safe tokens
- calculate_expiry: the shared idle/max-lifetime expiry rule
- None-safe helpers mirroring the Session API for optional sessions
"""

from __future__ import annotations

import base64
import copy
import hmac
import math
import secrets
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from .faults import TokenGenerationFault


TOKEN_BYTES = 32


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Tokens & Expiry
# ============================================================================

def generate_token() -> str:
    """
    Generate a session token.

    Rules:
    - Never encode meaning (no user ID, no timestamps)
    - Cryptographically random (32 bytes = 256 bits entropy)
    - URL-safe base64 without padding

    Raises:
        TokenGenerationFault: The OS random source is unavailable
    """
    try:
        raw = secrets.token_bytes(TOKEN_BYTES)
    except OSError as e:
        raise TokenGenerationFault(metadata={"cause": str(e)}) from e
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def calculate_expiry(
    created_at: datetime,
    now: datetime,
    idle_timeout: timedelta,
    max_lifetime: timedelta,
) -> datetime:
    """
    Next expiry: the earlier of ``now + idle_timeout`` and
    ``created_at + max_lifetime``.

    Inactivity cuts a session short inside its lifetime; the lifetime caps
    a continuously active session.
    """
    return min(now + idle_timeout, created_at + max_lifetime)


def constant_time_equals(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ."""
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


# ============================================================================
# Session - Core Data Object
# ============================================================================

@dataclass
class Session:
    """
    Core session object.

    The ``token`` is the store lookup key and the value the client carries;
    ``id`` is a stable identifier for correlation (logs, audit) that is
    never used for lookup. A session is authenticated iff ``user_id`` is set.

    Instances handed out by a store are detached copies: mutations become
    durable only through ``store.update``.

    Attributes:
        id: Correlation identifier (uuid4), immutable
        token: Opaque lookup token, rotated on authentication
        user_id: Owner, None while anonymous
        fingerprint: Client fingerprint captured at creation ("" disables checks)
        data: Free-form key/value bag
        expires_at: Session is invalid at or after this instant
        last_activity_at: Last confirmed activity
        created_at: Creation time, anchors the maximum lifetime

    Example:
        >>> session = Session.new(generate_token(), ttl=timedelta(minutes=30))
        >>> session.set("cart_items", 3)
        >>> session.get_int("cart_items")
        (3, True)
    """

    id: uuid.UUID = field(default_factory=uuid.uuid4)
    token: str = ""
    user_id: Optional[uuid.UUID] = None
    fingerprint: str = ""
    data: Optional[dict[str, Any]] = field(default_factory=dict)
    expires_at: datetime = field(default_factory=utcnow)
    last_activity_at: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def new(
        cls,
        token: str,
        user_id: Optional[uuid.UUID] = None,
        fingerprint: str = "",
        ttl: timedelta = timedelta(0),
        now: Optional[datetime] = None,
    ) -> Session:
        """Create a session whose clocks all start at ``now``."""
        if now is None:
            now = utcnow()
        return cls(
            token=token,
            user_id=user_id,
            fingerprint=fingerprint,
            data={},
            expires_at=now + ttl,
            last_activity_at=now,
            created_at=now,
        )

    # ========================================================================
    # State
    # ========================================================================

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """
        Check if session has reached its expiry.

        Args:
            now: Current time (defaults to now, UTC)
        """
        if now is None:
            now = utcnow()
        return now >= self.expires_at

    def touch(self, now: Optional[datetime] = None) -> None:
        """Mark activity (updates last_activity_at)."""
        self.last_activity_at = now or utcnow()

    def validate_fingerprint(self, candidate: str) -> bool:
        """
        True if no fingerprint is bound to the session, or ``candidate``
        matches it exactly.
        """
        if not self.fingerprint:
            return True
        return constant_time_equals(self.fingerprint, candidate)

    # ========================================================================
    # Data Bag
    # ========================================================================

    def get(self, key: str) -> tuple[Any, bool]:
        """Return ``(value, True)`` or ``(None, False)`` when absent."""
        if not self.data or key not in self.data:
            return None, False
        return self.data[key], True

    def get_string(self, key: str) -> tuple[str, bool]:
        value, found = self.get(key)
        if not found or not isinstance(value, str):
            return "", False
        return value, True

    def get_int(self, key: str) -> tuple[int, bool]:
        """
        Integer accessor.

        Floats (as produced by JSON decoding) are truncated to int; bools
        are not treated as integers.
        """
        value, found = self.get(key)
        if not found or isinstance(value, bool):
            return 0, False
        if isinstance(value, int):
            return value, True
        if isinstance(value, float) and math.isfinite(value):
            return int(value), True
        return 0, False

    def get_bool(self, key: str) -> tuple[bool, bool]:
        value, found = self.get(key)
        if not found or not isinstance(value, bool):
            return False, False
        return value, True

    def set(self, key: str, value: Any) -> None:
        """Set data value (allocates the data bag if needed)."""
        if self.data is None:
            self.data = {}
        self.data[key] = value

    def delete(self, key: str) -> None:
        if self.data:
            self.data.pop(key, None)

    def clear(self) -> None:
        """Clear all session data."""
        self.data = {}

    # ========================================================================
    # Copy & Serialization
    # ========================================================================

    def copy(self) -> Session:
        """Detached copy: the data bag is deep-copied, nothing is shared."""
        return Session(
            id=self.id,
            token=self.token,
            user_id=self.user_id,
            fingerprint=self.fingerprint,
            data=copy.deepcopy(self.data) if self.data is not None else {},
            expires_at=self.expires_at,
            last_activity_at=self.last_activity_at,
            created_at=self.created_at,
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Serialize session to a JSON-friendly dictionary (for durable stores).
        """
        return {
            "id": str(self.id),
            "token": self.token,
            "user_id": str(self.user_id) if self.user_id else None,
            "fingerprint": self.fingerprint,
            "data": self.data or {},
            "expires_at": self.expires_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        """
        Deserialize session from dictionary.

        Naive timestamps are taken to be UTC.
        """
        def _parse(value: str) -> datetime:
            parsed = datetime.fromisoformat(value)
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
            return parsed

        user_id = data.get("user_id")
        return cls(
            id=uuid.UUID(data["id"]),
            token=data["token"],
            user_id=uuid.UUID(user_id) if user_id else None,
            fingerprint=data.get("fingerprint", ""),
            data=dict(data.get("data") or {}),
            expires_at=_parse(data["expires_at"]),
            last_activity_at=_parse(data["last_activity_at"]),
            created_at=_parse(data["created_at"]),
        )

    def __repr__(self) -> str:
        # Token omitted: it is a bearer credential
        return (
            f"Session(id={self.id}, user_id={self.user_id}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


# ============================================================================
# None-safe helpers
# ============================================================================
# Handlers often hold ``Optional[Session]`` (e.g. behind the optional session
# middleware). These degrade to False / zero values / no-ops for None.

def is_authenticated(session: Optional[Session]) -> bool:
    return session is not None and session.is_authenticated


def is_expired(session: Optional[Session], now: Optional[datetime] = None) -> bool:
    return session is not None and session.is_expired(now)


def get_value(session: Optional[Session], key: str) -> tuple[Any, bool]:
    if session is None:
        return None, False
    return session.get(key)


def get_string(session: Optional[Session], key: str) -> tuple[str, bool]:
    if session is None:
        return "", False
    return session.get_string(key)


def get_int(session: Optional[Session], key: str) -> tuple[int, bool]:
    if session is None:
        return 0, False
    return session.get_int(key)


def get_bool(session: Optional[Session], key: str) -> tuple[bool, bool]:
    if session is None:
        return False, False
    return session.get_bool(key)


def set_value(session: Optional[Session], key: str, value: Any) -> None:
    if session is not None:
        session.set(key, value)


def delete_value(session: Optional[Session], key: str) -> None:
    if session is not None:
        session.delete(key)


def clear(session: Optional[Session]) -> None:
    if session is not None:
        session.clear()


def touch(session: Optional[Session], now: Optional[datetime] = None) -> None:
    if session is not None:
        session.touch(now)


def validate_fingerprint(session: Optional[Session], candidate: str) -> bool:
    return session is None or session.validate_fingerprint(candidate)
