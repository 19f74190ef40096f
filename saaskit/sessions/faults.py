"""
SaasKit Sessions - Fault definitions.

Defines session-specific faults that integrate with the Faults system.
All session errors are structured Faults, not bare exceptions, so callers
branch on the fault class (or its ``code``) rather than on messages.
"""

import hashlib

from saaskit.faults.core import Fault, Severity, FaultDomain


FaultDomain.SESSION = FaultDomain("session", "Session lifecycle and storage")


def hash_token(token: str) -> str:
    """Hash a session token for logging (tokens are credentials)."""
    return f"sha256:{hashlib.sha256(token.encode()).hexdigest()[:16]}"


# ============================================================================
# Session Fault Base
# ============================================================================

class SessionFault(Fault):
    """
    Base class for session-related faults.

    All session faults use FaultDomain.SESSION.
    """

    domain = FaultDomain.SESSION
    retryable = False


# ============================================================================
# Lookup / Validation Faults
# ============================================================================

class InvalidSessionFault(SessionFault):
    """
    Session is malformed or failed validation.

    Raised for a missing session or empty token handed to a store, a
    malformed user identifier, and a fingerprint mismatch.
    """

    code = "SESSION_INVALID"
    message = "Invalid session"
    severity = Severity.WARN
    public = True


class SessionExpiredFault(SessionFault):
    """
    Session has expired.

    This is a normal condition and should be handled gracefully.
    The client should re-authenticate or start a new session.
    """

    code = "SESSION_EXPIRED"
    message = "Session has expired"
    severity = Severity.WARN
    public = True

    def __init__(self, token: str | None = None, expires_at: str | None = None, **kwargs):
        super().__init__(**kwargs)
        self.token_hash = hash_token(token) if token else None
        self.expires_at = expires_at


class SessionNotFoundFault(SessionFault):
    """
    No session token was presented, or the store has no record for it.
    """

    code = "SESSION_NOT_FOUND"
    message = "Session not found"
    severity = Severity.INFO
    public = True


class SessionRequiredFault(SessionFault):
    """
    Code that needs a session ran without one attached to the request.

    Indicates a handler mounted without RequireAuth/EnsureSession.
    """

    code = "SESSION_REQUIRED"
    message = "Session required"
    severity = Severity.ERROR


# ============================================================================
# Internal Faults
# ============================================================================

class TokenGenerationFault(SessionFault):
    """The secure random source failed while generating a token."""

    code = "SESSION_TOKEN_GENERATION"
    message = "Failed to generate session token"
    severity = Severity.FATAL


class SessionConfigurationFault(SessionFault):
    """
    Session subsystem is misconfigured.

    Raised eagerly at construction time (e.g. cookie transport requested
    without a cookie manager).
    """

    code = "SESSION_CONFIGURATION"
    message = "Session manager misconfigured"
    severity = Severity.FATAL
