"""
Cookie faults.

All cookie failures are structured Faults under the ``cookie`` domain.
"""

from saaskit.faults.core import Fault, FaultDomain, Severity


FaultDomain.COOKIE = FaultDomain("cookie", "Cookie signing and encryption")


class CookieFault(Fault):
    """Base class for cookie-related faults."""

    domain = FaultDomain.COOKIE
    severity = Severity.WARN
    retryable = False


class NoSecretFault(CookieFault):
    """No usable secret was provided to the cookie manager."""

    code = "COOKIE_NO_SECRET"
    message = "At least one non-empty secret is required"
    severity = Severity.FATAL


class SecretTooShortFault(CookieFault):
    """A secret is shorter than the minimum accepted length."""

    code = "COOKIE_SECRET_TOO_SHORT"
    message = "Secret is too short"
    severity = Severity.FATAL

    def __init__(self, index: int, length: int, minimum: int, **kwargs):
        super().__init__(
            message=f"Secret {index} has {length} chars, need at least {minimum}",
            metadata={"index": index, "length": length, "minimum": minimum},
            **kwargs,
        )


class CookieNotFoundFault(CookieFault):
    """Requested cookie is not present on the request."""

    code = "COOKIE_NOT_FOUND"
    message = "Cookie not found"
    severity = Severity.INFO
    public = True

    def __init__(self, name: str | None = None, **kwargs):
        metadata = {"cookie": name} if name else None
        super().__init__(metadata=metadata, **kwargs)


class InvalidFormatFault(CookieFault):
    """Cookie value does not have the expected encoded shape."""

    code = "COOKIE_INVALID_FORMAT"
    message = "Invalid cookie format"


class InvalidSignatureFault(CookieFault):
    """Signed cookie failed verification against every secret."""

    code = "COOKIE_INVALID_SIGNATURE"
    message = "Invalid cookie signature"


class DecryptionFailedFault(CookieFault):
    """Encrypted cookie could not be opened with any secret."""

    code = "COOKIE_DECRYPTION_FAILED"
    message = "Cookie decryption failed"
