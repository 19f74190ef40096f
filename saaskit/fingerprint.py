"""
Request fingerprinting.

A fingerprint is a short hash over request attributes that stay stable for
one browser/device: User-Agent, Accept headers, client IP and which of a
fixed set of stable headers are present. Binding a session to it makes a
stolen token harder to replay from another client.

``generate`` has the ``(request) -> str`` shape expected by
``SessionManager(fingerprint_func=...)``.
"""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from saaskit.request import Request


# Headers whose presence is stable for a given client
STABLE_HEADERS = frozenset({
    "user-agent",
    "accept",
    "accept-language",
    "accept-encoding",
    "connection",
    "upgrade-insecure-requests",
    "sec-fetch-dest",
    "sec-fetch-mode",
    "sec-fetch-site",
    "cache-control",
})


def header_signature(request: Request) -> str:
    """Sorted, comma-joined names of the stable headers present on the request."""
    names = {name.lower() for name in request.headers.keys()}
    return ",".join(sorted(names & STABLE_HEADERS))


def generate(request: Request) -> str:
    """
    Build a 32-character hex fingerprint for the request.

    Empty components are skipped before hashing.
    """
    components = [
        request.header("user-agent", ""),
        request.header("accept-language", ""),
        request.header("accept-encoding", ""),
        request.header("accept", ""),
        request.client_ip(),
        header_signature(request),
    ]
    combined = "|".join(c for c in components if c)
    return hashlib.sha256(combined.encode("utf-8")).digest()[:16].hex()


def validate(request: Request, fingerprint: str) -> bool:
    """Check the request against a stored fingerprint in constant time."""
    return hmac.compare_digest(generate(request).encode("utf-8"), fingerprint.encode("utf-8"))
