"""
SaasKit Faults - Structured fault signals.

Every failure the toolkit surfaces to callers is a typed Fault carrying a
stable code, a domain and a severity, so handlers can branch on the kind of
failure instead of parsing messages.

Core exports:
- Fault: Base fault class
- FaultDomain: Domain taxonomy
- Severity: Severity levels
"""

from .core import (
    DOMAIN_DEFAULTS,
    Fault,
    FaultDomain,
    Severity,
)

__all__ = [
    "DOMAIN_DEFAULTS",
    "Fault",
    "FaultDomain",
    "Severity",
]
