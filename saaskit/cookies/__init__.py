"""
SaasKit Cookies - Signed, encrypted and flash cookies with secret rotation.
"""

from .config import CookieConfig, CookieOptions, normalize_samesite
from .faults import (
    CookieFault,
    CookieNotFoundFault,
    DecryptionFailedFault,
    InvalidFormatFault,
    InvalidSignatureFault,
    NoSecretFault,
    SecretTooShortFault,
)
from .manager import FLASH_PREFIX, MIN_SECRET_LENGTH, CookieManager

__all__ = [
    "CookieConfig",
    "CookieOptions",
    "normalize_samesite",
    "CookieManager",
    "FLASH_PREFIX",
    "MIN_SECRET_LENGTH",
    "CookieFault",
    "CookieNotFoundFault",
    "DecryptionFailedFault",
    "InvalidFormatFault",
    "InvalidSignatureFault",
    "NoSecretFault",
    "SecretTooShortFault",
]
