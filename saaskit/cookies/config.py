"""
Cookie configuration.

Cookie defaults can be declared in code or read from ``COOKIE_*``
environment variables (optionally from a ``.env`` file).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, List, Mapping, Optional, Union

from saaskit.config import ConfigError, ConfigLoader


# Numeric SameSite values follow the net/http SameSite enum: 1 default, 2 Lax, 3 Strict, 4 None
_SAMESITE_CODES = {
    1: None,
    2: "Lax",
    3: "Strict",
    4: "None",
}


def normalize_samesite(value: Any) -> Optional[str]:
    """
    Normalize a SameSite setting to ``"Lax"``, ``"Strict"``, ``"None"`` or None.

    Accepts case-insensitive names or the numeric codes 1-4.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ConfigError(f"Invalid SameSite value: {value!r}")
    if isinstance(value, int):
        if value not in _SAMESITE_CODES:
            raise ConfigError(f"Invalid SameSite value: {value!r}")
        return _SAMESITE_CODES[value]

    text = str(value).strip().lower()
    if text.isdigit():
        return normalize_samesite(int(text))
    if text in ("lax", "strict", "none"):
        return text.capitalize()
    if text == "default":
        return None
    raise ConfigError(f"Invalid SameSite value: {value!r}")


@dataclass
class CookieOptions:
    """
    Attributes applied to every cookie a manager writes.

    ``max_age`` of 0 means a session cookie (no Max-Age attribute).
    """

    path: str = "/"
    domain: Optional[str] = None
    max_age: int = 0
    secure: bool = False
    httponly: bool = True
    samesite: Optional[str] = "Lax"


@dataclass
class CookieConfig:
    """
    Cookie manager configuration.

    Attributes:
        secrets: Signing/encryption secrets, newest first (old ones keep
            previously issued cookies readable during rotation)
        path: Cookie Path attribute
        domain: Cookie Domain attribute
        max_age: Default Max-Age in seconds (0 = session cookie)
        secure: Secure flag
        httponly: HttpOnly flag
        samesite: SameSite policy
    """

    secrets: List[str] = field(default_factory=list)
    path: str = "/"
    domain: str = ""
    max_age: int = 0
    secure: bool = False
    httponly: bool = True
    samesite: Optional[str] = "Lax"

    @staticmethod
    def parse_secrets(raw: Union[str, List[str], None]) -> List[str]:
        """Split a comma-separated secrets string, dropping blanks."""
        if not raw:
            return []
        parts = raw.split(",") if isinstance(raw, str) else raw
        return [part.strip() for part in parts if part and part.strip()]

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "CookieConfig":
        """
        Build config from ``COOKIE_*`` variables.

        Reads COOKIE_SECRETS, COOKIE_PATH, COOKIE_DOMAIN, COOKIE_MAX_AGE,
        COOKIE_SECURE, COOKIE_HTTP_ONLY and COOKIE_SAME_SITE.
        """
        loader = ConfigLoader.load(env_prefix="COOKIE_", env_file=env_file, environ=environ)
        defaults = cls()

        return cls(
            # Secrets are opaque: read them unparsed
            secrets=cls.parse_secrets(loader.get_raw("secrets")),
            path=loader.get_raw("path") or defaults.path,
            domain=loader.get_raw("domain", defaults.domain),
            max_age=loader.get_int("max_age", defaults.max_age),
            secure=loader.get_bool("secure", defaults.secure),
            httponly=loader.get_bool("http_only", defaults.httponly),
            samesite=normalize_samesite(loader.get("same_site", defaults.samesite)),
        )

    def to_options(self) -> CookieOptions:
        return CookieOptions(
            path=self.path or "/",
            domain=self.domain or None,
            max_age=self.max_age,
            secure=self.secure,
            httponly=self.httponly,
            samesite=normalize_samesite(self.samesite),
        )
