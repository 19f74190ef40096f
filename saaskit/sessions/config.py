"""
SaasKit Sessions - Configuration.

Timeouts come in two tiers: anonymous sessions are short-lived, authenticated
ones get a longer idle window and lifetime. Every value can be overridden from
``SESSION_*`` environment variables.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, Mapping, Optional, Union

from saaskit.config import ConfigLoader


@dataclass(frozen=True)
class SessionConfig:
    """
    Session manager configuration.

    Attributes:
        cookie_name: Name of the session cookie
        anon_idle_timeout: Inactivity window of an anonymous session
        anon_max_lifetime: Absolute lifetime of an anonymous session
        auth_idle_timeout: Inactivity window of an authenticated session
        auth_max_lifetime: Absolute lifetime of an authenticated session
        activity_update_threshold: Minimum gap between persisted activity updates
        cleanup_interval: Sweep period of the memory store (0 disables it)
        secure_cookies: Force the Secure flag on the session cookie
    """

    cookie_name: str = "sid"
    anon_idle_timeout: timedelta = timedelta(minutes=30)
    anon_max_lifetime: timedelta = timedelta(hours=24)
    auth_idle_timeout: timedelta = timedelta(hours=2)
    auth_max_lifetime: timedelta = timedelta(hours=720)
    activity_update_threshold: timedelta = timedelta(minutes=5)
    cleanup_interval: timedelta = timedelta(minutes=5)
    secure_cookies: bool = False

    def timeouts(self, authenticated: bool) -> tuple[timedelta, timedelta]:
        """Return ``(idle_timeout, max_lifetime)`` for the given tier."""
        if authenticated:
            return self.auth_idle_timeout, self.auth_max_lifetime
        return self.anon_idle_timeout, self.anon_max_lifetime

    def replace(self, **overrides: Any) -> SessionConfig:
        """Copy with individual fields overridden."""
        return dataclasses.replace(self, **overrides)

    @classmethod
    def from_env(
        cls,
        env_file: Optional[Union[str, Path]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> SessionConfig:
        """
        Build config from ``SESSION_*`` variables, falling back to defaults.

        Durations accept ``"30m"``, ``"2h"``, ``"1h30m"`` or plain seconds.

        Raises:
            ConfigError: A variable cannot be parsed
        """
        loader = ConfigLoader.load(env_prefix="SESSION_", env_file=env_file, environ=environ)
        defaults = cls()

        return cls(
            cookie_name=loader.get_raw("cookie_name") or defaults.cookie_name,
            anon_idle_timeout=loader.get_duration("anon_idle_timeout", defaults.anon_idle_timeout),
            anon_max_lifetime=loader.get_duration("anon_max_lifetime", defaults.anon_max_lifetime),
            auth_idle_timeout=loader.get_duration("auth_idle_timeout", defaults.auth_idle_timeout),
            auth_max_lifetime=loader.get_duration("auth_max_lifetime", defaults.auth_max_lifetime),
            activity_update_threshold=loader.get_duration(
                "activity_update_threshold", defaults.activity_update_threshold
            ),
            cleanup_interval=loader.get_duration("cleanup_interval", defaults.cleanup_interval),
            secure_cookies=loader.get_bool("secure_cookies", defaults.secure_cookies),
        )
