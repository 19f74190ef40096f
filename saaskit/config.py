"""
Config system - Environment-driven configuration.

Values are read from (later overrides earlier):
1. A ``.env`` file (parsed with python-dotenv, never exported to os.environ)
2. Process environment variables
3. Manual overrides

Only keys carrying the loader's prefix are kept. ``SESSION_AUTH_IDLE_TIMEOUT``
with prefix ``SESSION_`` becomes ``auth_idle_timeout``; a double underscore
nests (``APP_DB__HOST`` -> ``db.host``).
"""

from __future__ import annotations

import json
import math
import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import dotenv_values


class ConfigError(Exception):
    """Raised when configuration validation fails."""
    pass


_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")

_DURATION_UNITS = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def _seconds(seconds: float, raw: Any) -> timedelta:
    """Convert seconds to a timedelta; non-finite or out-of-range is a ConfigError."""
    if not math.isfinite(seconds):
        raise ConfigError(f"Invalid duration: {raw!r}")
    try:
        return timedelta(seconds=seconds)
    except OverflowError:
        raise ConfigError(f"Duration out of range: {raw!r}")


def parse_duration(value: Union[str, int, float, timedelta]) -> timedelta:
    """
    Parse a duration.

    Accepts a ``timedelta``, a number of seconds, or a compound string such
    as ``"30m"``, ``"2h"``, ``"1h30m"``, ``"1.5s"`` or ``"250ms"``.

    Raises:
        ConfigError: If the value cannot be interpreted as a duration
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        return _seconds(value, value)

    text = str(value).strip()
    if not text:
        raise ConfigError("Invalid duration: empty string")

    try:
        seconds = float(text)
    except ValueError:
        pass
    else:
        return _seconds(seconds, value)

    sign = 1
    if text[0] in "+-":
        sign = -1 if text[0] == "-" else 1
        text = text[1:]

    pos = 0
    seconds = 0.0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            raise ConfigError(f"Invalid duration: {value!r}")
        seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()

    if pos == 0 or pos != len(text):
        raise ConfigError(f"Invalid duration: {value!r}")

    return _seconds(sign * seconds, value)


def parse_bool(value: Any) -> bool:
    """Interpret a config value as a boolean."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value).strip().lower()
    if text in ("true", "yes", "on", "1", "t", "y"):
        return True
    if text in ("false", "no", "off", "0", "f", "n", ""):
        return False
    raise ConfigError(f"Invalid boolean: {value!r}")


class ConfigLoader:
    """
    Loads and merges configuration with precedence:
    overrides > environment variables > .env file
    """

    def __init__(self, env_prefix: str = ""):
        self.env_prefix = env_prefix
        self.config_data: Dict[str, Any] = {}
        # Unparsed strings keyed by the lower-cased, unprefixed name
        self.raw_data: Dict[str, str] = {}

    @classmethod
    def load(
        cls,
        env_prefix: str = "",
        env_file: Optional[Union[str, Path]] = None,
        overrides: Optional[Dict[str, Any]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ConfigLoader":
        """
        Load configuration from the .env file, the environment and overrides.

        Args:
            env_prefix: Prefix a variable must carry to be picked up
            env_file: Path to .env file (missing file is ignored)
            overrides: Manual overrides (highest precedence)
            environ: Environment mapping (defaults to os.environ)

        Returns:
            Configured ConfigLoader instance
        """
        loader = cls(env_prefix=env_prefix)

        if env_file:
            loader._load_env_file(env_file)

        loader._load_from_env(os.environ if environ is None else environ)

        if overrides:
            loader._merge_dict(loader.config_data, overrides)

        return loader

    def _load_env_file(self, path: Union[str, Path]) -> None:
        """Load config from .env file."""
        env_path = Path(path)
        if not env_path.exists():
            return

        for key, value in dotenv_values(env_path).items():
            if value is None:
                continue
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _load_from_env(self, environ: Mapping[str, str]) -> None:
        """Load config from environment variables."""
        for key, value in environ.items():
            if key.startswith(self.env_prefix):
                self._set_nested(key, value)

    def _set_nested(self, key: str, value: str) -> None:
        """Convert PREFIX_DB__MAX_SIZE to {"db": {"max_size": ...}}."""
        key = key[len(self.env_prefix):]
        self.raw_data[key.lower()] = value

        parts = key.lower().split("__")

        current = self.config_data
        for part in parts[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        current[parts[-1]] = self._parse_value(value)

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        # "1"/"0" stay numeric so durations in plain seconds survive
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value:
                return float(value)
            return int(value)
        except ValueError:
            pass

        if value.startswith(("{", "[")):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                pass

        return value

    def _merge_dict(self, target: dict, source: dict) -> None:
        """Deep merge source into target."""
        for key, value in source.items():
            if key in target and isinstance(target[key], dict) and isinstance(value, dict):
                self._merge_dict(target[key], value)
            else:
                target[key] = value

    def get(self, path: str, default: Any = None) -> Any:
        """Get config value by dot-separated path."""
        current = self.config_data

        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
            else:
                return default

        return current

    def get_raw(self, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get the unparsed string for an unprefixed key (``"max_age"``)."""
        return self.raw_data.get(key.lower(), default)

    def get_str(self, path: str, default: str = "") -> str:
        value = self.get(path)
        return default if value is None else str(value)

    def get_int(self, path: str, default: int = 0) -> int:
        value = self.get(path)
        if value is None:
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid integer for {path!r}: {value!r}")

    def get_bool(self, path: str, default: bool = False) -> bool:
        value = self.get(path)
        if value is None:
            return default
        try:
            return parse_bool(value)
        except ConfigError:
            raise ConfigError(f"Invalid boolean for {path!r}: {value!r}")

    def get_duration(self, path: str, default: timedelta) -> timedelta:
        value = self.get(path)
        if value is None:
            return default
        try:
            return parse_duration(value)
        except ConfigError:
            raise ConfigError(f"Invalid duration for {path!r}: {value!r}")
