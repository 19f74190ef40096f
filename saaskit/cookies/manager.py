"""
Cookie manager - plain, signed, encrypted and flash cookies.

Signing uses HMAC-SHA256; encryption uses AES-256-GCM from ``cryptography``.
Several secrets may be configured: the first one signs and encrypts, all of
them are tried when verifying or decrypting so secrets can be rotated
without invalidating cookies already issued.
"""

from __future__ import annotations

import binascii
import hashlib
import hmac
import json
import logging
from base64 import urlsafe_b64decode, urlsafe_b64encode
from dataclasses import replace
from secrets import token_bytes
from typing import TYPE_CHECKING, Any, List, Optional, Sequence

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import CookieConfig, CookieOptions
from .faults import (
    CookieNotFoundFault,
    DecryptionFailedFault,
    InvalidFormatFault,
    InvalidSignatureFault,
    NoSecretFault,
    SecretTooShortFault,
)

if TYPE_CHECKING:
    from saaskit.request import Request
    from saaskit.response import Response


MIN_SECRET_LENGTH = 32
FLASH_PREFIX = "__flash_"

_NONCE_SIZE = 12
_TAG_SIZE = 16
_KEY_SIZE = 32


class CookieManager:
    """
    Reads and writes cookies with optional integrity and confidentiality.

    Example:
        >>> manager = CookieManager(["x" * 32], secure=True)
        >>> manager.set_encrypted(response, "sid", token)
        >>> manager.get_encrypted(request, "sid")
    """

    def __init__(
        self,
        secrets: Sequence[str],
        options: Optional[CookieOptions] = None,
        **overrides: Any,
    ):
        """
        Initialize cookie manager.

        Args:
            secrets: Secrets, newest first. Empty entries are ignored.
            options: Default cookie attributes
            **overrides: Individual CookieOptions fields overriding ``options``

        Raises:
            NoSecretFault: No non-empty secret given
            SecretTooShortFault: A secret is shorter than 32 characters
        """
        usable: List[str] = [s for s in (secrets or []) if s]
        if not usable:
            raise NoSecretFault()

        for index, secret in enumerate(usable):
            if len(secret) < MIN_SECRET_LENGTH:
                raise SecretTooShortFault(index, len(secret), MIN_SECRET_LENGTH)

        self._secrets = usable
        self.defaults = replace(options or CookieOptions(), **overrides)
        self.logger = logging.getLogger("saaskit.cookies")

    @classmethod
    def from_config(cls, config: CookieConfig, **overrides: Any) -> "CookieManager":
        """Create a manager from a CookieConfig (e.g. ``CookieConfig.from_env()``)."""
        return cls(config.secrets, config.to_options(), **overrides)

    def _options(self, overrides: dict) -> CookieOptions:
        if not overrides:
            return self.defaults
        return replace(self.defaults, **overrides)

    # ========================================================================
    # Plain cookies
    # ========================================================================

    def set(self, response: Response, name: str, value: str, **overrides: Any) -> None:
        """
        Write a cookie using the manager defaults.

        ``max_age`` follows cookie semantics: 0 omits the attribute (session
        cookie), a negative value expires the cookie immediately.
        """
        opts = self._options(overrides)
        response.set_cookie(
            name,
            value,
            max_age=opts.max_age if opts.max_age != 0 else None,
            path=opts.path,
            domain=opts.domain,
            secure=opts.secure,
            httponly=opts.httponly,
            samesite=opts.samesite,
        )

    def get(self, request: Request, name: str) -> str:
        """
        Read a raw cookie value.

        Raises:
            CookieNotFoundFault: Cookie is absent
        """
        value = request.cookie(name)
        if value is None:
            raise CookieNotFoundFault(name)
        return value

    def delete(self, response: Response, name: str, **overrides: Any) -> None:
        """Expire a cookie (Max-Age=0, Expires in 1970)."""
        opts = self._options(overrides)
        response.delete_cookie(
            name,
            path=opts.path,
            domain=opts.domain,
            secure=opts.secure,
            httponly=opts.httponly,
            samesite=opts.samesite,
        )

    # ========================================================================
    # Signed cookies
    # ========================================================================

    def sign(self, value: str) -> str:
        """Return ``base64(value)|base64(hmac_sha256(value))`` using the newest secret."""
        value_bytes = value.encode("utf-8")
        signature = self._signature(self._secrets[0], value_bytes)
        encoded = urlsafe_b64encode(value_bytes).decode("ascii")
        return f"{encoded}|{signature}"

    def verify(self, signed: str) -> str:
        """
        Verify a signed value against every secret.

        Raises:
            InvalidFormatFault: Value is not ``payload|signature``
            InvalidSignatureFault: No secret produces the signature
        """
        encoded, sep, signature = signed.partition("|")
        if not sep:
            raise InvalidFormatFault()

        try:
            value_bytes = urlsafe_b64decode(encoded.encode("ascii"))
        except (binascii.Error, ValueError):
            raise InvalidFormatFault()

        for secret in self._secrets:
            expected = self._signature(secret, value_bytes)
            if hmac.compare_digest(signature.encode("ascii", "replace"), expected.encode("ascii")):
                try:
                    return value_bytes.decode("utf-8")
                except UnicodeDecodeError:
                    raise InvalidFormatFault()

        self.logger.debug(f"Signed cookie rejected by all {len(self._secrets)} secrets")
        raise InvalidSignatureFault()

    @staticmethod
    def _signature(secret: str, value_bytes: bytes) -> str:
        digest = hmac.new(secret.encode("utf-8"), value_bytes, hashlib.sha256).digest()
        return urlsafe_b64encode(digest).decode("ascii")

    def set_signed(self, response: Response, name: str, value: str, **overrides: Any) -> None:
        self.set(response, name, self.sign(value), **overrides)

    def get_signed(self, request: Request, name: str) -> str:
        return self.verify(self.get(request, name))

    # ========================================================================
    # Encrypted cookies
    # ========================================================================

    def encrypt(self, value: str) -> str:
        """
        Encrypt with AES-256-GCM under the newest secret.

        Output is URL-safe base64 of ``nonce || ciphertext || tag``; a fresh
        random nonce makes every call produce a different string.
        """
        nonce = token_bytes(_NONCE_SIZE)
        sealed = AESGCM(self._key(self._secrets[0])).encrypt(nonce, value.encode("utf-8"), None)
        return urlsafe_b64encode(nonce + sealed).decode("ascii")

    def decrypt(self, encrypted: str) -> str:
        """
        Decrypt a value produced by :meth:`encrypt` with any configured secret.

        Raises:
            InvalidFormatFault: Not base64, or too short to hold nonce and tag
            DecryptionFailedFault: Authentication failed under every secret
        """
        try:
            raw = urlsafe_b64decode(encrypted.encode("ascii"))
        except (binascii.Error, ValueError):
            raise InvalidFormatFault()

        if len(raw) < _NONCE_SIZE + _TAG_SIZE:
            raise InvalidFormatFault()

        nonce, sealed = raw[:_NONCE_SIZE], raw[_NONCE_SIZE:]
        for secret in self._secrets:
            try:
                plaintext = AESGCM(self._key(secret)).decrypt(nonce, sealed, None)
            except InvalidTag:
                continue
            try:
                return plaintext.decode("utf-8")
            except UnicodeDecodeError:
                raise DecryptionFailedFault()

        self.logger.debug(f"Encrypted cookie rejected by all {len(self._secrets)} secrets")
        raise DecryptionFailedFault()

    @staticmethod
    def _key(secret: str) -> bytes:
        # AES-256 needs exactly 32 bytes: the secret's first 32 bytes
        return secret.encode("utf-8")[:_KEY_SIZE]

    def set_encrypted(self, response: Response, name: str, value: str, **overrides: Any) -> None:
        self.set(response, name, self.encrypt(value), **overrides)

    def get_encrypted(self, request: Request, name: str) -> str:
        return self.decrypt(self.get(request, name))

    # ========================================================================
    # Flash cookies
    # ========================================================================

    def set_flash(self, response: Response, key: str, value: Any) -> None:
        """Store a JSON-serializable value for exactly one later read."""
        self.set_encrypted(response, FLASH_PREFIX + key, json.dumps(value))

    def get_flash(self, request: Request, response: Response, key: str) -> Any:
        """
        Read a flash value and expire its cookie.

        Raises:
            CookieNotFoundFault: No flash stored under ``key``
            InvalidFormatFault: Stored payload is not valid JSON
        """
        name = FLASH_PREFIX + key
        data = self.get_encrypted(request, name)

        # Delete before decoding so a replayed request never sees it again
        self.delete(response, name)

        try:
            return json.loads(data)
        except json.JSONDecodeError:
            raise InvalidFormatFault(message="Flash payload is not valid JSON")
