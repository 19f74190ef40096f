"""
Response - HTTP response builder for ASGI.

Provides:
- ASGI 3 compliant response sending
- bytes, str and dict/list (JSON) bodies
- RFC-compliant cookies (multiple Set-Cookie headers)
- Header validation against injection
- Fault to HTTP status mapping
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from email.utils import formatdate
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from .faults import Fault, FaultDomain, Severity


# ============================================================================
# Response Faults
# ============================================================================

class InvalidHeaderError(Fault):
    """Invalid header name or value (injection attempt)."""
    code = "INVALID_HEADER"
    message = "Invalid header"
    domain = FaultDomain.SECURITY
    severity = Severity.WARN


# ============================================================================
# Main Response Class
# ============================================================================

class Response:
    """
    HTTP response with headers, cookies and an ASGI send helper.

    Header names are stored lower-cased. A header with several values
    (e.g. ``set-cookie``) is stored as a list and emitted once per value.
    """

    def __init__(
        self,
        content: Union[bytes, str, Mapping, Sequence] = b"",
        status: int = 200,
        headers: Optional[Mapping[str, Union[str, Sequence[str]]]] = None,
        media_type: Optional[str] = None,
        *,
        encoding: str = "utf-8",
        validate_headers: bool = True,
    ):
        """
        Initialize Response.

        Args:
            content: Response body (bytes, str, dict, list)
            status: HTTP status code
            headers: Response headers (supports multi-value)
            media_type: Content-Type override
            encoding: Text encoding (default utf-8)
            validate_headers: Validate headers against injection attacks
        """
        self.status = status
        self._content = content
        self.encoding = encoding
        self.validate_headers = validate_headers

        self._headers: Dict[str, Union[str, List[str]]] = {}
        if headers:
            for key, value in headers.items():
                if isinstance(value, (list, tuple)):
                    self._headers[key.lower()] = list(value)
                else:
                    self._headers[key.lower()] = value

        if media_type:
            self._headers["content-type"] = media_type
        elif "content-type" not in self._headers:
            self._headers["content-type"] = self._detect_media_type(content)

    @property
    def headers(self) -> Dict[str, Union[str, List[str]]]:
        """Get response headers."""
        return self._headers

    @property
    def body(self) -> bytes:
        """Encoded response body."""
        return self._encode_body(self._content)

    def _detect_media_type(self, content: Any) -> str:
        if isinstance(content, (dict, list)):
            return "application/json; charset=utf-8"
        if isinstance(content, str):
            return "text/plain; charset=utf-8"
        return "application/octet-stream"

    # ========================================================================
    # Factory Methods
    # ========================================================================

    @classmethod
    def json(
        cls,
        obj: Any,
        status: int = 200,
        *,
        headers: Optional[Mapping[str, str]] = None,
    ) -> "Response":
        """
        Create JSON response.

        Args:
            obj: Object to serialize
            status: HTTP status
            headers: Additional headers

        Returns:
            Response with JSON content
        """
        content = json.dumps(obj, default=str).encode("utf-8")
        return cls(
            content=content,
            status=status,
            headers=headers,
            media_type="application/json; charset=utf-8",
        )

    @classmethod
    def text(cls, content: str, status: int = 200, **kwargs) -> "Response":
        """Create plain text response."""
        return cls(
            content=content,
            status=status,
            media_type="text/plain; charset=utf-8",
            **kwargs
        )

    @classmethod
    def from_fault(cls, fault: Fault, *, include_details: bool = False) -> "Response":
        """
        Create Response from Fault with appropriate status code.

        Args:
            fault: Fault object
            include_details: Include fault metadata in response

        Returns:
            JSON response with fault information
        """
        status_map = {
            "SESSION_NOT_FOUND": 401,
            "SESSION_EXPIRED": 401,
            "SESSION_INVALID": 401,
            "SESSION_REQUIRED": 401,
            "COOKIE_NOT_FOUND": 400,
            "INVALID_HEADER": 400,
        }
        status = status_map.get(fault.code, 500)

        # Non-public faults never leak their message
        body = {
            "error": fault.code,
            "message": fault.message if fault.public else "Internal Server Error",
        }
        if include_details and fault.public:
            body["details"] = fault.metadata

        return cls.json(body, status=status)

    # ========================================================================
    # Cookie Helpers
    # ========================================================================

    def set_cookie(
        self,
        name: str,
        value: str,
        *,
        max_age: Optional[int] = None,
        expires: Optional[datetime] = None,
        path: Optional[str] = "/",
        domain: Optional[str] = None,
        secure: bool = True,
        httponly: bool = True,
        samesite: Optional[str] = "Lax",
    ) -> None:
        """
        Set a cookie.

        Args:
            name: Cookie name
            value: Cookie value
            max_age: Max age in seconds (0 or negative expires immediately)
            expires: Expiration datetime
            path: Cookie path
            domain: Cookie domain
            secure: Secure flag
            httponly: HttpOnly flag
            samesite: SameSite policy (Strict, Lax, None)
        """
        cookie_parts = [f"{name}={value}"]

        if max_age is not None:
            cookie_parts.append(f"Max-Age={max(max_age, 0)}")

        if expires:
            expires_str = formatdate(expires.timestamp(), usegmt=True)
            cookie_parts.append(f"Expires={expires_str}")

        if path:
            cookie_parts.append(f"Path={path}")

        if domain:
            cookie_parts.append(f"Domain={domain}")

        if secure:
            cookie_parts.append("Secure")

        if httponly:
            cookie_parts.append("HttpOnly")

        if samesite:
            cookie_parts.append(f"SameSite={samesite}")

        self.add_header("set-cookie", "; ".join(cookie_parts))

    def delete_cookie(
        self,
        name: str,
        path: Optional[str] = "/",
        domain: Optional[str] = None,
        *,
        secure: bool = False,
        httponly: bool = False,
        samesite: Optional[str] = None,
    ) -> None:
        """
        Delete a cookie by setting Max-Age=0 and an expiry in the past.

        Args:
            name: Cookie name
            path: Cookie path
            domain: Cookie domain
            secure: Secure flag (match the original cookie's attributes)
            httponly: HttpOnly flag
            samesite: SameSite policy
        """
        self.set_cookie(
            name,
            "",
            max_age=0,
            expires=datetime.fromtimestamp(0, tz=timezone.utc),
            path=path,
            domain=domain,
            secure=secure,
            httponly=httponly,
            samesite=samesite,
        )

    @property
    def cookies(self) -> List[str]:
        """All Set-Cookie header values in the order they were added."""
        value = self._headers.get("set-cookie")
        if value is None:
            return []
        if isinstance(value, list):
            return list(value)
        return [value]

    # ========================================================================
    # Header Helpers
    # ========================================================================

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get the first value of a header."""
        value = self._headers.get(name.lower())
        if value is None:
            return default
        if isinstance(value, list):
            return value[0] if value else default
        return value

    def set_header(self, name: str, value: str) -> None:
        """
        Set header (replaces existing).

        Args:
            name: Header name
            value: Header value
        """
        if self.validate_headers:
            self._validate_header(name, value)

        self._headers[name.lower()] = value

    def add_header(self, name: str, value: str) -> None:
        """
        Add header (supports multiple values).

        Args:
            name: Header name
            value: Header value
        """
        if self.validate_headers:
            self._validate_header(name, value)

        name_lower = name.lower()

        if name_lower in self._headers:
            existing = self._headers[name_lower]
            if isinstance(existing, list):
                existing.append(value)
            else:
                self._headers[name_lower] = [existing, value]
        else:
            self._headers[name_lower] = value

    def unset_header(self, name: str) -> None:
        """Remove header."""
        self._headers.pop(name.lower(), None)

    def _validate_header(self, name: str, value: str) -> None:
        """
        Validate header name and value against injection attacks.

        Raises InvalidHeaderError if header contains control characters.
        """
        for char in name:
            if ord(char) < 32 or ord(char) == 127:
                raise InvalidHeaderError(
                    message=f"Invalid header name: {name!r}",
                    metadata={"header_name": name},
                )

        for char in value:
            if char in ("\r", "\n", "\x00"):
                raise InvalidHeaderError(
                    message=f"Invalid header value for {name!r}",
                    metadata={"header_name": name},
                )

    # ========================================================================
    # ASGI
    # ========================================================================

    def _prepare_headers(self) -> List[tuple]:
        """Prepare headers for ASGI (list of byte tuples)."""
        headers_list = []

        for name, value in self._headers.items():
            name_bytes = name.encode("latin-1")

            if isinstance(value, list):
                # Multiple values (e.g., Set-Cookie)
                for v in value:
                    headers_list.append((name_bytes, v.encode("latin-1")))
            else:
                headers_list.append((name_bytes, value.encode("latin-1")))

        return headers_list

    async def send_asgi(self, send: Callable[[dict], Awaitable[None]]) -> None:
        """Send response via ASGI."""
        body = self._encode_body(self._content)
        if "content-length" not in self._headers:
            self._headers["content-length"] = str(len(body))

        await send({
            "type": "http.response.start",
            "status": self.status,
            "headers": self._prepare_headers(),
        })
        await send({
            "type": "http.response.body",
            "body": body,
            "more_body": False,
        })

    def _encode_body(self, content: Any) -> bytes:
        if isinstance(content, bytes):
            return content
        if isinstance(content, str):
            return content.encode(self.encoding)
        if isinstance(content, (dict, list)):
            return json.dumps(content, default=str).encode(self.encoding)
        return str(content).encode(self.encoding)

    def __repr__(self) -> str:
        return f"<Response {self.status}>"


# ============================================================================
# Convenience Response Factories
# ============================================================================

def Ok(content: Any = None, **kwargs) -> Response:
    """200 OK response."""
    if content is None:
        content = {"status": "ok"}
    return Response.json(content, status=200, **kwargs)


def Unauthorized(message: str = "Unauthorized", **kwargs) -> Response:
    """401 Unauthorized response."""
    return Response.json({"error": message}, status=401, **kwargs)


def InternalError(message: str = "Internal Server Error", **kwargs) -> Response:
    """500 Internal Server Error response."""
    return Response.json({"error": message}, status=500, **kwargs)
