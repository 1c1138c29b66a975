"""
Error taxonomy for kbsync.

Every failure raised by the reconciliation core derives from ReconcileError so
drivers can catch one type. The split matters to operators:

- ApiError: the backend answered with a clean error envelope.
- MalformedErrorResponse: the backend failed AND its body was not an envelope.
- MalformedSuccessResponse: the backend said 200 but the body is unusable.
- TransportError: the request never got an HTTP answer.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlsplit, urlunsplit


def redact_url(url: str) -> str:
    """Drop any user:password@ part from a URL."""
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    host = parts.netloc.rsplit("@", 1)[1]
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


class ReconcileError(Exception):
    """Base class for all reconciliation failures."""


class EncodingError(ReconcileError):
    """The resource could not be turned into a wire payload."""


class TransportError(ReconcileError):
    """Connection-level failure (DNS, refused, timeout)."""

    def __init__(self, method: str, url: str, message: str) -> None:
        url = redact_url(url)
        super().__init__(f"{method} {url} failed: {message}")
        self.method = method
        self.url = url
        self.message = message


class ApiError(ReconcileError):
    """Non-200 response carrying a decodable error envelope."""

    def __init__(self, message: str, status_code: int, http_status: int) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.http_status = http_status

    def __repr__(self) -> str:
        return f"ApiError(http_status={self.http_status}, status_code={self.status_code}, message={self.message!r})"


class MalformedErrorResponse(ReconcileError):
    """Non-200 response whose body is not an error envelope."""

    def __init__(self, http_status: int, body: str, cause: Exception) -> None:
        super().__init__(f"HTTP {http_status} with undecodable error body: {cause}")
        self.http_status = http_status
        self.body = body
        self.cause = cause


class MalformedSuccessResponse(ReconcileError):
    """200 response whose body does not match the expected shape."""

    def __init__(self, body: str, cause: Exception) -> None:
        super().__init__(f"undecodable success body: {cause}")
        self.body = body
        self.cause = cause


class IdentifierError(ReconcileError):
    """Operation called in the wrong identity state (create with id / update without)."""


class UnsupportedOperation(ReconcileError):
    """The resource kind does not implement this operation."""

    def __init__(self, kind: str, operation: str) -> None:
        super().__init__(f"{operation} is not implemented for resource kind '{kind}'")
        self.kind = kind
        self.operation = operation


class ConfigError(Exception):
    """Raised when runtime configuration cannot be resolved."""


class ManifestError(Exception):
    """Raised when a manifest entry cannot be turned into a typed resource."""

    def __init__(self, message: str, *, kind: Optional[str] = None, index: Optional[int] = None) -> None:
        where = ""
        if kind is not None:
            where = f"{kind}[{index}]: " if index is not None else f"{kind}: "
        super().__init__(where + message)
        self.kind = kind
        self.index = index
