"""
Response interpretation shared by every resource kind.

Policy:
- 200 is the only success status; anything else is a failure whatever the body.
- Failure bodies are decoded with an error-shape decoder. A body that is not an
  envelope raises MalformedErrorResponse, never a made-up ApiError.
- Success bodies are decoded with the caller's success-shape decoder. A body that
  does not decode raises MalformedSuccessResponse (no partially-filled results).
- The response is closed on every path.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Callable, Optional, TypeVar

import requests

from .errors import ApiError, MalformedErrorResponse, MalformedSuccessResponse, TransportError
from .models import expect_mapping

T = TypeVar("T")

# Decoders raise ValueError/TypeError/KeyError on shape mismatch.
_DECODE_ERRORS = (ValueError, TypeError, KeyError)


@dataclass(frozen=True)
class ErrorEnvelope:
    message: str
    status_code: int


def _expect_int(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{what} must be an integer, got {type(value).__name__}")
    return value


def decode_kibana_error(data: Any) -> ErrorEnvelope:
    """Kibana envelope: ``{"message": str, "statusCode": int}``."""
    data = expect_mapping(data, "error envelope")
    message = data.get("message")
    if not isinstance(message, str):
        raise TypeError("error envelope 'message' must be a string")
    return ErrorEnvelope(message=message, status_code=_expect_int(data.get("statusCode"), "statusCode"))


def decode_elasticsearch_error(data: Any) -> ErrorEnvelope:
    """Elasticsearch envelope: ``{"error": {"reason": str, ...} | str, "status": int}``."""
    data = expect_mapping(data, "error envelope")
    error = data.get("error")
    if isinstance(error, dict):
        message = error.get("reason")
    else:
        message = error
    if not isinstance(message, str):
        raise TypeError("error envelope 'error' must be a string or carry a 'reason'")
    return ErrorEnvelope(message=message, status_code=_expect_int(data.get("status"), "status"))


def _read_body(response: requests.Response) -> bytes:
    try:
        return response.content or b""
    except requests.RequestException as exc:
        method = getattr(response.request, "method", "") or ""
        raise TransportError(method, response.url or "", f"reading body: {exc}") from exc


def interpret(
    response: requests.Response,
    *,
    success: Optional[Callable[[Any], T]] = None,
    error: Callable[[Any], ErrorEnvelope] = decode_kibana_error,
    allow_not_found: bool = False,
) -> Optional[T]:
    """
    Turn a raw response into a decoded success value or raise.

    ``success=None`` means the body of a 200 is not needed and is not decoded.
    ``allow_not_found`` makes a 404 return None instead of failing (reads).
    """
    with response:
        raw = _read_body(response)
        status = response.status_code

        if allow_not_found and status == 404:
            return None

        if status != 200:
            text = raw.decode("utf-8", errors="replace")
            try:
                envelope = error(json.loads(raw))
            except _DECODE_ERRORS as exc:
                raise MalformedErrorResponse(status, text, exc) from exc
            raise ApiError(envelope.message, envelope.status_code, status)

        if success is None:
            return None
        try:
            return success(json.loads(raw))
        except _DECODE_ERRORS as exc:
            raise MalformedSuccessResponse(raw.decode("utf-8", errors="replace"), exc) from exc
