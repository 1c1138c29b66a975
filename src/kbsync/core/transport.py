"""
Kibana/Elasticsearch HTTP transport.

- requests.Session per backend (read-only config, shareable across resources).
- Fixed headers: JSON content type and the Kibana anti-forgery header (kbn-xsrf).
- Credential: HTTP Basic (username/password) or ApiKey, injected at construction.
- Returns the raw streamed response; reading and closing it is the caller's job
  (see responses.interpret).
- Retries only idempotent methods, only on connection-level errors.
- Transport failures raise TransportError, never ApiError.

Usage:
    transport = KibanaTransport("https://kibana:5601", username="elastic", password="...")
    response = transport.perform("POST", "/api/alerting/rule", {"name": "cpu"})
"""

from __future__ import annotations

import json
import logging
import time
import warnings
from typing import Any, Dict, Optional

import requests
import urllib3
from requests.auth import HTTPBasicAuth

from .errors import EncodingError, TransportError

IDEMPOTENT_METHODS = frozenset({"GET", "PUT", "DELETE", "HEAD"})

DEFAULT_TIMEOUT: Any = object()  # sentinel: use the configured timeout


def encode_body(payload: Optional[Dict[str, Any]]) -> Optional[bytes]:
    """Serialize a wire payload to UTF-8 JSON bytes."""
    if payload is None:
        return None
    try:
        return json.dumps(payload, allow_nan=False).encode("utf-8")
    except (TypeError, ValueError) as exc:
        raise EncodingError(f"payload is not JSON-serializable: {exc}") from exc


class KibanaTransport:
    """Authenticated JSON transport bound to one base endpoint."""

    def __init__(
        self,
        base_url: str,
        *,
        username: str = "",
        password: str = "",
        api_key: str = "",
        verify_tls: bool = True,
        timeout_sec: Optional[float] = 30,
        retries: int = 0,
        backoff_base_sec: float = 0.05,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.LoggerAdapter] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.verify_tls = verify_tls
        self.timeout = float(timeout_sec) if timeout_sec else None
        self.retries = max(0, int(retries))
        self.backoff = float(backoff_base_sec)
        self.log = logger or logging.getLogger("kbsync.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "kbn-xsrf": "true",
            "User-Agent": "kbsync/HTTPClient",
        })
        if api_key:
            self.session.headers["Authorization"] = f"ApiKey {api_key}"
        elif username:
            self.session.auth = HTTPBasicAuth(username, password)

        if not verify_tls:
            warnings.filterwarnings("ignore", category=urllib3.exceptions.InsecureRequestWarning)

    @classmethod
    def from_settings(cls, settings: Any, *, logger: Optional[logging.LoggerAdapter] = None) -> "KibanaTransport":
        """Build from a config.ConnectionSection."""
        return cls(
            settings.base_url,
            username=settings.username,
            password=settings.password,
            api_key=settings.api_key,
            verify_tls=bool(settings.verify_tls),
            timeout_sec=settings.timeout_sec,
            retries=int(settings.retries),
            logger=logger,
        )

    def url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def perform(
        self,
        method: str,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        *,
        timeout: Any = DEFAULT_TIMEOUT,
    ) -> requests.Response:
        """
        Send one request and return the unread response (any status code).

        ``timeout`` overrides the configured timeout for this call only.
        Raises EncodingError before any I/O when the payload cannot be serialized.
        """
        method = method.upper()
        url = self.url(path)
        data = encode_body(payload)
        effective_timeout = self.timeout if timeout is DEFAULT_TIMEOUT else timeout
        attempts = 1 + (self.retries if method in IDEMPOTENT_METHODS else 0)

        for attempt in range(attempts):
            start = time.monotonic()
            try:
                resp = self.session.request(
                    method,
                    url,
                    data=data,
                    timeout=effective_timeout,
                    verify=self.verify_tls,
                    stream=True,
                )
            except requests.RequestException as exc:
                err = TransportError(method, url, str(exc))
                self.log.warning("%s %s failed (attempt %s/%s): %s", method, path, attempt + 1, attempts, exc)
                if attempt < attempts - 1:
                    self._sleep_backoff(attempt)
                    continue
                raise err from exc
            elapsed = (time.monotonic() - start) * 1000
            self.log.debug("%s %s -> %s in %.1fms", method, path, resp.status_code, elapsed)
            return resp
        raise AssertionError("unreachable")  # pragma: no cover

    def close(self) -> None:
        self.session.close()

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.backoff * (2 ** attempt))
