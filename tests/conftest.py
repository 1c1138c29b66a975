import io
import json
import threading
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import pytest
import requests

from kbsync.core.transport import KibanaTransport


@dataclass
class RecordedRequest:
    method: str
    path: str
    headers: Dict[str, str]
    body: bytes

    def json(self) -> Any:
        return json.loads(self.body.decode("utf-8"))


class StubBackend:
    """Scripted Kibana/Elasticsearch stand-in: queue replies per (method, path), record requests."""

    def __init__(self) -> None:
        self.base_url = ""
        self.requests: List[RecordedRequest] = []
        self._replies: Dict[Tuple[str, str], Deque[Tuple[int, Any, float]]] = defaultdict(deque)
        self.on_request: Optional[Callable[[RecordedRequest], None]] = None

    def reply(self, method: str, path: str, status: int, body: Any = None, *, delay: float = 0.0) -> None:
        self._replies[(method, path)].append((status, body, delay))

    def next_reply(self, method: str, path: str) -> Tuple[int, Any, float]:
        queue = self._replies.get((method, path))
        if not queue:
            return 404, {"message": f"no route {method} {path}", "statusCode": 404}, 0.0
        # the last scripted reply repeats
        return queue.popleft() if len(queue) > 1 else queue[0]


def _make_handler(backend: StubBackend):
    class _Handler(BaseHTTPRequestHandler):
        protocol_version = "HTTP/1.1"

        def _handle(self) -> None:
            length = int(self.headers.get("Content-Length", "0"))
            raw = self.rfile.read(length) if length else b""
            path = urlparse(self.path).path
            req = RecordedRequest(self.command, path, {k.lower(): v for k, v in self.headers.items()}, raw)
            backend.requests.append(req)
            if backend.on_request:
                backend.on_request(req)

            status, body, delay = backend.next_reply(self.command, path)
            if delay:
                time.sleep(delay)
            if body is None:
                payload = b""
            elif isinstance(body, bytes):
                payload = body
            elif isinstance(body, str):
                payload = body.encode("utf-8")
            else:
                payload = json.dumps(body).encode("utf-8")
            self.send_response(status)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(payload)))
            self.end_headers()
            self.wfile.write(payload)

        do_GET = _handle  # noqa: N815
        do_POST = _handle  # noqa: N815
        do_PUT = _handle  # noqa: N815
        do_DELETE = _handle  # noqa: N815

        def log_message(self, fmt, *args):  # silence test server logs
            return

    return _Handler


@pytest.fixture()
def stub_backend():
    backend = StubBackend()
    server = ThreadingHTTPServer(("127.0.0.1", 0), _make_handler(backend))
    host, port = server.server_address[:2]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    backend.base_url = f"http://{host}:{port}"
    yield backend
    server.shutdown()
    server.server_close()
    thread.join(timeout=1.0)


@pytest.fixture()
def transport(stub_backend):
    t = KibanaTransport(stub_backend.base_url, username="elastic", password="changeme", timeout_sec=2)
    yield t
    t.close()


class TrackingRaw(io.BytesIO):
    """Body stream that remembers whether the connection was released."""

    released = False

    def release_conn(self) -> None:
        self.released = True


def make_response(status: int, body: Any = b"") -> Tuple[requests.Response, TrackingRaw]:
    if isinstance(body, (dict, list)):
        body = json.dumps(body)
    if isinstance(body, str):
        body = body.encode("utf-8")
    resp = requests.Response()
    resp.status_code = status
    resp.url = "http://kibana.test/api/alerting/rule"
    resp.encoding = "utf-8"
    raw = TrackingRaw(body)
    resp.raw = raw
    return resp, raw


@pytest.fixture()
def response_factory():
    return make_response
