"""Scripted mock remote-write receiver.

Answers each inbound request with the next entry of a response script and
records every request, decodable or not, in a RequestStore. Once the last
scripted response has been handed out the endpoint signals completion and
answers any further request with 410 Gone, so a sender that keeps retrying
past the script shows up as extra traffic instead of a hang.

Response indexing is global and sequential: one sender, one conversation.
Sharded senders hitting the endpoint in parallel will interleave batches.
"""

import threading
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, List, Optional, Sequence

from rwcompliance.capture.store import CapturedRequest, RequestStore
from rwcompliance.utils.config import EndpointConfig
from rwcompliance.utils.logging import get_logger
from rwcompliance.wire import transport
from rwcompliance.wire.errors import DecodeError
from rwcompliance.wire.models import ProtocolVersion

log = get_logger(__name__)

WRITE_PATH = "/api/v1/write"


@dataclass(frozen=True)
class ScriptedResponse:
    """One canned reply. A status_code of 0 means 204 No Content.

    Leaving all three written counts at 0 makes the endpoint report what it
    actually decoded (only on 2xx replies, and never for protocol 0.1.0).
    """

    status_code: int = 0
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""
    samples_written: int = 0
    exemplars_written: int = 0
    histograms_written: int = 0

    @property
    def status(self) -> int:
        return self.status_code or 204

    @property
    def written(self) -> transport.WrittenCounts:
        return transport.WrittenCounts(
            self.samples_written, self.exemplars_written, self.histograms_written
        )


class _ScriptedHandler(BaseHTTPRequestHandler):
    server: "_EndpointServer"
    protocol_version = "HTTP/1.1"

    def _read_body(self) -> bytes:
        if "chunked" in self.headers.get("Transfer-Encoding", "").lower():
            chunks = []
            while True:
                size = int(self.rfile.readline().split(b";")[0].strip() or b"0", 16)
                if size == 0:
                    self.rfile.readline()
                    break
                chunks.append(self.rfile.read(size))
                self.rfile.readline()
            return b"".join(chunks)
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else b""

    def _handle(self) -> None:
        try:
            body = self._read_body()
        except (OSError, ValueError) as e:
            log.warning("request_body_unreadable", error=str(e))
            self._send(400, {}, "Failed to read request body")
            return
        status, headers, text = self.server.endpoint.handle(
            self.command, self.path, dict(self.headers.items()), body
        )
        self._send(status, headers, text)

    do_POST = _handle
    do_PUT = _handle
    do_GET = _handle

    def _send(self, status: int, headers: Dict[str, str], text: str) -> None:
        payload = text.encode("utf-8")
        self.send_response(status)
        for name, value in headers.items():
            self.send_header(name, value)
        if payload and not any(n.lower() == "content-type" for n in headers):
            self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        if payload:
            self.wfile.write(payload)

    def log_message(self, format: str, *args) -> None:
        log.debug("endpoint_http", client=self.client_address[0], message=format % args)


class _EndpointServer(ThreadingHTTPServer):
    daemon_threads = True
    endpoint: "ScriptedEndpoint"


class ScriptedEndpoint:
    """HTTP receiver that replays a response script.

    Args:
        responses: Replies handed out in arrival order. Empty means a single
            default success reply.
        version: Protocol version used to parse request bodies.
        store: Where captured requests go. A fresh store when None.
        config: Bind address and the status/body used once finished.
        close_when_done: Answer requests past the end of the script with the
            finished status. When False they get a default success reply.
        verbose: Log every captured request at info level.
    """

    def __init__(
        self,
        responses: Sequence[ScriptedResponse] = (),
        version: ProtocolVersion = ProtocolVersion.V2,
        store: Optional[RequestStore] = None,
        config: Optional[EndpointConfig] = None,
        close_when_done: bool = True,
        verbose: bool = False,
    ):
        self.responses: List[ScriptedResponse] = list(responses) or [ScriptedResponse()]
        self.version = ProtocolVersion.parse(version)
        self.store = store if store is not None else RequestStore()
        self.config = config or EndpointConfig()
        self.close_when_done = close_when_done
        self.verbose = verbose

        self._lock = threading.Lock()
        self._next_index = 0
        self._closed = False
        self._signalled = False
        self._done = threading.Event()
        self._server: Optional[_EndpointServer] = None
        self._thread: Optional[threading.Thread] = None

    # ------------------------------------------------------------------
    # Request handling
    # ------------------------------------------------------------------

    def handle(
        self, method: str, path: str, headers: Dict[str, str], body: bytes
    ) -> tuple:
        """Record one request and pick its reply.

        Returns:
            (status, headers, body text) to send back.
        """
        # Decoding is pure, keep it outside the lock.
        message, error = None, None
        try:
            message = transport.decode(headers, body, self.version)
        except DecodeError as e:
            error = e

        with self._lock:
            if self._closed:
                log.info("request_after_finish", method=method, path=path)
                return self.config.finished_status, {}, self.config.finished_body

            index = self._next_index
            self._next_index += 1
            self.store.append(
                CapturedRequest(
                    method=method,
                    path=path,
                    headers=headers,
                    body=body,
                    message=message,
                    error=error,
                )
            )
            finished = index + 1 >= len(self.responses)
            signal_done = finished and not self._signalled
            if finished:
                self._signalled = True
                if self.close_when_done:
                    self._closed = True

        scripted = self.responses[index] if index < len(self.responses) else ScriptedResponse()
        if error is not None:
            status, reply_headers, text = 400, {}, f"Failed to decode request: {error}"
        else:
            status, reply_headers, text = self._reply(scripted, message)

        log_fn = log.info if self.verbose else log.debug
        log_fn(
            "request_captured",
            index=index,
            method=method,
            status=status,
            decoded=message is not None,
            error=str(error) if error else None,
        )

        if signal_done:
            log.info("response_script_finished", requests=index + 1)
            self._done.set()
        return status, reply_headers, text

    def _reply(self, scripted: ScriptedResponse, message) -> tuple:
        headers = dict(scripted.headers)
        status = scripted.status
        if self.version is not ProtocolVersion.V1 and 200 <= status < 300:
            counts = scripted.written
            if counts.total == 0:
                counts = transport.WrittenCounts(*message.counts())
            headers.update(transport.written_headers(counts))
        return status, headers, scripted.body

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Bind the server and serve in a background thread."""
        if self._server is not None:
            return
        self._server = _EndpointServer((self.config.host, self.config.port), _ScriptedHandler)
        self._server.endpoint = self
        self._thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="scripted-endpoint"
        )
        self._thread.start()
        log.info("endpoint_started", url=self.url, responses=len(self.responses))

    def stop(self) -> None:
        """Close the endpoint and shut the server down."""
        with self._lock:
            self._closed = True
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        log.info("endpoint_stopped", captured=len(self.store))

    def __enter__(self) -> "ScriptedEndpoint":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    @property
    def address(self) -> str:
        """host:port the server is bound to."""
        if self._server is None:
            raise RuntimeError("endpoint not started")
        host, port = self._server.server_address[:2]
        return f"{host}:{port}"

    @property
    def url(self) -> str:
        return f"http://{self.address}{WRITE_PATH}"

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def done(self) -> threading.Event:
        """Set exactly once, after the last scripted response was handed out."""
        return self._done

    def wait_done(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def requests(self) -> List[CapturedRequest]:
        return self.store.snapshot()
