"""HTTP scrape target serving a fixed metrics exposition document."""

import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from rwcompliance.utils.config import ScrapeConfig
from rwcompliance.utils.logging import get_logger

log = get_logger(__name__)

OPENMETRICS_CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"
EOF_MARKER = "# EOF\n"

FORMATS = ("openmetrics", "text", "auto")


def render(metrics: str, exposition_format: str = "openmetrics") -> tuple:
    """Return (content type, document) for the given format.

    OpenMetrics documents always end with the EOF marker. "auto" picks
    OpenMetrics only when the text carries exemplars, which the classic text
    format cannot express.
    """
    if exposition_format not in FORMATS:
        raise ValueError(f"unknown exposition format: {exposition_format!r}")
    if exposition_format == "auto":
        exposition_format = "openmetrics" if "# {" in metrics else "text"

    if exposition_format == "text":
        return TEXT_CONTENT_TYPE, metrics

    if not metrics.endswith(EOF_MARKER):
        if metrics and not metrics.endswith("\n"):
            metrics += "\n"
        metrics += EOF_MARKER
    return OPENMETRICS_CONTENT_TYPE, metrics


class _ScrapeHandler(BaseHTTPRequestHandler):
    server: "_ScrapeServer"

    def do_GET(self) -> None:
        content_type, document = self.server.target.serve()
        payload = document.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(payload)))
        self.end_headers()
        self.wfile.write(payload)

    def log_message(self, format: str, *args) -> None:
        log.debug("scrape_http", client=self.client_address[0], message=format % args)


class _ScrapeServer(ThreadingHTTPServer):
    daemon_threads = True
    target: "ScrapeTarget"


class ScrapeTarget:
    """Serves metrics text on every path to whatever scrapes it."""

    def __init__(self, metrics: str = "", config: Optional[ScrapeConfig] = None):
        self.config = config or ScrapeConfig()
        render("", self.config.exposition_format)  # fail early on a bad format
        self._metrics = metrics
        self._scrapes = 0
        self._lock = threading.Lock()
        self._server: Optional[_ScrapeServer] = None
        self._thread: Optional[threading.Thread] = None

    def serve(self) -> tuple:
        with self._lock:
            self._scrapes += 1
            metrics = self._metrics
        return render(metrics, self.config.exposition_format)

    def update_metrics(self, metrics: str) -> None:
        """Replace the document served from the next scrape on."""
        with self._lock:
            self._metrics = metrics

    @property
    def scrape_count(self) -> int:
        with self._lock:
            return self._scrapes

    def start(self) -> None:
        if self._server is not None:
            return
        self._server = _ScrapeServer((self.config.host, self.config.port), _ScrapeHandler)
        self._server.target = self
        self._thread = threading.Thread(
            target=self._server.serve_forever, daemon=True, name="scrape-target"
        )
        self._thread.start()
        log.info("scrape_target_started", host_port=self.host_port)

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
        log.info("scrape_target_stopped", scrapes=self.scrape_count)

    def __enter__(self) -> "ScrapeTarget":
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.stop()

    @property
    def host_port(self) -> str:
        if self._server is None:
            raise RuntimeError("scrape target not started")
        host, port = self._server.server_address[:2]
        return f"{host}:{port}"

    @property
    def url(self) -> str:
        return f"http://{self.host_port}/metrics"
