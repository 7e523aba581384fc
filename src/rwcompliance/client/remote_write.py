"""Remote-write client used to exercise receivers under test."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from rwcompliance.utils.config import ClientConfig
from rwcompliance.utils.logging import get_logger
from rwcompliance.wire import transport
from rwcompliance.wire.errors import ProtocolViolation
from rwcompliance.wire.models import WireMessage

log = get_logger(__name__)


class OutcomeKind(str, Enum):
    """How a receiver answered one write.

    PARTIAL is a non-2xx reply that still reports written items: the
    receiver stored part of the request and rejected the rest.
    """

    SUCCESS = "success"
    PARTIAL = "partial"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    UNEXPECTED = "unexpected"


@dataclass(frozen=True)
class WriteOutcome:
    status_code: int
    headers: Mapping[str, str] = field(default_factory=dict)
    body: str = ""
    written: transport.WrittenCounts = field(default_factory=transport.WrittenCounts)
    header_error: Optional[str] = None
    duration_ms: float = 0.0

    @property
    def kind(self) -> OutcomeKind:
        family = self.status_code // 100
        if family == 2:
            return OutcomeKind.SUCCESS
        if self.written.total > 0:
            return OutcomeKind.PARTIAL
        if family == 4:
            return OutcomeKind.CLIENT_ERROR
        if family == 5:
            return OutcomeKind.SERVER_ERROR
        return OutcomeKind.UNEXPECTED

    @property
    def retryable(self) -> bool:
        """Whether a conforming sender would retry this reply."""
        return self.status_code // 100 == 5 or self.status_code == 429


class RemoteWriteClient:
    """Posts wire messages to a remote-write receiver.

    Connection failures are retried with exponential backoff. HTTP error
    statuses are never retried here: they are the result under test and are
    returned as a WriteOutcome.
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        session: Optional[requests.Session] = None,
    ):
        self.config = config or ClientConfig()
        self._session = session or requests.Session()

    def _retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(self.config.retry_attempts),
            wait=wait_exponential(
                multiplier=1,
                min=self.config.backoff_min_seconds,
                max=self.config.backoff_max_seconds,
            ),
            retry=retry_if_exception_type((requests.ConnectionError, requests.Timeout)),
            reraise=True,
        )

    def send(self, message: WireMessage, url: Optional[str] = None) -> WriteOutcome:
        """Encode and post a message the way a conforming sender would."""
        headers, body = transport.encode_request(message, self.config.user_agent)
        return self.send_raw(headers, body, url)

    def send_raw(
        self,
        headers: Mapping[str, str],
        body: bytes,
        url: Optional[str] = None,
    ) -> WriteOutcome:
        """Post an arbitrary body, for requests that break the protocol on purpose.

        Raises:
            requests.RequestException: If the receiver stays unreachable after
                all retry attempts.
        """
        url = url or self.config.url
        t0 = time.monotonic()
        response = self._retrying()(
            self._session.post,
            url,
            data=body,
            headers=dict(headers),
            timeout=self.config.timeout_seconds,
        )
        duration_ms = round((time.monotonic() - t0) * 1000, 1)

        header_error = None
        try:
            written = transport.parse_written_counts(response.headers)
        except ProtocolViolation as e:
            written = transport.WrittenCounts()
            header_error = str(e)

        outcome = WriteOutcome(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text[:500] if response.text else "",
            written=written,
            header_error=header_error,
            duration_ms=duration_ms,
        )
        log.info(
            "remote_write_response",
            url=url,
            status=outcome.status_code,
            kind=outcome.kind.value,
            samples_written=written.samples,
            exemplars_written=written.exemplars,
            histograms_written=written.histograms,
            duration_ms=duration_ms,
        )
        return outcome

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "RemoteWriteClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def response_headers_summary(outcome: WriteOutcome) -> Dict[str, str]:
    """Protocol-relevant response headers, for logs and failure messages."""
    return {
        k: v
        for k, v in outcome.headers.items()
        if k.lower().startswith("x-") or k.lower() == "retry-after"
    }
