"""Thread-safe log of every request a mock endpoint received."""

import threading
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import List, Mapping, Optional

from requests.structures import CaseInsensitiveDict

from rwcompliance.utils.logging import get_logger
from rwcompliance.wire.models import WireMessage

log = get_logger(__name__)


def _freeze_headers(headers: Mapping[str, str]) -> Mapping[str, str]:
    return MappingProxyType(CaseInsensitiveDict(headers))


@dataclass(frozen=True)
class CapturedRequest:
    """One inbound HTTP request, decoded or not.

    Exactly one of message and error is set. Header lookups are
    case-insensitive.
    """

    method: str
    headers: Mapping[str, str]
    body: bytes
    message: Optional[WireMessage] = None
    error: Optional[Exception] = None
    path: str = "/"
    received: float = field(default_factory=time.time)
    received_monotonic: float = field(default_factory=time.monotonic)

    def __post_init__(self) -> None:
        object.__setattr__(self, "headers", _freeze_headers(self.headers))

    @property
    def decoded(self) -> bool:
        return self.message is not None

    def leading_timestamp(self) -> Optional[int]:
        """Timestamp of the first sample of the first series, if any."""
        if self.message is None:
            return None
        for series in self.message.time_series():
            samples = self.message.samples(series)
            return samples[0].timestamp if samples else None
        return None

    def describe(self) -> str:
        """Short human-readable dump for assertion messages."""
        head = f"{self.method} {self.path} ({len(self.body)} bytes)"
        if self.message is None:
            return f"{head} undecodable: {self.error}"
        return f"{head}\n{self.message.describe()}"


def describe_requests(requests: List[CapturedRequest]) -> str:
    if not requests:
        return "no requests captured"
    return "\n".join(f"#{i} {req.describe()}" for i, req in enumerate(requests))


class RequestStore:
    """Append-only, arrival-ordered list of captured requests.

    Entries are never removed or changed. Readers get copies, so they can
    iterate while handlers keep appending.
    """

    def __init__(self) -> None:
        self._requests: List[CapturedRequest] = []
        self._cond = threading.Condition()

    def append(self, request: CapturedRequest) -> int:
        """Record a request and return its arrival index."""
        with self._cond:
            self._requests.append(request)
            index = len(self._requests) - 1
            self._cond.notify_all()
        return index

    def snapshot(self) -> List[CapturedRequest]:
        with self._cond:
            return list(self._requests)

    def wait_for_count(
        self, count: int, timeout: float, poll_interval: float = 0.05
    ) -> List[CapturedRequest]:
        """Block until at least count requests exist or timeout passes.

        Never raises on timeout: whatever was captured is returned and the
        caller decides whether that is enough.
        """
        deadline = time.monotonic() + timeout
        with self._cond:
            while len(self._requests) < count:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    log.debug(
                        "wait_for_count_timeout",
                        wanted=count,
                        captured=len(self._requests),
                    )
                    break
                self._cond.wait(min(poll_interval, remaining))
            return list(self._requests)

    def __len__(self) -> int:
        with self._cond:
            return len(self._requests)
