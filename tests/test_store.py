"""Tests for the captured request store."""

import threading
import time

from rwcompliance.capture.store import CapturedRequest, RequestStore, describe_requests
from rwcompliance.wire.builder import RequestBuilder
from rwcompliance.wire.errors import CompressionError
from rwcompliance.wire.transport import decode, encode_request

TS = 1_700_000_000_000


def _captured(value: float = 1.0, timestamp: int = TS) -> CapturedRequest:
    message = RequestBuilder().add_sample({"__name__": "m"}, value, timestamp).build()
    headers, body = encode_request(message)
    return CapturedRequest(
        method="POST", headers=dict(headers), body=body, message=decode(headers, body)
    )


# ---------------------------------------------------------------------------
# CapturedRequest
# ---------------------------------------------------------------------------


def test_headers_are_case_insensitive_and_frozen() -> None:
    """Captured headers ignore case and cannot be modified."""
    req = _captured()
    assert req.headers["content-encoding"] == "snappy"
    assert req.headers["CONTENT-ENCODING"] == "snappy"
    try:
        req.headers["X-New"] = "1"
    except TypeError:
        pass
    else:
        raise AssertionError("captured headers should be read-only")


def test_leading_timestamp() -> None:
    """The leading timestamp is the first sample's timestamp."""
    assert _captured(timestamp=TS + 5).leading_timestamp() == TS + 5


def test_undecodable_request_describes_error() -> None:
    """A request that failed to decode still describes itself."""
    req = CapturedRequest(
        method="POST", headers={}, body=b"junk", error=CompressionError("bad snappy")
    )
    assert not req.decoded
    assert req.leading_timestamp() is None
    assert "undecodable: bad snappy" in req.describe()


def test_describe_requests_empty() -> None:
    """An empty capture has a readable description."""
    assert describe_requests([]) == "no requests captured"


# ---------------------------------------------------------------------------
# RequestStore
# ---------------------------------------------------------------------------


def test_append_returns_arrival_index() -> None:
    """append returns the zero-based arrival index."""
    store = RequestStore()
    assert store.append(_captured()) == 0
    assert store.append(_captured()) == 1
    assert len(store) == 2


def test_same_message_twice_is_two_entries() -> None:
    """A retried request is captured again, not deduplicated."""
    store = RequestStore()
    req = _captured()
    store.append(req)
    store.append(req)
    snapshot = store.snapshot()
    assert len(snapshot) == 2
    assert snapshot[0].leading_timestamp() == snapshot[1].leading_timestamp()


def test_snapshot_is_a_copy() -> None:
    """Later appends do not show up in an earlier snapshot."""
    store = RequestStore()
    store.append(_captured())
    snapshot = store.snapshot()
    store.append(_captured())

    assert len(snapshot) == 1
    assert len(store.snapshot()) == 2


def test_concurrent_appends_are_all_kept() -> None:
    """Appends from many threads are all recorded."""
    store = RequestStore()
    per_thread = 50

    def worker(offset: int) -> None:
        for i in range(per_thread):
            store.append(_captured(timestamp=TS + offset * 1000 + i))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    snapshot = store.snapshot()
    assert len(snapshot) == 4 * per_thread
    assert len({r.leading_timestamp() for r in snapshot}) == 4 * per_thread


def test_wait_for_count_returns_when_reached() -> None:
    """wait_for_count returns as soon as enough requests arrive."""
    store = RequestStore()

    def late_append() -> None:
        time.sleep(0.05)
        store.append(_captured())

    threading.Thread(target=late_append).start()
    got = store.wait_for_count(1, timeout=2.0)
    assert len(got) == 1


def test_wait_for_count_times_out_without_raising() -> None:
    """wait_for_count gives up after the timeout and returns what it has."""
    store = RequestStore()
    store.append(_captured())

    start = time.monotonic()
    got = store.wait_for_count(3, timeout=0.1, poll_interval=0.01)

    assert len(got) == 1
    assert time.monotonic() - start < 1.0
