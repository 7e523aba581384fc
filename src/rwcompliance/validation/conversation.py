"""Checks over the whole list of requests captured during one scenario."""

from typing import List, Optional, Sequence, Tuple

from rwcompliance.capture.store import CapturedRequest, describe_requests
from rwcompliance.validation.report import CheckResult, Level, check, must, should
from rwcompliance.wire import transport
from rwcompliance.wire.models import ProtocolVersion, Sample


def check_request_count(requests: Sequence[CapturedRequest], minimum: int) -> CheckResult:
    return must(
        "request_count",
        len(requests) >= minimum,
        f"insufficient requests captured: got {len(requests)}, want at least {minimum}",
    )


def check_decoded(requests: Sequence[CapturedRequest]) -> List[CheckResult]:
    """Every captured request must have parsed."""
    results = [
        must("request_decoded", False, f"request {i} could not be parsed: {req.error}")
        for i, req in enumerate(requests)
        if not req.decoded
    ]
    return results or [must("request_decoded", True)]


# ---------------------------------------------------------------------------
# HTTP envelope
# ---------------------------------------------------------------------------


def check_headers(request: CapturedRequest, version: ProtocolVersion, index: int = 0) -> List[CheckResult]:
    """Method, encoding, content type, version header and user agent."""
    headers = request.headers
    prefix = f"request {index}"
    results = [
        must("method_post", request.method == "POST", f"{prefix} used {request.method}, want POST"),
        must(
            "content_encoding_snappy",
            headers.get("Content-Encoding", "").lower() == transport.CONTENT_ENCODING,
            f"{prefix} Content-Encoding is {headers.get('Content-Encoding')!r}",
        ),
        must(
            "snappy_block_format",
            not transport.is_framed(request.body),
            f"{prefix} body uses snappy framed format",
        ),
    ]

    base, params = transport.parse_content_type(headers.get("Content-Type", ""))
    results.append(
        must(
            "content_type_protobuf",
            base == transport.CONTENT_TYPE_PROTOBUF,
            f"{prefix} Content-Type is {headers.get('Content-Type')!r}",
        )
    )
    proto = params.get("proto")
    if version is ProtocolVersion.V2:
        results.append(
            must(
                "content_type_proto",
                proto == version.proto_message,
                f"{prefix} Content-Type proto parameter is {proto!r}, want {version.proto_message!r}",
            )
        )
    else:
        results.append(
            should(
                "content_type_proto",
                proto in (None, version.proto_message),
                f"{prefix} Content-Type proto parameter is {proto!r}",
            )
        )

    sent_version = headers.get(transport.VERSION_HEADER, "")
    results.append(
        must(
            "version_header",
            sent_version == version.value,
            f"{prefix} {transport.VERSION_HEADER} is {sent_version!r}, want {version.value!r}",
        )
    )
    results.append(
        must(
            "user_agent_present",
            bool(headers.get("User-Agent", "").strip()),
            f"{prefix} has no User-Agent",
        )
    )
    return results


def check_request_headers(requests: Sequence[CapturedRequest], version: ProtocolVersion) -> List[CheckResult]:
    results = []
    for i, req in enumerate(requests):
        results.extend(check_headers(req, version, i))
    return results


# ---------------------------------------------------------------------------
# Retries and backoff
# ---------------------------------------------------------------------------


def is_retry(previous: CapturedRequest, current: CapturedRequest) -> bool:
    """Best-effort guess that current resends the batch of previous.

    Two requests whose first sample carries the same timestamp are taken to
    be the same batch. A sender may legitimately send different batches that
    share a leading timestamp, so this is a hint for retry and backoff
    assertions, not proof.
    """
    a = previous.leading_timestamp()
    b = current.leading_timestamp()
    return a is not None and a == b


def _pair(requests: Sequence[CapturedRequest], a: int, b: int) -> Optional[CheckResult]:
    needed = max(a, b) + 1
    if len(requests) < needed:
        return check_request_count(requests, needed)
    return None


def check_retry(
    requests: Sequence[CapturedRequest], a: int, b: int, level: Level = Level.MUST
) -> CheckResult:
    """Request b is a retry of request a."""
    missing = _pair(requests, a, b)
    if missing is not None:
        return missing
    return check(
        level,
        "retried",
        is_retry(requests[a], requests[b]),
        f"found no retry; expected the same sample on request {a} and {b}; got\n"
        f"{describe_requests(list(requests))}",
    )


def check_no_retry(
    requests: Sequence[CapturedRequest], a: int, b: int, level: Level = Level.MUST
) -> CheckResult:
    """Request b carries a different batch than request a."""
    missing = _pair(requests, a, b)
    if missing is not None:
        return missing
    return check(
        level,
        "not_retried",
        not is_retry(requests[a], requests[b]),
        f"detected retry; got the same sample on request {a} and {b}; got\n"
        f"{describe_requests(list(requests))}",
    )


def retry_gaps(requests: Sequence[CapturedRequest]) -> List[float]:
    """Seconds between consecutive requests that look like retries."""
    gaps = []
    for prev, cur in zip(requests, requests[1:]):
        if is_retry(prev, cur):
            gaps.append(cur.received_monotonic - prev.received_monotonic)
    return gaps


def check_backoff(
    requests: Sequence[CapturedRequest],
    tolerance: float = 0.8,
    level: Level = Level.SHOULD,
) -> List[CheckResult]:
    """Retry gaps grow (or at least do not shrink beyond tolerance).

    Only the shape is checked: each gap must be at least tolerance times the
    one before it. No particular backoff formula is assumed.
    """
    gaps = retry_gaps(requests)
    if len(gaps) < 2:
        return [
            check(
                level,
                "backoff_observable",
                False,
                f"need at least 2 retries to judge backoff, saw {len(gaps)}",
            )
        ]
    results = []
    for i in range(1, len(gaps)):
        ratio = gaps[i] / gaps[i - 1] if gaps[i - 1] > 0 else float("inf")
        results.append(
            check(
                level,
                "backoff_increasing",
                ratio >= tolerance,
                f"retry gap {i} is {gaps[i]:.3f}s after {gaps[i - 1]:.3f}s (ratio {ratio:.2f})",
            )
        )
    return results


def check_min_backoff(
    requests: Sequence[CapturedRequest], minimum: float = 0.1
) -> List[CheckResult]:
    """No retry follows its predecessor faster than minimum seconds."""
    return [
        should(
            "backoff_minimum",
            gap >= minimum,
            f"retry gap {i} is {gap:.3f}s, below {minimum:.3f}s",
        )
        for i, gap in enumerate(retry_gaps(requests))
    ]


# ---------------------------------------------------------------------------
# Staleness
# ---------------------------------------------------------------------------


def find_stale_markers(
    requests: Sequence[CapturedRequest], metric_name: str
) -> List[Tuple[int, Sample]]:
    """(request index, sample) for every NaN sample sent for metric_name."""
    found = []
    for i, req in enumerate(requests):
        if req.message is None:
            continue
        for series in req.message.time_series():
            if req.message.metric_name(series) != metric_name:
                continue
            found.extend((i, s) for s in req.message.samples(series) if s.is_stale)
    return found


def check_staleness(requests: Sequence[CapturedRequest], metric_name: str) -> CheckResult:
    """A series that disappeared from the target should get a stale marker."""
    return should(
        "stale_marker_sent",
        bool(find_stale_markers(requests, metric_name)),
        f"no stale marker (NaN sample) sent for {metric_name}",
    )
