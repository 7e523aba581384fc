"""HTTP envelope of remote-write requests: headers and snappy block compression."""

from typing import Dict, Mapping, NamedTuple, Optional, Tuple

import snappy
from requests.structures import CaseInsensitiveDict

from rwcompliance.wire.errors import CompressionError, ProtocolViolation
from rwcompliance.wire.models import ProtocolVersion, WireMessage
from rwcompliance.wire.schema import parse, serialize

CONTENT_ENCODING = "snappy"
CONTENT_TYPE_PROTOBUF = "application/x-protobuf"
VERSION_HEADER = "X-Prometheus-Remote-Write-Version"
SAMPLES_WRITTEN_HEADER = "X-Prometheus-Remote-Write-Samples-Written"
EXEMPLARS_WRITTEN_HEADER = "X-Prometheus-Remote-Write-Exemplars-Written"
HISTOGRAMS_WRITTEN_HEADER = "X-Prometheus-Remote-Write-Histograms-Written"
USER_AGENT = "rwcompliance/0.1.0"

# Stream identifier chunk that opens every snappy framed-format stream.
SNAPPY_FRAMED_MAGIC = b"\xff\x06\x00\x00sNaPpY"


class WrittenCounts(NamedTuple):
    """Items a receiver reports as written, one counter per kind."""

    samples: int = 0
    exemplars: int = 0
    histograms: int = 0

    @property
    def total(self) -> int:
        return self.samples + self.exemplars + self.histograms


def content_type(version: ProtocolVersion) -> str:
    """Content-Type a conforming sender uses for the given version."""
    if version is ProtocolVersion.V1:
        return CONTENT_TYPE_PROTOBUF
    return f"{CONTENT_TYPE_PROTOBUF};proto={version.proto_message}"


def parse_content_type(value: str) -> Tuple[str, Dict[str, str]]:
    """Split a Content-Type header into its lower-cased base and parameters."""
    base, _, rest = value.partition(";")
    params = {}
    for part in rest.split(";"):
        key, sep, val = part.partition("=")
        if sep:
            params[key.strip().lower()] = val.strip().strip('"')
    return base.strip().lower(), params


def detect_version(
    headers: Mapping[str, str], default: ProtocolVersion = ProtocolVersion.V1
) -> ProtocolVersion:
    """Work out the protocol version a request claims to use.

    The proto= parameter of Content-Type wins over the version header; a
    request carrying neither is assumed to be the default version.
    """
    headers = CaseInsensitiveDict(headers)
    _, params = parse_content_type(headers.get("Content-Type", ""))
    for candidate in (params.get("proto"), headers.get(VERSION_HEADER)):
        if candidate:
            try:
                return ProtocolVersion.parse(candidate)
            except ValueError:
                continue
    return default


def is_framed(body: bytes) -> bool:
    """Whether body uses the snappy framed format instead of block format."""
    return body.startswith(SNAPPY_FRAMED_MAGIC)


def decompress(body: bytes) -> bytes:
    """Decompress a snappy block-format body.

    Raises:
        CompressionError: If the body is framed or not valid block data.
    """
    if is_framed(body):
        raise CompressionError("body uses snappy framed format, block format required")
    try:
        return snappy.uncompress(body)
    except (snappy.UncompressError, ValueError, TypeError) as e:
        raise CompressionError(f"invalid snappy block data: {e}") from e


def decode(
    headers: Mapping[str, str],
    body: bytes,
    version: Optional[ProtocolVersion] = None,
) -> WireMessage:
    """Turn a request body into a wire message.

    Args:
        headers: Request headers; Content-Encoding decides on decompression.
        body: Raw request body.
        version: Schema to parse with. Detected from headers when None.

    Raises:
        CompressionError: On bad snappy input.
        MalformedMessage: If the decompressed bytes do not parse.
    """
    headers = CaseInsensitiveDict(headers)
    if version is None:
        version = detect_version(headers)
    encoding = headers.get("Content-Encoding", "").strip().lower()
    data = decompress(body) if encoding == CONTENT_ENCODING else body
    return parse(data, version)


def encode_request(
    message: WireMessage, user_agent: str = USER_AGENT
) -> Tuple[CaseInsensitiveDict, bytes]:
    """Produce the headers and compressed body a conforming sender would send."""
    headers = CaseInsensitiveDict(
        {
            "Content-Encoding": CONTENT_ENCODING,
            "Content-Type": content_type(message.version),
            VERSION_HEADER: message.version.value,
            "User-Agent": user_agent,
        }
    )
    return headers, snappy.compress(serialize(message))


def written_headers(counts: WrittenCounts) -> Dict[str, str]:
    """Response headers reporting written items."""
    return {
        SAMPLES_WRITTEN_HEADER: str(counts.samples),
        EXEMPLARS_WRITTEN_HEADER: str(counts.exemplars),
        HISTOGRAMS_WRITTEN_HEADER: str(counts.histograms),
    }


def parse_written_counts(headers: Mapping[str, str]) -> WrittenCounts:
    """Read the written-count response headers. Missing headers count as 0.

    Raises:
        ProtocolViolation: If a header is present but not a non-negative integer.
    """
    headers = CaseInsensitiveDict(headers)
    values = []
    for name in (SAMPLES_WRITTEN_HEADER, EXEMPLARS_WRITTEN_HEADER, HISTOGRAMS_WRITTEN_HEADER):
        raw = headers.get(name, "").strip()
        if not raw:
            values.append(0)
            continue
        if not (raw.isascii() and raw.isdigit()):
            raise ProtocolViolation(f"{name} is not a non-negative integer: {raw!r}")
        values.append(int(raw))
    return WrittenCounts(*values)
