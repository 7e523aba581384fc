"""Remote-write wire codec: symbol tables, message models and the HTTP envelope."""

from rwcompliance.wire.builder import RequestBuilder
from rwcompliance.wire.models import (
    IndexedMessage,
    LegacyMessage,
    MetricType,
    ProtocolVersion,
    WireMessage,
)
from rwcompliance.wire.transport import decode, encode_request

__all__ = [
    "IndexedMessage",
    "LegacyMessage",
    "MetricType",
    "ProtocolVersion",
    "RequestBuilder",
    "WireMessage",
    "decode",
    "encode_request",
]
