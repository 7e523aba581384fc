"""Protobuf schemas of both remote-write message versions.

Decoding is permissive: unknown fields are skipped and nothing here checks
label order, symbol references or payload separation. Those are protocol
rules enforced by the validators, so a request that parses is always
available for inspection. Only structurally broken input (truncation, wrong
wire types, invalid UTF-8) raises MalformedMessage.
"""

from typing import Dict, List

from rwcompliance.wire.models import (
    BucketSpan,
    Histogram,
    IndexedExemplar,
    IndexedMessage,
    IndexedTimeSeries,
    Label,
    LegacyExemplar,
    LegacyMessage,
    LegacyTimeSeries,
    Metadata,
    MetricMetadata,
    MetricType,
    ProtocolVersion,
    Sample,
    WireMessage,
)
from rwcompliance.wire.protobuf import (
    WIRE_LENGTH_DELIMITED,
    WIRE_VARINT,
    encode_bytes,
    encode_double,
    encode_int64,
    encode_packed_doubles,
    encode_packed_sints,
    encode_packed_varints,
    encode_sint,
    encode_string,
    expect_wire_type,
    iter_fields,
    read_double,
    read_doubles,
    read_string,
    read_varints,
    to_int64,
    zigzag_decode,
)


def _read_int64(field_number: int, wire_type: int, value) -> int:
    expect_wire_type(field_number, wire_type, WIRE_VARINT)
    return to_int64(value)


def _read_uint(field_number: int, wire_type: int, value) -> int:
    expect_wire_type(field_number, wire_type, WIRE_VARINT)
    return value


def _read_sint(field_number: int, wire_type: int, value) -> int:
    expect_wire_type(field_number, wire_type, WIRE_VARINT)
    return zigzag_decode(value)


def _read_message(field_number: int, wire_type: int, value) -> bytes:
    expect_wire_type(field_number, wire_type, WIRE_LENGTH_DELIMITED)
    return value


# ---------------------------------------------------------------------------
# Legacy: prometheus.WriteRequest
# ---------------------------------------------------------------------------


def _encode_label(label: Label) -> bytes:
    """message Label { string name = 1; string value = 2; }"""
    return encode_string(1, label.name) + encode_string(2, label.value)


def _encode_legacy_sample(sample: Sample) -> bytes:
    """message Sample { double value = 1; int64 timestamp = 2; }"""
    return encode_double(1, sample.value) + encode_int64(2, sample.timestamp)


def _encode_legacy_exemplar(exemplar: LegacyExemplar) -> bytes:
    data = b"".join(encode_bytes(1, _encode_label(lbl)) for lbl in exemplar.labels)
    return data + encode_double(2, exemplar.value) + encode_int64(3, exemplar.timestamp)


def _encode_legacy_series(series: LegacyTimeSeries) -> bytes:
    """Encode a TimeSeries message.

    message TimeSeries {
        repeated Label labels = 1;
        repeated Sample samples = 2;
        repeated Exemplar exemplars = 3;
    }
    """
    parts = [encode_bytes(1, _encode_label(lbl)) for lbl in series.labels]
    parts.extend(encode_bytes(2, _encode_legacy_sample(s)) for s in series.samples)
    parts.extend(encode_bytes(3, _encode_legacy_exemplar(e)) for e in series.exemplars)
    return b"".join(parts)


def _encode_metric_metadata(md: MetricMetadata) -> bytes:
    """message MetricMetadata { type = 1; metric_family_name = 2; help = 4; unit = 5; }"""
    data = encode_int64(1, int(md.type)) if md.type else b""
    if md.metric_family_name:
        data += encode_string(2, md.metric_family_name)
    if md.help:
        data += encode_string(4, md.help)
    if md.unit:
        data += encode_string(5, md.unit)
    return data


def encode_legacy(message: LegacyMessage) -> bytes:
    """Serialize a LegacyMessage (uncompressed)."""
    parts = [encode_bytes(1, _encode_legacy_series(ts)) for ts in message.timeseries]
    parts.extend(encode_bytes(3, _encode_metric_metadata(md)) for md in message.metric_metadata)
    return b"".join(parts)


def _decode_label(data: bytes) -> Label:
    name = value = ""
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            name = read_string(fn, wt, v)
        elif fn == 2:
            value = read_string(fn, wt, v)
    return Label(name=name, value=value)


def _decode_legacy_sample(data: bytes) -> Sample:
    value, timestamp = 0.0, 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            value = read_double(fn, wt, v)
        elif fn == 2:
            timestamp = _read_int64(fn, wt, v)
    return Sample(value=value, timestamp=timestamp)


def _decode_legacy_exemplar(data: bytes) -> LegacyExemplar:
    labels: List[Label] = []
    value, timestamp = 0.0, 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            labels.append(_decode_label(_read_message(fn, wt, v)))
        elif fn == 2:
            value = read_double(fn, wt, v)
        elif fn == 3:
            timestamp = _read_int64(fn, wt, v)
    return LegacyExemplar(labels=tuple(labels), value=value, timestamp=timestamp)


def _decode_legacy_series(data: bytes) -> LegacyTimeSeries:
    labels: List[Label] = []
    samples: List[Sample] = []
    exemplars: List[LegacyExemplar] = []
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            labels.append(_decode_label(_read_message(fn, wt, v)))
        elif fn == 2:
            samples.append(_decode_legacy_sample(_read_message(fn, wt, v)))
        elif fn == 3:
            exemplars.append(_decode_legacy_exemplar(_read_message(fn, wt, v)))
        # field 4 (histograms) is not part of the 0.1.0 protocol
    return LegacyTimeSeries(
        labels=tuple(labels), samples=tuple(samples), exemplars=tuple(exemplars)
    )


def _decode_metric_metadata(data: bytes) -> MetricMetadata:
    fields: Dict[str, object] = {}
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            fields["type"] = MetricType.from_wire(_read_uint(fn, wt, v))
        elif fn == 2:
            fields["metric_family_name"] = read_string(fn, wt, v)
        elif fn == 4:
            fields["help"] = read_string(fn, wt, v)
        elif fn == 5:
            fields["unit"] = read_string(fn, wt, v)
    return MetricMetadata(**fields)


def decode_legacy(data: bytes) -> LegacyMessage:
    """Parse an uncompressed prometheus.WriteRequest.

    Raises:
        MalformedMessage: If the bytes are not a well-formed message.
    """
    timeseries: List[LegacyTimeSeries] = []
    metadata: List[MetricMetadata] = []
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            timeseries.append(_decode_legacy_series(_read_message(fn, wt, v)))
        elif fn == 3:
            metadata.append(_decode_metric_metadata(_read_message(fn, wt, v)))
    return LegacyMessage(timeseries=tuple(timeseries), metric_metadata=tuple(metadata))


# ---------------------------------------------------------------------------
# Indexed: io.prometheus.write.v2.Request
# ---------------------------------------------------------------------------


def _encode_indexed_sample(sample: Sample) -> bytes:
    """message Sample { double value = 1; int64 timestamp = 2; int64 start_timestamp = 3; }"""
    data = encode_double(1, sample.value) + encode_int64(2, sample.timestamp)
    if sample.created_timestamp:
        data += encode_int64(3, sample.created_timestamp)
    return data


def _encode_span(span: BucketSpan) -> bytes:
    """message BucketSpan { sint32 offset = 1; uint32 length = 2; }"""
    return encode_sint(1, span.offset) + encode_int64(2, span.length)


def _encode_histogram(h: Histogram) -> bytes:
    parts = []
    if h.count_float is not None:
        parts.append(encode_double(2, h.count_float))
    else:
        parts.append(encode_int64(1, h.count_int or 0))
    parts.append(encode_double(3, h.sum))
    parts.append(encode_sint(4, h.schema))
    parts.append(encode_double(5, h.zero_threshold))
    if h.zero_count_float is not None:
        parts.append(encode_double(7, h.zero_count_float))
    else:
        parts.append(encode_int64(6, h.zero_count_int or 0))
    parts.extend(encode_bytes(8, _encode_span(s)) for s in h.negative_spans)
    parts.append(encode_packed_sints(9, list(h.negative_deltas)))
    parts.append(encode_packed_doubles(10, list(h.negative_counts)))
    parts.extend(encode_bytes(11, _encode_span(s)) for s in h.positive_spans)
    parts.append(encode_packed_sints(12, list(h.positive_deltas)))
    parts.append(encode_packed_doubles(13, list(h.positive_counts)))
    if h.reset_hint:
        parts.append(encode_int64(14, h.reset_hint))
    parts.append(encode_int64(15, h.timestamp))
    parts.append(encode_packed_doubles(16, list(h.custom_values)))
    if h.created_timestamp:
        parts.append(encode_int64(17, h.created_timestamp))
    return b"".join(parts)


def _encode_indexed_exemplar(exemplar: IndexedExemplar) -> bytes:
    return (
        encode_packed_varints(1, list(exemplar.labels_refs))
        + encode_double(2, exemplar.value)
        + encode_int64(3, exemplar.timestamp)
    )


def _encode_metadata(md: Metadata) -> bytes:
    """message Metadata { MetricType type = 1; uint32 help_ref = 3; uint32 unit_ref = 4; }"""
    data = b""
    if md.type:
        data += encode_int64(1, int(md.type))
    if md.help_ref:
        data += encode_int64(3, md.help_ref)
    if md.unit_ref:
        data += encode_int64(4, md.unit_ref)
    return data


def _encode_indexed_series(series: IndexedTimeSeries) -> bytes:
    """Encode a v2 TimeSeries message.

    message TimeSeries {
        repeated uint32 labels_refs = 1;
        repeated Sample samples = 2;
        repeated Histogram histograms = 3;
        repeated Exemplar exemplars = 4;
        Metadata metadata = 5;
        int64 created_timestamp = 6;
    }
    """
    parts = [encode_packed_varints(1, list(series.labels_refs))]
    parts.extend(encode_bytes(2, _encode_indexed_sample(s)) for s in series.samples)
    parts.extend(encode_bytes(3, _encode_histogram(h)) for h in series.histograms)
    parts.extend(encode_bytes(4, _encode_indexed_exemplar(e)) for e in series.exemplars)
    parts.append(encode_bytes(5, _encode_metadata(series.metadata)))
    if series.created_timestamp:
        parts.append(encode_int64(6, series.created_timestamp))
    return b"".join(parts)


def encode_indexed(message: IndexedMessage) -> bytes:
    """Serialize an IndexedMessage (uncompressed).

    message Request {
        repeated string symbols = 4;
        repeated TimeSeries timeseries = 5;
    }
    """
    parts = [encode_string(4, s) for s in message.symbols]
    parts.extend(encode_bytes(5, _encode_indexed_series(ts)) for ts in message.timeseries)
    return b"".join(parts)


def _decode_indexed_sample(data: bytes) -> Sample:
    value, timestamp, created = 0.0, 0, 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            value = read_double(fn, wt, v)
        elif fn == 2:
            timestamp = _read_int64(fn, wt, v)
        elif fn == 3:
            created = _read_int64(fn, wt, v)
    return Sample(value=value, timestamp=timestamp, created_timestamp=created)


def _decode_span(data: bytes) -> BucketSpan:
    offset = length = 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            offset = _read_sint(fn, wt, v)
        elif fn == 2:
            length = _read_uint(fn, wt, v)
    return BucketSpan(offset=offset, length=length)


def _decode_histogram(data: bytes) -> Histogram:
    fields: Dict[str, object] = {}
    spans: Dict[int, List[BucketSpan]] = {8: [], 11: []}
    deltas: Dict[int, List[int]] = {9: [], 12: []}
    counts: Dict[int, List[float]] = {10: [], 13: [], 16: []}
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            fields["count_int"] = _read_uint(fn, wt, v)
        elif fn == 2:
            fields["count_float"] = read_double(fn, wt, v)
        elif fn == 3:
            fields["sum"] = read_double(fn, wt, v)
        elif fn == 4:
            fields["schema"] = _read_sint(fn, wt, v)
        elif fn == 5:
            fields["zero_threshold"] = read_double(fn, wt, v)
        elif fn == 6:
            fields["zero_count_int"] = _read_uint(fn, wt, v)
        elif fn == 7:
            fields["zero_count_float"] = read_double(fn, wt, v)
        elif fn in spans:
            spans[fn].append(_decode_span(_read_message(fn, wt, v)))
        elif fn in deltas:
            deltas[fn].extend(zigzag_decode(x) for x in read_varints(fn, wt, v))
        elif fn in counts:
            counts[fn].extend(read_doubles(fn, wt, v))
        elif fn == 14:
            fields["reset_hint"] = _read_uint(fn, wt, v)
        elif fn == 15:
            fields["timestamp"] = _read_int64(fn, wt, v)
        elif fn == 17:
            fields["created_timestamp"] = _read_int64(fn, wt, v)
    # oneof: when both variants arrive the float one is kept
    if "count_int" in fields and "count_float" in fields:
        fields.pop("count_int")
    if "zero_count_int" in fields and "zero_count_float" in fields:
        fields.pop("zero_count_int")
    return Histogram(
        negative_spans=tuple(spans[8]),
        negative_deltas=tuple(deltas[9]),
        negative_counts=tuple(counts[10]),
        positive_spans=tuple(spans[11]),
        positive_deltas=tuple(deltas[12]),
        positive_counts=tuple(counts[13]),
        custom_values=tuple(counts[16]),
        **fields,
    )


def _decode_indexed_exemplar(data: bytes) -> IndexedExemplar:
    refs: List[int] = []
    value, timestamp = 0.0, 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            refs.extend(read_varints(fn, wt, v))
        elif fn == 2:
            value = read_double(fn, wt, v)
        elif fn == 3:
            timestamp = _read_int64(fn, wt, v)
    return IndexedExemplar(labels_refs=tuple(refs), value=value, timestamp=timestamp)


def _decode_metadata(data: bytes) -> Metadata:
    type_, help_ref, unit_ref = MetricType.UNSPECIFIED, 0, 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            type_ = MetricType.from_wire(_read_uint(fn, wt, v))
        elif fn == 3:
            help_ref = _read_uint(fn, wt, v)
        elif fn == 4:
            unit_ref = _read_uint(fn, wt, v)
    return Metadata(type=type_, help_ref=help_ref, unit_ref=unit_ref)


def _decode_indexed_series(data: bytes) -> IndexedTimeSeries:
    refs: List[int] = []
    samples: List[Sample] = []
    histograms: List[Histogram] = []
    exemplars: List[IndexedExemplar] = []
    metadata = Metadata()
    created = 0
    for fn, wt, v in iter_fields(data):
        if fn == 1:
            refs.extend(read_varints(fn, wt, v))
        elif fn == 2:
            samples.append(_decode_indexed_sample(_read_message(fn, wt, v)))
        elif fn == 3:
            histograms.append(_decode_histogram(_read_message(fn, wt, v)))
        elif fn == 4:
            exemplars.append(_decode_indexed_exemplar(_read_message(fn, wt, v)))
        elif fn == 5:
            metadata = _decode_metadata(_read_message(fn, wt, v))
        elif fn == 6:
            created = _read_int64(fn, wt, v)
    return IndexedTimeSeries(
        labels_refs=tuple(refs),
        samples=tuple(samples),
        histograms=tuple(histograms),
        exemplars=tuple(exemplars),
        metadata=metadata,
        created_timestamp=created,
    )


def decode_indexed(data: bytes) -> IndexedMessage:
    """Parse an uncompressed io.prometheus.write.v2.Request.

    The symbol table is returned exactly as sent, including a missing or
    non-empty first entry, so validators can report on it.

    Raises:
        MalformedMessage: If the bytes are not a well-formed message.
    """
    symbols: List[str] = []
    timeseries: List[IndexedTimeSeries] = []
    for fn, wt, v in iter_fields(data):
        if fn == 4:
            symbols.append(read_string(fn, wt, v))
        elif fn == 5:
            timeseries.append(_decode_indexed_series(_read_message(fn, wt, v)))
    return IndexedMessage(symbols=tuple(symbols), timeseries=tuple(timeseries))


# ---------------------------------------------------------------------------
# Version dispatch
# ---------------------------------------------------------------------------


def serialize(message: WireMessage) -> bytes:
    """Serialize either message shape according to its version tag."""
    if message.version is ProtocolVersion.V1:
        return encode_legacy(message)
    return encode_indexed(message)


def parse(data: bytes, version: ProtocolVersion) -> WireMessage:
    """Parse uncompressed bytes as the schema of the given protocol version."""
    if version is ProtocolVersion.V1:
        return decode_legacy(data)
    return decode_indexed(data)
