"""Tests for the message models, the protobuf schemas and the request builder."""

import pytest

from rwcompliance.wire.builder import RequestBuilder
from rwcompliance.wire.errors import MalformedMessage, ProtocolViolation
from rwcompliance.wire.models import (
    BucketSpan,
    Histogram,
    IndexedMessage,
    IndexedTimeSeries,
    Label,
    LegacyMessage,
    LegacyTimeSeries,
    Metadata,
    MetricMetadata,
    MetricType,
    ProtocolVersion,
    ResolvedMetadata,
    Sample,
)
from rwcompliance.wire.protobuf import encode_bytes, encode_double, encode_int64, encode_string
from rwcompliance.wire.schema import decode_indexed, decode_legacy, parse, serialize

TS = 1_700_000_000_000


def _roundtrip(message):
    return parse(serialize(message), message.version)


# ---------------------------------------------------------------------------
# Protocol version
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "value, expected",
    [
        ("0.1.0", ProtocolVersion.V1),
        ("2.0.0", ProtocolVersion.V2),
        ("io.prometheus.write.v2.Request", ProtocolVersion.V2),
        ("prometheus.WriteRequest", ProtocolVersion.V1),
        ("rw1", ProtocolVersion.V1),
        ("v2", ProtocolVersion.V2),
    ],
)
def test_protocol_version_parse(value: str, expected: ProtocolVersion) -> None:
    """Version strings, proto names and short forms all parse."""
    assert ProtocolVersion.parse(value) is expected


def test_protocol_version_parse_unknown() -> None:
    """Unknown versions raise ValueError."""
    with pytest.raises(ValueError):
        ProtocolVersion.parse("3.0.0")


# ---------------------------------------------------------------------------
# Builder + round trip, both versions
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("version", list(ProtocolVersion))
def test_labels_come_back_sorted(version: ProtocolVersion) -> None:
    """Labels given out of order are sent sorted and decode that way."""
    message = (
        RequestBuilder(version=version)
        .add_sample({"__name__": "test_metric", "b": "2", "a": "1"}, 1.0, TS)
        .build()
    )
    decoded = _roundtrip(message)

    series = decoded.time_series()
    assert len(series) == 1
    assert decoded.metric_name(series[0]) == "test_metric"
    assert list(decoded.labels(series[0])) == ["__name__", "a", "b"]
    assert decoded.labels(series[0]) == {"__name__": "test_metric", "a": "1", "b": "2"}
    assert decoded.samples(series[0]) == (Sample(value=1.0, timestamp=TS),)


def test_unsorted_builder_keeps_given_order() -> None:
    """With sorting off the builder keeps the caller's order."""
    message = (
        RequestBuilder(sort_labels=False)
        .add_sample({"__name__": "m", "b": "2", "a": "1"}, 1.0, TS)
        .build()
    )
    decoded = _roundtrip(message)
    assert [n for n, _ in decoded.label_pairs(decoded.timeseries[0])] == ["__name__", "b", "a"]


def test_same_label_set_shares_one_series() -> None:
    """Samples for the same label set land in one series."""
    message = (
        RequestBuilder()
        .add_sample({"__name__": "m", "x": "1"}, 1.0, TS)
        .add_sample({"x": "1", "__name__": "m"}, 2.0, TS + 1000)
        .build()
    )
    assert len(message.timeseries) == 1
    assert [s.value for s in message.timeseries[0].samples] == [1.0, 2.0]


def test_indexed_symbols_are_deduplicated() -> None:
    """Repeated strings share one symbol."""
    message = (
        RequestBuilder()
        .add_sample({"__name__": "http_requests_total", "method": "GET"}, 1.0, TS)
        .add_sample({"__name__": "http_requests_total", "method": "POST"}, 2.0, TS)
        .build()
    )
    assert message.symbols[0] == ""
    assert message.symbols.count("http_requests_total") == 1
    assert message.symbols.count("method") == 1


def test_exemplars_and_metadata_resolve() -> None:
    """Exemplars, metadata and created timestamps resolve after a round trip."""
    labels = {"__name__": "http_requests_total", "method": "GET"}
    message = (
        RequestBuilder()
        .add_sample(labels, 10.0, TS, created_timestamp=TS - 60_000)
        .add_exemplar(labels, 1.0, TS, {"trace_id": "abc"})
        .add_metadata("http_requests_total", MetricType.COUNTER, help="Total requests", unit="")
        .build()
    )
    decoded = _roundtrip(message)
    series = decoded.timeseries[0]

    assert decoded.exemplars(series)[0].label_dict() == {"trace_id": "abc"}
    assert decoded.exemplars(series)[0].timestamp == TS
    assert decoded.metadata(series) == ResolvedMetadata(MetricType.COUNTER, "Total requests", "")
    assert series.metadata.unit_ref == 0
    assert series.created_timestamp == TS - 60_000
    assert decoded.samples(series)[0].created_timestamp == TS - 60_000
    assert decoded.counts() == (1, 1, 0)


def test_legacy_metadata_is_request_level() -> None:
    """0.1.0 metadata travels at request level and still resolves per series."""
    message = (
        RequestBuilder(version=ProtocolVersion.V1)
        .add_sample({"__name__": "temp_celsius"}, 21.5, TS)
        .add_metadata("temp_celsius", MetricType.GAUGE, help="Temperature", unit="celsius")
        .build()
    )
    decoded = _roundtrip(message)

    assert isinstance(decoded, LegacyMessage)
    assert decoded.metric_metadata[0].metric_family_name == "temp_celsius"
    md = decoded.metadata(decoded.timeseries[0])
    assert md == ResolvedMetadata(MetricType.GAUGE, "Temperature", "celsius")
    assert decoded.histograms(decoded.timeseries[0]) == ()


def test_legacy_metadata_matches_whole_family_names() -> None:
    """Family metadata reaches its suffixed series but not longer names sharing a prefix."""

    def series(name: str) -> LegacyTimeSeries:
        return LegacyTimeSeries(labels=(Label("__name__", name),), samples=(Sample(1.0, TS),))

    message = LegacyMessage(
        timeseries=(series("up"), series("uptime_seconds"), series("requests_total")),
        metric_metadata=(
            MetricMetadata(MetricType.GAUGE, "up", help="target up"),
            MetricMetadata(MetricType.COUNTER, "requests", help="requests served"),
        ),
    )

    assert message.metadata(message.find_series("up")).help == "target up"
    assert message.metadata(message.find_series("uptime_seconds")) is None
    assert message.metadata(message.find_series("requests_total")).type is MetricType.COUNTER


def test_native_histogram_round_trip() -> None:
    """Integer native histograms survive encode and decode unchanged."""
    histogram = Histogram(
        count_int=12,
        sum=18.4,
        schema=-1,
        zero_threshold=0.001,
        zero_count_int=2,
        negative_spans=(BucketSpan(offset=-2, length=1),),
        negative_deltas=(1,),
        positive_spans=(BucketSpan(offset=0, length=2), BucketSpan(offset=1, length=1)),
        positive_deltas=(1, 2, -1),
        timestamp=TS,
        created_timestamp=TS - 1000,
    )
    message = (
        RequestBuilder()
        .add_histogram({"__name__": "request_duration_seconds"}, histogram)
        .build()
    )
    decoded = _roundtrip(message)
    got = decoded.histograms(decoded.timeseries[0])[0]

    assert got == histogram
    assert not got.is_float
    assert got.count == 12.0


def test_float_histogram_uses_float_variant() -> None:
    """Float histograms use the float oneof variants."""
    histogram = Histogram(count_float=3.5, zero_count_float=0.5, sum=1.0, timestamp=TS,
                          positive_spans=(BucketSpan(0, 1),), positive_counts=(3.0,))
    message = RequestBuilder().add_histogram({"__name__": "h"}, histogram).build()
    got = _roundtrip(message).timeseries[0].histograms[0]

    assert got.is_float
    assert got.count_int is None
    assert got.count_float == 3.5
    assert got.positive_counts == (3.0,)


# ---------------------------------------------------------------------------
# Builder guard rails
# ---------------------------------------------------------------------------


def test_builder_refuses_samples_and_histograms_together() -> None:
    """The builder refuses requests mixing samples and histograms."""
    builder = (
        RequestBuilder()
        .add_sample({"__name__": "a"}, 1.0, TS)
        .add_histogram({"__name__": "b"}, Histogram(count_int=1, timestamp=TS))
    )
    with pytest.raises(ProtocolViolation):
        builder.build()


def test_unsafe_builder_allows_mixed_series() -> None:
    """Unsafe mode builds mixed series for negative tests."""
    message = (
        RequestBuilder(unsafe=True)
        .add_sample({"__name__": "a"}, 1.0, TS)
        .add_histogram({"__name__": "a"}, Histogram(count_int=1, timestamp=TS))
        .build()
    )
    series = message.timeseries[0]
    assert series.samples and series.histograms


def test_exemplar_without_series_is_refused() -> None:
    """Exemplars need an existing series."""
    with pytest.raises(ProtocolViolation):
        RequestBuilder().add_exemplar({"__name__": "nope"}, 1.0, TS)


def test_metadata_without_series_is_refused() -> None:
    """Metadata for a metric with no series is refused."""
    builder = RequestBuilder().add_sample({"__name__": "a"}, 1.0, TS).add_metadata("b", MetricType.GAUGE)
    with pytest.raises(ProtocolViolation):
        builder.build()


def test_unsafe_orphan_metadata_gets_own_series() -> None:
    """In unsafe mode orphan metadata gets an empty series."""
    message = RequestBuilder(unsafe=True).add_metadata("lonely", MetricType.GAUGE, help="h").build()
    series = message.timeseries[0]
    assert message.metric_name(series) == "lonely"
    assert message.metadata(series).help == "h"
    assert not series.samples


def test_legacy_rejects_native_histograms() -> None:
    """0.1.0 cannot carry native histograms."""
    with pytest.raises(ProtocolViolation):
        RequestBuilder(version=ProtocolVersion.V1).add_histogram({"__name__": "h"}, Histogram())


# ---------------------------------------------------------------------------
# Permissive decoding
# ---------------------------------------------------------------------------


def test_decode_keeps_broken_refs_for_inspection() -> None:
    """Out-of-range refs are a validation matter, not a decode error."""
    message = IndexedMessage(
        symbols=("", "__name__", "m"),
        timeseries=(IndexedTimeSeries(labels_refs=(1, 2, 1, 7), samples=(Sample(1.0, TS),)),),
    )
    decoded = decode_indexed(serialize(message))

    assert decoded.timeseries[0].labels_refs == (1, 2, 1, 7)
    assert decoded.labels(decoded.timeseries[0]) == {"__name__": "m"}


def test_decode_keeps_symbol_table_as_sent() -> None:
    """Decoding keeps duplicate symbols and tolerates bad lookups."""
    data = encode_string(4, "dup") + encode_string(4, "dup")
    decoded = decode_indexed(data)
    assert decoded.symbols == ("dup", "dup")
    assert decoded.symbol(5) == ""


def test_decode_skips_unknown_fields() -> None:
    """Unknown fields are skipped, not rejected."""
    series = encode_bytes(1, encode_string(1, "__name__") + encode_string(2, "m"))
    data = encode_bytes(1, series) + encode_int64(15, 99)
    decoded = decode_legacy(data)
    assert decoded.metric_name(decoded.timeseries[0]) == "m"


def test_decode_histogram_with_both_count_variants_keeps_float() -> None:
    """When a sender sets both oneof variants, the float counts are kept."""
    histogram = (
        encode_int64(1, 7)
        + encode_double(2, 2.5)
        + encode_int64(6, 1)
        + encode_double(7, 0.5)
        + encode_int64(15, TS)
    )
    data = encode_bytes(5, encode_bytes(3, histogram))
    got = decode_indexed(data).timeseries[0].histograms[0]

    assert got.is_float
    assert got.count_int is None
    assert got.count_float == 2.5
    assert got.zero_count_int is None
    assert got.zero_count_float == 0.5


def test_decode_wrong_wire_type_is_malformed() -> None:
    """A known field with the wrong wire type is malformed."""
    # field 5 (timeseries) sent as a varint
    with pytest.raises(MalformedMessage):
        decode_indexed(encode_int64(5, 1))


def test_metadata_absent_when_default() -> None:
    """All-default metadata reads as absent."""
    message = IndexedMessage(
        symbols=("", "__name__", "m"),
        timeseries=(IndexedTimeSeries(labels_refs=(1, 2), metadata=Metadata()),),
    )
    assert message.metadata(message.timeseries[0]) is None


def test_find_series_by_name() -> None:
    """find_series looks series up by metric name."""
    message = (
        RequestBuilder()
        .add_sample({"__name__": "a"}, 1.0, TS)
        .add_sample({"__name__": "b"}, 2.0, TS)
        .build()
    )
    assert message.samples(message.find_series("b"))[0].value == 2.0
    assert message.find_series("c") is None
    assert "b" in message.describe()
