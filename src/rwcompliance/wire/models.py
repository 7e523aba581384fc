"""Data models for decoded remote-write requests.

Two message shapes exist on the wire:

- LegacyMessage (protocol 0.1.0): labels inline on every series, no symbol
  table, no native histograms, no created timestamps.
- IndexedMessage (protocol 2.0.0): one shared symbol table, series carry
  label reference lists into it, plus native histograms and per-series
  metadata.

Both expose the same read-only accessors so validators can treat them
alike. Anything that only exists in the indexed shape (symbols, raw refs,
native histograms, created timestamps) is read from the IndexedMessage and
its series directly, after checking ``message.version``.

All models are frozen and hold tuples, so a decoded message can be shared
between threads and captured requests without copying.
"""

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Protocol, Sequence, Tuple, Union

from rwcompliance.wire.symbols import resolve_pairs_lenient

METRIC_NAME_LABEL = "__name__"

# Series names a metric family may expand into, besides the family name itself.
FAMILY_SERIES_SUFFIXES = ("_bucket", "_count", "_sum", "_total", "_created")


class ProtocolVersion(str, Enum):
    """Remote-write protocol versions, valued by their version header."""

    V1 = "0.1.0"
    V2 = "2.0.0"

    @property
    def proto_message(self) -> str:
        """Fully qualified protobuf message name for Content-Type negotiation."""
        if self is ProtocolVersion.V1:
            return "prometheus.WriteRequest"
        return "io.prometheus.write.v2.Request"

    @property
    def short_name(self) -> str:
        """Short label used in scenario names (rw1 / rw2)."""
        return "rw1" if self is ProtocolVersion.V1 else "rw2"

    @classmethod
    def parse(cls, value: "str | ProtocolVersion") -> "ProtocolVersion":
        """Accept a version header value, proto message name or short name."""
        if isinstance(value, ProtocolVersion):
            return value
        normalized = value.strip().lower()
        for version in cls:
            if normalized in (
                version.value,
                version.proto_message.lower(),
                version.short_name,
                version.short_name.replace("rw", "v"),
            ):
                return version
        raise ValueError(f"unknown remote write protocol version: {value!r}")


class MetricType(int, Enum):
    """Metric type carried in series metadata (same numbering in both versions)."""

    UNSPECIFIED = 0
    COUNTER = 1
    GAUGE = 2
    HISTOGRAM = 3
    GAUGE_HISTOGRAM = 4
    SUMMARY = 5
    INFO = 6
    STATESET = 7

    @classmethod
    def from_wire(cls, value: int) -> "MetricType":
        """Map a wire enum value, folding unknown values to UNSPECIFIED."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNSPECIFIED


# ---------------------------------------------------------------------------
# Items shared by both versions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Sample:
    """A float sample. Timestamps are milliseconds since the epoch."""

    value: float
    timestamp: int
    created_timestamp: int = 0  # 0 means absent

    @property
    def is_stale(self) -> bool:
        """Whether this could be a staleness marker.

        Staleness is signalled with a specific NaN bit pattern, but any NaN is
        accepted here since senders are free to normalise NaN payloads.
        """
        return math.isnan(self.value)


@dataclass(frozen=True)
class BucketSpan:
    """A run of consecutive native histogram buckets."""

    offset: int
    length: int


@dataclass(frozen=True)
class Histogram:
    """A native (exponential or custom-bucket) histogram sample."""

    count_int: Optional[int] = None
    count_float: Optional[float] = None
    sum: float = 0.0
    schema: int = 0
    zero_threshold: float = 0.0
    zero_count_int: Optional[int] = None
    zero_count_float: Optional[float] = None
    negative_spans: Tuple[BucketSpan, ...] = ()
    negative_deltas: Tuple[int, ...] = ()
    negative_counts: Tuple[float, ...] = ()
    positive_spans: Tuple[BucketSpan, ...] = ()
    positive_deltas: Tuple[int, ...] = ()
    positive_counts: Tuple[float, ...] = ()
    reset_hint: int = 0
    timestamp: int = 0
    custom_values: Tuple[float, ...] = ()
    created_timestamp: int = 0

    @property
    def is_float(self) -> bool:
        """Float histograms carry count_float instead of count_int."""
        return self.count_float is not None

    @property
    def count(self) -> float:
        """Observation count regardless of the oneof variant used."""
        if self.count_float is not None:
            return self.count_float
        return float(self.count_int or 0)


@dataclass(frozen=True)
class Exemplar:
    """Version-independent view of an exemplar with resolved labels."""

    labels: Tuple[Tuple[str, str], ...]
    value: float
    timestamp: int

    def label_dict(self) -> Dict[str, str]:
        return dict(self.labels)


@dataclass(frozen=True)
class ResolvedMetadata:
    """Version-independent view of series metadata."""

    type: MetricType = MetricType.UNSPECIFIED
    help: str = ""
    unit: str = ""


# ---------------------------------------------------------------------------
# Legacy (0.1.0) shape
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Label:
    """An inline label pair."""

    name: str
    value: str


@dataclass(frozen=True)
class LegacyExemplar:
    labels: Tuple[Label, ...] = ()
    value: float = 0.0
    timestamp: int = 0


@dataclass(frozen=True)
class LegacyTimeSeries:
    labels: Tuple[Label, ...] = ()
    samples: Tuple[Sample, ...] = ()
    exemplars: Tuple[LegacyExemplar, ...] = ()


@dataclass(frozen=True)
class MetricMetadata:
    """Request-level metadata of the legacy protocol, keyed by family name."""

    type: MetricType = MetricType.UNSPECIFIED
    metric_family_name: str = ""
    help: str = ""
    unit: str = ""


@dataclass(frozen=True)
class LegacyMessage:
    """A decoded prometheus.WriteRequest."""

    timeseries: Tuple[LegacyTimeSeries, ...] = ()
    metric_metadata: Tuple[MetricMetadata, ...] = ()

    version = ProtocolVersion.V1

    def time_series(self) -> Tuple[LegacyTimeSeries, ...]:
        return self.timeseries

    def label_pairs(self, series: LegacyTimeSeries) -> List[Tuple[str, str]]:
        """Labels in wire order, duplicates included."""
        return [(label.name, label.value) for label in series.labels]

    def labels(self, series: LegacyTimeSeries) -> Dict[str, str]:
        return dict(self.label_pairs(series))

    def metric_name(self, series: LegacyTimeSeries) -> str:
        return self.labels(series).get(METRIC_NAME_LABEL, "")

    def samples(self, series: LegacyTimeSeries) -> Tuple[Sample, ...]:
        return series.samples

    def histograms(self, series: LegacyTimeSeries) -> Tuple[Histogram, ...]:
        return ()

    def exemplars(self, series: LegacyTimeSeries) -> Tuple[Exemplar, ...]:
        return tuple(
            Exemplar(
                labels=tuple((label.name, label.value) for label in ex.labels),
                value=ex.value,
                timestamp=ex.timestamp,
            )
            for ex in series.exemplars
        )

    def metadata(self, series: LegacyTimeSeries) -> Optional[ResolvedMetadata]:
        """Metadata of the series' metric family, if the request carried any."""
        name = self.metric_name(series)
        for md in self.metric_metadata:
            if _in_family(name, md.metric_family_name):
                return ResolvedMetadata(type=md.type, help=md.help, unit=md.unit)
        return None

    def find_series(self, metric_name: str) -> Optional[LegacyTimeSeries]:
        return _find_series(self, metric_name)

    def counts(self) -> Tuple[int, int, int]:
        return _counts(self)

    def describe(self) -> str:
        return _describe(self)


# ---------------------------------------------------------------------------
# Indexed (2.0.0) shape
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IndexedExemplar:
    labels_refs: Tuple[int, ...] = ()
    value: float = 0.0
    timestamp: int = 0


@dataclass(frozen=True)
class Metadata:
    """Per-series metadata; refs of 0 mean absent."""

    type: MetricType = MetricType.UNSPECIFIED
    help_ref: int = 0
    unit_ref: int = 0


@dataclass(frozen=True)
class IndexedTimeSeries:
    labels_refs: Tuple[int, ...] = ()
    samples: Tuple[Sample, ...] = ()
    histograms: Tuple[Histogram, ...] = ()
    exemplars: Tuple[IndexedExemplar, ...] = ()
    metadata: Metadata = field(default_factory=Metadata)
    created_timestamp: int = 0


@dataclass(frozen=True)
class IndexedMessage:
    """A decoded io.prometheus.write.v2.Request."""

    symbols: Tuple[str, ...] = ("",)
    timeseries: Tuple[IndexedTimeSeries, ...] = ()

    version = ProtocolVersion.V2

    def time_series(self) -> Tuple[IndexedTimeSeries, ...]:
        return self.timeseries

    def label_pairs(self, series: IndexedTimeSeries) -> List[Tuple[str, str]]:
        """Resolvable labels in wire order; broken refs are skipped."""
        return resolve_pairs_lenient(self.symbols, series.labels_refs)

    def labels(self, series: IndexedTimeSeries) -> Dict[str, str]:
        return dict(self.label_pairs(series))

    def metric_name(self, series: IndexedTimeSeries) -> str:
        return self.labels(series).get(METRIC_NAME_LABEL, "")

    def samples(self, series: IndexedTimeSeries) -> Tuple[Sample, ...]:
        return series.samples

    def histograms(self, series: IndexedTimeSeries) -> Tuple[Histogram, ...]:
        return series.histograms

    def exemplars(self, series: IndexedTimeSeries) -> Tuple[Exemplar, ...]:
        return tuple(
            Exemplar(
                labels=tuple(resolve_pairs_lenient(self.symbols, ex.labels_refs)),
                value=ex.value,
                timestamp=ex.timestamp,
            )
            for ex in series.exemplars
        )

    def metadata(self, series: IndexedTimeSeries) -> Optional[ResolvedMetadata]:
        md = series.metadata
        if md == Metadata():
            return None
        return ResolvedMetadata(
            type=md.type,
            help=self.symbol(md.help_ref),
            unit=self.symbol(md.unit_ref),
        )

    def symbol(self, ref: int) -> str:
        """Lenient lookup: out-of-range refs resolve to the empty string."""
        if 0 <= ref < len(self.symbols):
            return self.symbols[ref]
        return ""

    def find_series(self, metric_name: str) -> Optional[IndexedTimeSeries]:
        return _find_series(self, metric_name)

    def counts(self) -> Tuple[int, int, int]:
        return _counts(self)

    def describe(self) -> str:
        return _describe(self)


WireMessage = Union[LegacyMessage, IndexedMessage]


class MessageReader(Protocol):
    """The read API shared by both message shapes."""

    version: ProtocolVersion

    def time_series(self) -> Sequence: ...

    def label_pairs(self, series) -> List[Tuple[str, str]]: ...

    def labels(self, series) -> Dict[str, str]: ...

    def metric_name(self, series) -> str: ...

    def samples(self, series) -> Tuple[Sample, ...]: ...

    def histograms(self, series) -> Tuple[Histogram, ...]: ...

    def exemplars(self, series) -> Tuple[Exemplar, ...]: ...

    def metadata(self, series) -> Optional[ResolvedMetadata]: ...


def _in_family(name: str, family: str) -> bool:
    if not family:
        return False
    if name == family:
        return True
    return any(name == family + suffix for suffix in FAMILY_SERIES_SUFFIXES)


def _find_series(message: MessageReader, metric_name: str):
    for series in message.time_series():
        if message.metric_name(series) == metric_name:
            return series
    return None


def _counts(message: MessageReader) -> Tuple[int, int, int]:
    """(samples, exemplars, histograms) carried by the whole message."""
    samples = exemplars = histograms = 0
    for series in message.time_series():
        samples += len(message.samples(series))
        exemplars += len(message.exemplars(series))
        histograms += len(message.histograms(series))
    return samples, exemplars, histograms


def _describe(message: MessageReader) -> str:
    """Compact one-line-per-series dump for failure messages."""
    lines = [f"{message.version.short_name} request, {len(message.time_series())} series"]
    for i, series in enumerate(message.time_series()):
        labels = ",".join(f'{k}="{v}"' for k, v in message.label_pairs(series))
        parts = [f"  [{i}] {{{labels}}}"]
        samples = message.samples(series)
        if samples:
            parts.append(
                "samples=" + " ".join(f"{s.value!r}@{s.timestamp}" for s in samples)
            )
        histograms = message.histograms(series)
        if histograms:
            parts.append(f"histograms={len(histograms)}")
        exemplars = message.exemplars(series)
        if exemplars:
            parts.append(f"exemplars={len(exemplars)}")
        lines.append(" ".join(parts))
    return "\n".join(lines)
