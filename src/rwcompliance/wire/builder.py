"""Assemble wire messages from plain label sets.

Used when this package acts as a sender: by the remote-write client to
exercise receivers, and by tests to produce well-formed (or deliberately
broken) fixtures.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from rwcompliance.wire.errors import ProtocolViolation
from rwcompliance.wire.models import (
    METRIC_NAME_LABEL,
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
from rwcompliance.wire.symbols import SymbolTable

LabelPairs = Tuple[Tuple[str, str], ...]


@dataclass
class _PendingSeries:
    labels: LabelPairs
    samples: List[Sample] = field(default_factory=list)
    histograms: List[Histogram] = field(default_factory=list)
    exemplars: List[Tuple[LabelPairs, float, int]] = field(default_factory=list)
    created_timestamp: int = 0


@dataclass(frozen=True)
class _PendingMetadata:
    type: MetricType
    help: str
    unit: str


class RequestBuilder:
    """Collects samples, histograms, exemplars and metadata per series.

    Items added with the same label set (regardless of label order) end up in
    one series. Series keep the order in which they were first seen.

    Args:
        version: Protocol version of the message produced by build().
        sort_labels: Sort label names ascending on the wire. Disable to build
            fixtures that break the ordering rule.
        unsafe: Allow requests a conforming sender would never produce:
            samples and histograms in one request, exemplars or metadata
            without a matching series.
    """

    def __init__(
        self,
        version: ProtocolVersion = ProtocolVersion.V2,
        sort_labels: bool = True,
        unsafe: bool = False,
    ):
        self.version = ProtocolVersion.parse(version)
        self.sort_labels = sort_labels
        self.unsafe = unsafe
        self._series: Dict[frozenset, _PendingSeries] = {}
        self._metadata: Dict[str, _PendingMetadata] = {}

    def _pairs(self, labels: Mapping[str, str]) -> LabelPairs:
        pairs = tuple(labels.items())
        if self.sort_labels:
            pairs = tuple(sorted(pairs))
        return pairs

    def _get_series(self, labels: Mapping[str, str], create: bool) -> Optional[_PendingSeries]:
        key = frozenset(labels.items())
        series = self._series.get(key)
        if series is None and create:
            series = _PendingSeries(labels=self._pairs(labels))
            self._series[key] = series
        return series

    def add_sample(
        self,
        labels: Mapping[str, str],
        value: float,
        timestamp: int,
        created_timestamp: int = 0,
    ) -> "RequestBuilder":
        """Append a float sample to the series identified by labels."""
        series = self._get_series(labels, create=True)
        series.samples.append(
            Sample(value=value, timestamp=timestamp, created_timestamp=created_timestamp)
        )
        if created_timestamp and not series.created_timestamp:
            series.created_timestamp = created_timestamp
        return self

    def add_histogram(self, labels: Mapping[str, str], histogram: Histogram) -> "RequestBuilder":
        """Append a native histogram to the series identified by labels."""
        if self.version is ProtocolVersion.V1:
            raise ProtocolViolation("native histograms need protocol 2.0.0")
        self._get_series(labels, create=True).histograms.append(histogram)
        return self

    def add_exemplar(
        self,
        labels: Mapping[str, str],
        value: float,
        timestamp: int,
        exemplar_labels: Optional[Mapping[str, str]] = None,
    ) -> "RequestBuilder":
        """Attach an exemplar to the series identified by labels.

        Raises:
            ProtocolViolation: If no sample or histogram with these labels was
                added first and the builder is not unsafe.
        """
        series = self._get_series(labels, create=self.unsafe)
        if series is None:
            raise ProtocolViolation(f"exemplar has no matching series: {dict(labels)}")
        series.exemplars.append(
            (self._pairs(exemplar_labels or {}), value, timestamp)
        )
        return self

    def add_metadata(
        self,
        metric_name: str,
        type: MetricType,
        help: str = "",
        unit: str = "",
    ) -> "RequestBuilder":
        """Attach metadata to every series of the given metric name.

        Metadata may be registered before the series it describes; the
        matching check happens in build().
        """
        self._metadata[metric_name] = _PendingMetadata(type=type, help=help, unit=unit)
        return self

    def _check(self) -> None:
        series = list(self._series.values())
        has_samples = any(s.samples for s in series)
        has_histograms = any(s.histograms for s in series)
        if has_samples and has_histograms:
            raise ProtocolViolation("cannot have both samples and histograms in one request")
        names = {dict(s.labels).get(METRIC_NAME_LABEL, "") for s in series}
        for metric_name in self._metadata:
            if metric_name not in names:
                raise ProtocolViolation(f"metadata has no matching series: {metric_name}")

    def build(self) -> WireMessage:
        """Produce the message.

        Raises:
            ProtocolViolation: If the collected data would make a
                non-conforming request and the builder is not unsafe.
        """
        if not self.unsafe:
            self._check()
        if self.version is ProtocolVersion.V1:
            return self._build_legacy()
        return self._build_indexed()

    def _build_legacy(self) -> LegacyMessage:
        timeseries = []
        for series in self._series.values():
            timeseries.append(
                LegacyTimeSeries(
                    labels=tuple(Label(name, value) for name, value in series.labels),
                    samples=tuple(series.samples),
                    exemplars=tuple(
                        LegacyExemplar(
                            labels=tuple(Label(n, v) for n, v in ex_labels),
                            value=value,
                            timestamp=timestamp,
                        )
                        for ex_labels, value, timestamp in series.exemplars
                    ),
                )
            )
        metadata = tuple(
            MetricMetadata(type=md.type, metric_family_name=name, help=md.help, unit=md.unit)
            for name, md in self._metadata.items()
        )
        return LegacyMessage(timeseries=tuple(timeseries), metric_metadata=metadata)

    def _build_indexed(self) -> IndexedMessage:
        table = SymbolTable()
        timeseries = []
        matched = set()
        for series in self._series.values():
            refs = table.symbolize_pairs(series.labels)
            exemplars = tuple(
                IndexedExemplar(
                    labels_refs=tuple(table.symbolize_pairs(ex_labels)),
                    value=value,
                    timestamp=timestamp,
                )
                for ex_labels, value, timestamp in series.exemplars
            )
            name = dict(series.labels).get(METRIC_NAME_LABEL, "")
            metadata = Metadata()
            if name in self._metadata:
                matched.add(name)
                metadata = self._symbolize_metadata(table, self._metadata[name])
            timeseries.append(
                IndexedTimeSeries(
                    labels_refs=tuple(refs),
                    samples=tuple(series.samples),
                    histograms=tuple(series.histograms),
                    exemplars=exemplars,
                    metadata=metadata,
                    created_timestamp=series.created_timestamp,
                )
            )

        # Unsafe mode: orphaned metadata travels on a series of its own.
        for name, md in self._metadata.items():
            if name in matched:
                continue
            timeseries.append(
                IndexedTimeSeries(
                    labels_refs=tuple(table.symbolize_pairs([(METRIC_NAME_LABEL, name)])),
                    metadata=self._symbolize_metadata(table, md),
                )
            )
        return IndexedMessage(symbols=table.symbols(), timeseries=tuple(timeseries))

    @staticmethod
    def _symbolize_metadata(table: SymbolTable, md: _PendingMetadata) -> Metadata:
        return Metadata(
            type=md.type,
            help_ref=table.symbolize(md.help) if md.help else 0,
            unit_ref=table.symbolize(md.unit) if md.unit else 0,
        )
