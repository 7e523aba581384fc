"""Checks over a single decoded remote-write message.

Every check returns a list of CheckResult and never raises on bad input:
referential and ordering problems are reported, not thrown, so that one
pass reports everything wrong with a request.
"""

import re
from typing import Dict, List, Optional, Tuple

from rwcompliance.validation.report import CheckResult, may, must, should
from rwcompliance.wire.errors import ReferentialError
from rwcompliance.wire.models import (
    METRIC_NAME_LABEL,
    IndexedMessage,
    MessageReader,
    ProtocolVersion,
    WireMessage,
)
from rwcompliance.wire.symbols import resolve_pairs

METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Millisecond timestamps between 2001-09-09 and 2286-11-20. Anything outside
# is most likely seconds or microseconds.
MIN_TIMESTAMP_MS = 10**12
MAX_TIMESTAMP_MS = 10**16

CLASSIC_HISTOGRAM_SUFFIXES = ("_bucket", "_count", "_sum")


def _series_id(message: MessageReader, index: int, series) -> str:
    name = message.metric_name(series)
    return f"series[{index}] {name}" if name else f"series[{index}]"


def _indexed(message: WireMessage) -> Optional[IndexedMessage]:
    return message if message.version is ProtocolVersion.V2 else None


# ---------------------------------------------------------------------------
# Symbol table and references
# ---------------------------------------------------------------------------


def check_symbol_table(message: WireMessage) -> List[CheckResult]:
    """Index 0 must be the empty string and no string may repeat."""
    msg = _indexed(message)
    if msg is None:
        return []
    symbols = msg.symbols
    results = [
        must(
            "symbols_empty_first",
            bool(symbols) and symbols[0] == "",
            f"symbols[0] must be the empty string, got {symbols[0]!r}"
            if symbols
            else "symbol table is empty",
        )
    ]
    seen: Dict[str, int] = {}
    for i, s in enumerate(symbols):
        if not s:
            continue
        if s in seen:
            results.append(
                must(
                    "symbols_deduplicated",
                    False,
                    f"duplicate symbol {s!r} at indices {seen[s]} and {i}",
                )
            )
        else:
            seen[s] = i
    if len(results) == 1:
        results.append(must("symbols_deduplicated", True))
    return results


def check_label_refs(message: WireMessage) -> List[CheckResult]:
    """Series and exemplar reference lists hold whole, resolvable pairs."""
    msg = _indexed(message)
    if msg is None:
        return []
    results = []
    for i, series in enumerate(msg.timeseries):
        sid = _series_id(msg, i, series)
        lists = [("labels_refs", series.labels_refs)]
        lists.extend(
            (f"exemplars[{j}].labels_refs", ex.labels_refs)
            for j, ex in enumerate(series.exemplars)
        )
        for what, refs in lists:
            try:
                resolve_pairs(msg.symbols, refs)
            except ReferentialError as e:
                name = "refs_even_length" if len(refs) % 2 else "refs_in_range"
                results.append(must(name, False, f"{sid} {what}: {e}"))
    if not results:
        results.append(must("refs_valid", True))
    return results


# ---------------------------------------------------------------------------
# Labels
# ---------------------------------------------------------------------------


def check_labels(message: WireMessage) -> List[CheckResult]:
    """Sorted, unique label names and a non-empty metric name per series."""
    results = []
    for i, series in enumerate(message.time_series()):
        sid = _series_id(message, i, series)
        pairs = message.label_pairs(series)
        names = [name for name, _ in pairs]

        unsorted = [
            (prev, cur) for prev, cur in zip(names, names[1:]) if cur <= prev
        ]
        results.append(
            must(
                "labels_sorted",
                not unsorted,
                f"{sid} label names not strictly ascending: {unsorted[0][0]!r} "
                f"before {unsorted[0][1]!r}" if unsorted else "",
            )
        )

        # For valid refs len(pairs) == len(labels_refs) / 2; broken refs are
        # reported by check_label_refs.
        expected = len(pairs)
        resolved = len(message.labels(series))
        results.append(
            must(
                "labels_unique",
                resolved == expected,
                f"{sid} resolves {resolved} distinct label names from {expected} pairs",
            )
        )

        results.append(
            must(
                "metric_name_present",
                bool(message.labels(series).get(METRIC_NAME_LABEL)),
                f"{sid} has no {METRIC_NAME_LABEL} label or it is empty",
            )
        )
    return results


def check_label_format(message: WireMessage) -> List[CheckResult]:
    """Metric and label names follow the exposition naming rules."""
    results = []
    for i, series in enumerate(message.time_series()):
        sid = _series_id(message, i, series)
        name = message.metric_name(series)
        if name:
            results.append(
                must(
                    "metric_name_format",
                    METRIC_NAME_RE.match(name) is not None,
                    f"{sid} metric name {name!r} is not a valid metric name",
                )
            )
        for label_name, _ in message.label_pairs(series):
            if not label_name:
                results.append(must("label_name_non_empty", False, f"{sid} has an empty label name"))
                continue
            if label_name == METRIC_NAME_LABEL:
                continue
            results.append(
                must(
                    "label_name_format",
                    LABEL_NAME_RE.match(label_name) is not None,
                    f"{sid} label name {label_name!r} is not valid",
                )
            )
            results.append(
                should(
                    "label_name_reserved",
                    not label_name.startswith("__"),
                    f"{sid} uses reserved label name {label_name!r}",
                )
            )
    return results


# ---------------------------------------------------------------------------
# Samples, histograms and exemplars
# ---------------------------------------------------------------------------


def _in_ms_range(ts: int) -> bool:
    return MIN_TIMESTAMP_MS <= ts <= MAX_TIMESTAMP_MS


def check_samples(message: WireMessage) -> List[CheckResult]:
    """Millisecond timestamps in non-decreasing order within a series.

    Values are not checked: NaN and infinities are legitimate.
    """
    results = []
    for i, series in enumerate(message.time_series()):
        sid = _series_id(message, i, series)
        samples = message.samples(series)
        for j, sample in enumerate(samples):
            if not _in_ms_range(sample.timestamp):
                results.append(
                    must(
                        "sample_timestamp_ms",
                        False,
                        f"{sid} samples[{j}] timestamp {sample.timestamp} is not in milliseconds",
                    )
                )
            if sample.created_timestamp:
                results.append(
                    may(
                        "created_timestamp_ms",
                        _in_ms_range(sample.created_timestamp),
                        f"{sid} samples[{j}] created timestamp {sample.created_timestamp} "
                        "is not in milliseconds",
                    )
                )
        for j in range(1, len(samples)):
            if samples[j].timestamp < samples[j - 1].timestamp:
                results.append(
                    must(
                        "sample_timestamps_ordered",
                        False,
                        f"{sid} samples[{j}] timestamp {samples[j].timestamp} "
                        f"before samples[{j - 1}] {samples[j - 1].timestamp}",
                    )
                )
        for j, h in enumerate(message.histograms(series)):
            if not _in_ms_range(h.timestamp):
                results.append(
                    must(
                        "histogram_timestamp_ms",
                        False,
                        f"{sid} histograms[{j}] timestamp {h.timestamp} is not in milliseconds",
                    )
                )
    if not results:
        results.append(must("samples_valid", True))
    return results


def check_payload_exclusion(message: WireMessage) -> List[CheckResult]:
    """A series carries samples or histograms, never both."""
    results = []
    for i, series in enumerate(message.time_series()):
        both = bool(message.samples(series)) and bool(message.histograms(series))
        results.append(
            must(
                "samples_histograms_exclusive",
                not both,
                f"{_series_id(message, i, series)} holds both samples and histograms",
            )
        )
    return results


def check_exemplars(message: WireMessage) -> List[CheckResult]:
    results = []
    for i, series in enumerate(message.time_series()):
        sid = _series_id(message, i, series)
        for j, ex in enumerate(message.exemplars(series)):
            results.append(
                must(
                    "exemplar_timestamp_present",
                    ex.timestamp > 0,
                    f"{sid} exemplars[{j}] has no timestamp",
                )
            )
            results.append(
                must(
                    "exemplar_timestamp_ms",
                    _in_ms_range(ex.timestamp),
                    f"{sid} exemplars[{j}] timestamp {ex.timestamp} is not in milliseconds",
                )
            )
    return results


def find_histogram_data(message: WireMessage, base_name: str) -> Tuple[bool, Optional[object]]:
    """Look for histogram data in either classic or native shape.

    Returns:
        (classic_found, native_series): classic_found is True when any of
        the <base>_count, <base>_sum or <base>_bucket series exist;
        native_series is the series named <base> carrying histograms, or None.
    """
    classic_names = {base_name + suffix for suffix in CLASSIC_HISTOGRAM_SUFFIXES}
    classic_found = False
    native = None
    for series in message.time_series():
        name = message.metric_name(series)
        if name in classic_names:
            classic_found = True
        if name == base_name and message.histograms(series):
            native = series
    return classic_found, native


def has_histogram_data(message: WireMessage, base_name: str) -> bool:
    classic, native = find_histogram_data(message, base_name)
    return classic or native is not None


# ---------------------------------------------------------------------------
# Metadata
# ---------------------------------------------------------------------------


def metric_family(name: str) -> str:
    """Strip classic histogram/summary series suffixes off a metric name."""
    for suffix in CLASSIC_HISTOGRAM_SUFFIXES:
        if name.endswith(suffix) and len(name) > len(suffix):
            return name[: -len(suffix)]
    return name


def check_metadata(message: WireMessage) -> List[CheckResult]:
    """Metadata refs resolve and families agree on type and help."""
    results = []
    msg = _indexed(message)
    if msg is not None:
        for i, series in enumerate(msg.timeseries):
            sid = _series_id(msg, i, series)
            md = series.metadata
            for what, ref in (("help_ref", md.help_ref), ("unit_ref", md.unit_ref)):
                if ref:
                    results.append(
                        must(
                            "metadata_refs_valid",
                            ref < len(msg.symbols),
                            f"{sid} metadata {what} {ref} outside symbol table "
                            f"(size {len(msg.symbols)})",
                        )
                    )

    families: Dict[str, Tuple[str, object]] = {}
    for i, series in enumerate(message.time_series()):
        md = message.metadata(series)
        if md is None:
            continue
        family = metric_family(message.metric_name(series))
        if family not in families:
            families[family] = (_series_id(message, i, series), md)
            continue
        first_id, first = families[family]
        sid = _series_id(message, i, series)
        results.append(
            should(
                "metadata_type_consistent",
                first.type == md.type,
                f"{sid} type {md.type.name} differs from {first_id} type {first.type.name}",
            )
        )
        results.append(
            should(
                "metadata_help_consistent",
                first.help == md.help,
                f"{sid} help {md.help!r} differs from {first_id} help {first.help!r}",
            )
        )
    return results


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------


def check_symbol_efficiency(message: WireMessage, limit: int = 30) -> List[CheckResult]:
    """Unique non-empty symbols stay within limit, a sign of deduplication."""
    msg = _indexed(message)
    if msg is None:
        return []
    unique = len({s for s in msg.symbols if s})
    return [
        should(
            "symbols_efficient",
            unique <= limit,
            f"symbol table holds {unique} unique symbols, expected at most {limit}",
        )
    ]


def validate_message(message: WireMessage) -> List[CheckResult]:
    """Run every structural check that applies to any conforming request."""
    results: List[CheckResult] = []
    results.extend(check_symbol_table(message))
    results.extend(check_label_refs(message))
    results.extend(check_labels(message))
    results.extend(check_label_format(message))
    results.extend(check_samples(message))
    results.extend(check_payload_exclusion(message))
    results.extend(check_exemplars(message))
    results.extend(check_metadata(message))
    return results
