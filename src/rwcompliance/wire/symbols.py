"""Symbol table codec for the indexed (2.0) protocol.

Every string in an indexed request lives once in a shared table and series
refer to it by position. Index 0 is always the empty string, which doubles
as "absent" for optional references such as metadata help and unit.
"""

from typing import Dict, Iterable, List, Sequence, Tuple

from rwcompliance.wire.errors import IndexOutOfRange, InvalidReference, OddLength


class SymbolTable:
    """Append-only string interning table used while building a request.

    Strings get indices in first-seen order, so the caller controls the
    table layout simply by the order in which it symbolises.
    """

    def __init__(self) -> None:
        self._symbols: List[str] = [""]
        self._index: Dict[str, int] = {"": 0}

    def symbolize(self, value: str) -> int:
        """Return the index of value, adding it if it is new."""
        ref = self._index.get(value)
        if ref is None:
            ref = len(self._symbols)
            self._symbols.append(value)
            self._index[value] = ref
        return ref

    def symbolize_pairs(self, pairs: Iterable[Tuple[str, str]]) -> List[int]:
        """Symbolise (name, value) pairs into a flat label reference list."""
        refs: List[int] = []
        for name, value in pairs:
            refs.append(self.symbolize(name))
            refs.append(self.symbolize(value))
        return refs

    def symbols(self) -> Tuple[str, ...]:
        """Snapshot of the table, ready to be placed on the wire."""
        return tuple(self._symbols)

    def __len__(self) -> int:
        return len(self._symbols)


def encode(strings: Iterable[str]) -> Tuple[str, ...]:
    """Build a deduplicated table with "" forced at index 0.

    Non-empty strings keep the order of their first appearance.
    """
    table = SymbolTable()
    for s in strings:
        table.symbolize(s)
    return table.symbols()


def decode(table: Sequence[str], index: int) -> str:
    """Resolve a single symbol reference.

    Raises:
        IndexOutOfRange: If index is negative or not below len(table).
    """
    if index < 0 or index >= len(table):
        raise IndexOutOfRange(index, len(table))
    return table[index]


def resolve_pairs(table: Sequence[str], refs: Sequence[int]) -> List[Tuple[str, str]]:
    """Resolve a label reference list into (name, value) pairs.

    Pairs come back in wire order; no sorting or deduplication happens here,
    so callers can still see what the sender actually sent.

    Raises:
        OddLength: If refs does not hold whole (name, value) pairs.
        InvalidReference: If any element points outside the table.
    """
    if len(refs) % 2:
        raise OddLength(len(refs))
    for position, ref in enumerate(refs):
        if ref < 0 or ref >= len(table):
            raise InvalidReference(position, ref, len(table))
    return [(table[refs[i]], table[refs[i + 1]]) for i in range(0, len(refs), 2)]


def resolve_pairs_lenient(
    table: Sequence[str], refs: Sequence[int]
) -> List[Tuple[str, str]]:
    """Resolve whatever pairs can be resolved, skipping broken ones.

    A trailing unpaired ref and pairs with an out-of-range element are
    dropped. Used by the read API so malformed requests stay inspectable.
    """
    pairs = []
    for i in range(0, len(refs) - 1, 2):
        name_ref, value_ref = refs[i], refs[i + 1]
        if 0 <= name_ref < len(table) and 0 <= value_ref < len(table):
            pairs.append((table[name_ref], table[value_ref]))
    return pairs
