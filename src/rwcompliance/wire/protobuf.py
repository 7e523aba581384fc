"""Protobuf wire-format primitives.

The remote-write messages are small and fixed, so they are encoded and
decoded by hand rather than through generated classes.
"""

import struct
from typing import Iterator, List, Tuple

from rwcompliance.wire.errors import MalformedMessage

# Protobuf wire types
WIRE_VARINT = 0
WIRE_FIXED64 = 1
WIRE_LENGTH_DELIMITED = 2
WIRE_FIXED32 = 5

_UINT64_MASK = (1 << 64) - 1


# ---------------------------------------------------------------------------
# Encoding
# ---------------------------------------------------------------------------


def encode_varint(value: int) -> bytes:
    """Encode an integer as a protobuf varint.

    Negative values are written as their 64-bit two's complement, which is
    what int64 fields expect.
    """
    value &= _UINT64_MASK
    result = []
    while value > 127:
        result.append((value & 0x7F) | 0x80)
        value >>= 7
    result.append(value)
    return bytes(result)


def zigzag_encode(value: int) -> int:
    """Map a signed integer onto the unsigned zigzag space (sint32/sint64)."""
    return ((value << 1) ^ (value >> 63)) & _UINT64_MASK


def encode_field(field_number: int, wire_type: int, data: bytes) -> bytes:
    """Encode a protobuf field."""
    tag = (field_number << 3) | wire_type
    return encode_varint(tag) + data


def encode_bytes(field_number: int, data: bytes) -> bytes:
    """Encode a length-delimited field (string, bytes, message, packed)."""
    return encode_field(
        field_number, WIRE_LENGTH_DELIMITED, encode_varint(len(data)) + data
    )


def encode_string(field_number: int, value: str) -> bytes:
    """Encode a string field."""
    return encode_bytes(field_number, value.encode("utf-8"))


def encode_double(field_number: int, value: float) -> bytes:
    """Encode a double field."""
    return encode_field(field_number, WIRE_FIXED64, struct.pack("<d", value))


def encode_int64(field_number: int, value: int) -> bytes:
    """Encode an int64 (or uint32/uint64/enum) field as varint."""
    return encode_field(field_number, WIRE_VARINT, encode_varint(value))


def encode_sint(field_number: int, value: int) -> bytes:
    """Encode a sint32/sint64 field."""
    return encode_field(field_number, WIRE_VARINT, encode_varint(zigzag_encode(value)))


def encode_packed_varints(field_number: int, values: List[int]) -> bytes:
    """Encode a packed repeated varint field. Empty lists are omitted."""
    if not values:
        return b""
    return encode_bytes(field_number, b"".join(encode_varint(v) for v in values))


def encode_packed_sints(field_number: int, values: List[int]) -> bytes:
    """Encode a packed repeated sint64 field."""
    return encode_packed_varints(field_number, [zigzag_encode(v) for v in values])


def encode_packed_doubles(field_number: int, values: List[float]) -> bytes:
    """Encode a packed repeated double field."""
    if not values:
        return b""
    return encode_bytes(field_number, struct.pack(f"<{len(values)}d", *values))


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode_varint(data: bytes, pos: int) -> Tuple[int, int]:
    """Read a varint starting at pos.

    Returns:
        (value, new_position)

    Raises:
        MalformedMessage: If the varint is truncated or longer than 10 bytes.
    """
    result = 0
    shift = 0
    while True:
        if pos >= len(data):
            raise MalformedMessage("truncated varint")
        byte = data[pos]
        pos += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result & _UINT64_MASK, pos
        shift += 7
        if shift >= 70:
            raise MalformedMessage("varint too long")


def to_int64(value: int) -> int:
    """Reinterpret an unsigned varint as a signed 64-bit integer."""
    return value - (1 << 64) if value >= 1 << 63 else value


def zigzag_decode(value: int) -> int:
    """Inverse of zigzag_encode."""
    return (value >> 1) ^ -(value & 1)


def to_double(raw: bytes) -> float:
    """Interpret 8 little-endian bytes as an IEEE-754 double."""
    return struct.unpack("<d", raw)[0]


def iter_fields(data: bytes) -> Iterator[Tuple[int, int, object]]:
    """Iterate over the fields of a serialized message.

    Yields:
        (field_number, wire_type, value) where value is an int for varints,
        8 raw bytes for fixed64, 4 raw bytes for fixed32 and a bytes slice for
        length-delimited fields.

    Raises:
        MalformedMessage: On truncated input, bad tags or unsupported wire types.
    """
    pos = 0
    end = len(data)
    while pos < end:
        tag, pos = decode_varint(data, pos)
        field_number = tag >> 3
        wire_type = tag & 0x07
        if field_number == 0:
            raise MalformedMessage(f"invalid field number 0 at offset {pos}")

        if wire_type == WIRE_VARINT:
            value, pos = decode_varint(data, pos)
            yield field_number, wire_type, value
        elif wire_type == WIRE_FIXED64:
            if pos + 8 > end:
                raise MalformedMessage(f"truncated fixed64 field {field_number}")
            yield field_number, wire_type, data[pos:pos + 8]
            pos += 8
        elif wire_type == WIRE_LENGTH_DELIMITED:
            length, pos = decode_varint(data, pos)
            if pos + length > end:
                raise MalformedMessage(
                    f"field {field_number} claims {length} bytes, only {end - pos} left"
                )
            yield field_number, wire_type, data[pos:pos + length]
            pos += length
        elif wire_type == WIRE_FIXED32:
            if pos + 4 > end:
                raise MalformedMessage(f"truncated fixed32 field {field_number}")
            yield field_number, wire_type, data[pos:pos + 4]
            pos += 4
        else:
            raise MalformedMessage(
                f"unsupported wire type {wire_type} for field {field_number}"
            )


def expect_wire_type(field_number: int, wire_type: int, expected: int) -> None:
    """Fail when a known field arrives with the wrong wire type."""
    if wire_type != expected:
        raise MalformedMessage(
            f"field {field_number} has wire type {wire_type}, expected {expected}"
        )


def read_string(field_number: int, wire_type: int, value: object) -> str:
    """Decode a string field value yielded by iter_fields."""
    expect_wire_type(field_number, wire_type, WIRE_LENGTH_DELIMITED)
    try:
        return bytes(value).decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedMessage(f"field {field_number} is not valid UTF-8: {e}") from e


def read_double(field_number: int, wire_type: int, value: object) -> float:
    """Decode a double field value yielded by iter_fields."""
    expect_wire_type(field_number, wire_type, WIRE_FIXED64)
    return to_double(value)


def read_varints(field_number: int, wire_type: int, value: object) -> List[int]:
    """Decode a repeated varint field that may arrive packed or unpacked."""
    if wire_type == WIRE_VARINT:
        return [value]
    expect_wire_type(field_number, wire_type, WIRE_LENGTH_DELIMITED)
    values = []
    pos = 0
    while pos < len(value):
        v, pos = decode_varint(value, pos)
        values.append(v)
    return values


def read_doubles(field_number: int, wire_type: int, value: object) -> List[float]:
    """Decode a repeated double field that may arrive packed or unpacked."""
    if wire_type == WIRE_FIXED64:
        return [to_double(value)]
    expect_wire_type(field_number, wire_type, WIRE_LENGTH_DELIMITED)
    if len(value) % 8:
        raise MalformedMessage(f"packed doubles in field {field_number} not a multiple of 8")
    return list(struct.unpack(f"<{len(value) // 8}d", value))
