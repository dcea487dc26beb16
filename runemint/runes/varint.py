"""LEB128 integers as used inside runestone payloads.

Runestone integers are unsigned 128-bit values. Each byte carries seven bits
of the value, least significant group first, with the high bit set on every
byte except the last.
"""

from __future__ import annotations

MAX_U128 = (1 << 128) - 1
MAX_LENGTH = 19


class VarintError(ValueError):
    """Raised when a byte sequence is not a valid runestone integer."""


def encode(value: int) -> bytes:
    if value < 0 or value > MAX_U128:
        raise VarintError(f"{value} is outside the u128 range")
    out = bytearray()
    while value >> 7:
        out.append((value & 0x7F) | 0x80)
        value >>= 7
    out.append(value)
    return bytes(out)


def decode(buffer: bytes) -> tuple[int, int]:
    """Decode one integer from the front of *buffer*.

    Returns the value and the number of bytes consumed.
    """

    value = 0
    for index, byte in enumerate(buffer):
        if index >= MAX_LENGTH:
            raise VarintError("overlong varint")
        group = byte & 0x7F
        # only bits 126 and 127 remain for the last byte
        if index == MAX_LENGTH - 1 and group & 0x7C:
            raise VarintError("varint overflows u128")
        value |= group << (7 * index)
        if not byte & 0x80:
            return value, index + 1
    raise VarintError("unterminated varint")


def decode_all(payload: bytes) -> list[int]:
    integers: list[int] = []
    offset = 0
    while offset < len(payload):
        value, length = decode(payload[offset:])
        integers.append(value)
        offset += length
    return integers
