"""Minimal Bitcoin script helpers.

Only the pieces the mint flow needs are implemented: building data pushes,
walking a script's instructions, recognizing witness programs and computing
the relay dust threshold for an output script.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1 = 0x51
OP_16 = 0x60
OP_RETURN = 0x6A
OP_DUP = 0x76
OP_EQUAL = 0x87
OP_EQUALVERIFY = 0x88
OP_HASH160 = 0xA9
OP_CHECKSIG = 0xAC
# OP_PUSHNUM_13, claimed by runestones as their magic number
OP_13 = 0x5D

MAX_SCRIPT_ELEMENT_SIZE = 520
DUST_RELAY_FEE_SAT_PER_VB = 3


class ScriptError(ValueError):
    """Raised when a script cannot be parsed."""


@dataclass(frozen=True)
class Instruction:
    """Either a data push (``data`` set) or a bare opcode."""

    opcode: int
    data: bytes | None = None

    @property
    def is_push(self) -> bool:
        return self.data is not None


def ser_compact_size(n: int) -> bytes:
    """Serialize an integer as a Bitcoin compact size."""

    if n < 253:
        return bytes([n])
    elif n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    elif n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    else:
        return b"\xff" + n.to_bytes(8, "little")


def push_data(data: bytes) -> bytes:
    """Return the script bytes pushing *data* onto the stack."""

    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    elif length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    elif length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    else:
        return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little") + data


def iter_instructions(script: bytes) -> Iterator[Instruction]:
    """Yield the instructions of *script*, raising :class:`ScriptError` on truncation.

    Non-minimal pushes are accepted. ``OP_0`` is reported as an empty push.
    """

    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1
        if opcode == OP_0:
            yield Instruction(opcode, b"")
            continue
        if opcode < OP_PUSHDATA1:
            length = opcode
        elif opcode in (OP_PUSHDATA1, OP_PUSHDATA2, OP_PUSHDATA4):
            width = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[opcode]
            if offset + width > len(script):
                raise ScriptError("truncated push length")
            length = int.from_bytes(script[offset : offset + width], "little")
            offset += width
        else:
            yield Instruction(opcode)
            continue
        if offset + length > len(script):
            raise ScriptError("push past end of script")
        yield Instruction(opcode, bytes(script[offset : offset + length]))
        offset += length


def is_op_return(script: bytes) -> bool:
    return bool(script) and script[0] == OP_RETURN


def is_witness_program(script: bytes) -> bool:
    if not 4 <= len(script) <= 42:
        return False
    version = script[0]
    if version != OP_0 and not OP_1 <= version <= OP_16:
        return False
    return script[1] == len(script) - 2


def witness_script(version: int, program: bytes) -> bytes:
    opcode = OP_0 if version == 0 else OP_1 + version - 1
    return bytes([opcode, len(program)]) + program


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    return bytes([OP_DUP, OP_HASH160, 20]) + pubkey_hash + bytes([OP_EQUALVERIFY, OP_CHECKSIG])


def p2sh_script(script_hash: bytes) -> bytes:
    return bytes([OP_HASH160, 20]) + script_hash + bytes([OP_EQUAL])


def dust_value(script: bytes) -> int:
    """Return the smallest value in sats Bitcoin Core relays for *script*.

    Mirrors ``GetDustThreshold`` at the default 3 sat/vB dust relay fee: the
    cost of creating the output plus the cost of later spending it.
    """

    if is_op_return(script):
        return 0
    output_size = 8 + len(ser_compact_size(len(script))) + len(script)
    if is_witness_program(script):
        spend_size = 32 + 4 + 1 + (107 // 4) + 4
    else:
        spend_size = 32 + 4 + 1 + 107 + 4
    return (spend_size + output_size) * DUST_RELAY_FEE_SAT_PER_VB
