"""Runestone encoding and deciphering.

A runestone lives in the first output whose script starts with
``OP_RETURN OP_13``. The data pushes that follow are concatenated and read as
a sequence of LEB128 integers forming ``tag, value`` pairs, optionally
followed by a body of edicts introduced by tag 0.

Only the fields a mint needs are *encoded* (mint, pointer, edicts), while the
decoder recognizes every field so that an etching runestone is never misread
as something else. Anything malformed is reported as a :class:`Cenotaph`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Union

from ..errors import PayloadTooLarge
from ..script import (
    MAX_SCRIPT_ELEMENT_SIZE,
    OP_13,
    OP_RETURN,
    ScriptError,
    iter_instructions,
    push_data,
)
from ..transaction import Transaction
from . import varint
from .rune import MAX_SPACERS, MAX_U32, MAX_U64, Rune, RuneId

logger = logging.getLogger(__name__)

MAGIC_NUMBER = OP_13
MAX_RUNESTONE_SCRIPT_SIZE = 82
MAX_DIVISIBILITY = 38

TAG_BODY = 0
TAG_FLAGS = 2
TAG_RUNE = 4
TAG_PREMINE = 6
TAG_CAP = 8
TAG_AMOUNT = 10
TAG_HEIGHT_START = 12
TAG_HEIGHT_END = 14
TAG_OFFSET_START = 16
TAG_OFFSET_END = 18
TAG_MINT = 20
TAG_POINTER = 22
TAG_DIVISIBILITY = 1
TAG_SPACERS = 3
TAG_SYMBOL = 5

FLAG_ETCHING = 0
FLAG_TERMS = 1
FLAG_TURBO = 2


class Flaw(str, Enum):
    EDICT_OUTPUT = "edict_output"
    EDICT_RUNE_ID = "edict_rune_id"
    INVALID_SCRIPT = "invalid_script"
    OPCODE = "opcode"
    SUPPLY_OVERFLOW = "supply_overflow"
    TRAILING_INTEGERS = "trailing_integers"
    TRUNCATED_FIELD = "truncated_field"
    UNRECOGNIZED_EVEN_TAG = "unrecognized_even_tag"
    UNRECOGNIZED_FLAG = "unrecognized_flag"
    VARINT = "varint"


@dataclass(frozen=True)
class Edict:
    id: RuneId
    amount: int
    output: int


@dataclass(frozen=True)
class EtchingTerms:
    amount: int | None = None
    cap: int | None = None
    height: tuple[int | None, int | None] = (None, None)
    offset: tuple[int | None, int | None] = (None, None)


@dataclass(frozen=True)
class Etching:
    divisibility: int | None = None
    premine: int | None = None
    rune: Rune | None = None
    spacers: int | None = None
    symbol: str | None = None
    terms: EtchingTerms | None = None
    turbo: bool = False

    def supply(self) -> int | None:
        """Return premine plus the total mintable amount, or ``None`` on u128 overflow."""

        total = self.premine or 0
        if self.terms is not None:
            total += (self.terms.cap or 0) * (self.terms.amount or 0)
        return total if total <= varint.MAX_U128 else None


@dataclass(frozen=True)
class Runestone:
    edicts: tuple[Edict, ...] = ()
    etching: Etching | None = None
    mint: RuneId | None = None
    pointer: int | None = None

    def encipher(self) -> bytes:
        """Return the ``OP_RETURN`` output script carrying this runestone."""

        if self.etching is not None:
            raise ValueError("enciphering etchings is not supported")

        payload = bytearray()
        if self.mint is not None:
            _encode_field(payload, TAG_MINT, self.mint.block, self.mint.tx)
        if self.pointer is not None:
            _encode_field(payload, TAG_POINTER, self.pointer)
        if self.edicts:
            payload += varint.encode(TAG_BODY)
            previous = RuneId()
            for edict in sorted(self.edicts, key=lambda edict: edict.id):
                block, tx = previous.delta(edict.id)
                for value in (block, tx, edict.amount, edict.output):
                    payload += varint.encode(value)
                previous = edict.id

        script = bytearray([OP_RETURN, MAGIC_NUMBER])
        for start in range(0, len(payload), MAX_SCRIPT_ELEMENT_SIZE):
            script += push_data(bytes(payload[start : start + MAX_SCRIPT_ELEMENT_SIZE]))
        return bytes(script)

    @classmethod
    def decipher(cls, transaction: Transaction) -> "Artifact | None":
        """Return the runestone or cenotaph carried by *transaction*, if any."""

        payload = _find_payload(transaction)
        if payload is None:
            return None
        if isinstance(payload, Flaw):
            return Cenotaph(flaw=payload)

        try:
            integers = varint.decode_all(payload)
        except varint.VarintError:
            return Cenotaph(flaw=Flaw.VARINT)

        message = _Message.from_integers(transaction, integers)
        fields = message.fields

        flags = _take(fields, TAG_FLAGS, 1, lambda flags: flags) or 0
        etching = None
        etching_set, flags = _take_flag(flags, FLAG_ETCHING)
        if etching_set:
            etching, flags = _take_etching(fields, flags)

        mint = _take(fields, TAG_MINT, 2, RuneId.checked)
        pointer = _take(
            fields,
            TAG_POINTER,
            1,
            lambda pointer: pointer if pointer <= MAX_U32 and pointer < len(transaction.outputs) else None,
        )

        flaw = message.flaw
        if etching is not None and etching.supply() is None:
            flaw = flaw or Flaw.SUPPLY_OVERFLOW
        if flags:
            flaw = flaw or Flaw.UNRECOGNIZED_FLAG
        if any(tag % 2 == 0 for tag in fields):
            flaw = flaw or Flaw.UNRECOGNIZED_EVEN_TAG

        if flaw is not None:
            logger.debug("Runestone is a cenotaph: %s", flaw.value)
            return Cenotaph(flaw=flaw, mint=mint, etching=etching.rune if etching else None)

        return cls(edicts=tuple(message.edicts), etching=etching, mint=mint, pointer=pointer)

    def to_dict(self) -> dict[str, Any]:
        return {
            "edicts": [
                {"id": str(edict.id), "amount": edict.amount, "output": edict.output}
                for edict in self.edicts
            ],
            "etching": _etching_to_dict(self.etching),
            "mint": str(self.mint) if self.mint else None,
            "pointer": self.pointer,
        }


@dataclass(frozen=True)
class Cenotaph:
    flaw: Flaw | None = None
    mint: RuneId | None = None
    etching: Rune | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "cenotaph": True,
            "flaw": self.flaw.value if self.flaw else None,
            "mint": str(self.mint) if self.mint else None,
            "etching": str(self.etching) if self.etching else None,
        }


Artifact = Union[Runestone, Cenotaph]


def ensure_script_size(script: bytes, limit: int = MAX_RUNESTONE_SCRIPT_SIZE) -> bytes:
    if len(script) > limit:
        raise PayloadTooLarge(len(script), limit)
    return script


def encipher_mint(rune_id: RuneId) -> tuple[Runestone, bytes]:
    """Build the mint-only runestone for *rune_id* and its output script."""

    runestone = Runestone(mint=rune_id)
    return runestone, ensure_script_size(runestone.encipher())


@dataclass
class _Message:
    flaw: Flaw | None = None
    edicts: list[Edict] = field(default_factory=list)
    fields: dict[int, list[int]] = field(default_factory=dict)

    @classmethod
    def from_integers(cls, transaction: Transaction, integers: list[int]) -> "_Message":
        message = cls()
        index = 0
        while index < len(integers):
            tag = integers[index]
            if tag == TAG_BODY:
                message._read_edicts(transaction, integers[index + 1 :])
                break
            if index + 1 >= len(integers):
                message.flaw = message.flaw or Flaw.TRUNCATED_FIELD
                break
            message.fields.setdefault(tag, []).append(integers[index + 1])
            index += 2
        return message

    def _read_edicts(self, transaction: Transaction, body: list[int]) -> None:
        current = RuneId()
        for start in range(0, len(body), 4):
            chunk = body[start : start + 4]
            if len(chunk) != 4:
                self.flaw = self.flaw or Flaw.TRAILING_INTEGERS
                return
            block, tx, amount, output = chunk
            next_id = current.next(block, tx)
            if next_id is None:
                self.flaw = self.flaw or Flaw.EDICT_RUNE_ID
                return
            # output == len(outputs) splits the amount across all non-OP_RETURN outputs
            if output > MAX_U32 or output > len(transaction.outputs):
                self.flaw = self.flaw or Flaw.EDICT_OUTPUT
                return
            current = next_id
            self.edicts.append(Edict(next_id, amount, output))


def _encode_field(payload: bytearray, tag: int, *values: int) -> None:
    for value in values:
        payload += varint.encode(tag)
        payload += varint.encode(value)


def _find_payload(transaction: Transaction) -> "bytes | Flaw | None":
    for output in transaction.outputs:
        script = output.script_pubkey
        if len(script) < 2 or script[0] != OP_RETURN or script[1] != MAGIC_NUMBER:
            continue
        payload = bytearray()
        try:
            for instruction in iter_instructions(script[2:]):
                if not instruction.is_push:
                    return Flaw.OPCODE
                payload += instruction.data
        except ScriptError:
            return Flaw.INVALID_SCRIPT
        return bytes(payload)
    return None


def _take(fields: dict[int, list[int]], tag: int, count: int, parse: Callable[..., Any]) -> Any:
    """Consume *count* values of *tag* if *parse* accepts them.

    Values that fail to parse stay in *fields*, so an even tag left behind
    turns the runestone into a cenotaph.
    """

    values = fields.get(tag)
    if values is None or len(values) < count:
        return None
    parsed = parse(*values[:count])
    if parsed is None:
        return None
    del values[:count]
    if not values:
        del fields[tag]
    return parsed


def _take_flag(flags: int, flag: int) -> tuple[bool, int]:
    mask = 1 << flag
    return bool(flags & mask), flags & ~mask


def _take_etching(fields: dict[int, list[int]], flags: int) -> tuple[Etching, int]:
    def bounded(limit: int) -> Callable[[int], int | None]:
        return lambda value: value if value <= limit else None

    divisibility = _take(fields, TAG_DIVISIBILITY, 1, bounded(MAX_DIVISIBILITY))
    premine = _take(fields, TAG_PREMINE, 1, lambda value: value)
    rune = _take(fields, TAG_RUNE, 1, Rune)
    spacers = _take(fields, TAG_SPACERS, 1, bounded(MAX_SPACERS))
    symbol = _take(fields, TAG_SYMBOL, 1, _symbol)

    terms = None
    terms_set, flags = _take_flag(flags, FLAG_TERMS)
    if terms_set:
        terms = EtchingTerms(
            amount=_take(fields, TAG_AMOUNT, 1, lambda value: value),
            cap=_take(fields, TAG_CAP, 1, lambda value: value),
            height=(
                _take(fields, TAG_HEIGHT_START, 1, bounded(MAX_U64)),
                _take(fields, TAG_HEIGHT_END, 1, bounded(MAX_U64)),
            ),
            offset=(
                _take(fields, TAG_OFFSET_START, 1, bounded(MAX_U64)),
                _take(fields, TAG_OFFSET_END, 1, bounded(MAX_U64)),
            ),
        )
    turbo, flags = _take_flag(flags, FLAG_TURBO)

    etching = Etching(
        divisibility=divisibility,
        premine=premine,
        rune=rune,
        spacers=spacers,
        symbol=symbol,
        terms=terms,
        turbo=turbo,
    )
    return etching, flags


def _symbol(value: int) -> str | None:
    if value > 0x10FFFF or 0xD800 <= value <= 0xDFFF:
        return None
    return chr(value)


def _etching_to_dict(etching: Etching | None) -> dict[str, Any] | None:
    if etching is None:
        return None
    terms = etching.terms
    return {
        "divisibility": etching.divisibility,
        "premine": etching.premine,
        "rune": str(etching.rune) if etching.rune else None,
        "spacers": etching.spacers,
        "symbol": etching.symbol,
        "terms": None
        if terms is None
        else {"amount": terms.amount, "cap": terms.cap, "height": list(terms.height), "offset": list(terms.offset)},
        "turbo": etching.turbo,
    }
