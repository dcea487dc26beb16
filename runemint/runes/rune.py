"""Rune names, spaced rune names and rune identifiers."""

from __future__ import annotations

from dataclasses import dataclass

from .varint import MAX_U128

ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ"
SPACERS = {".", "•"}
MAX_U64 = (1 << 64) - 1
MAX_U32 = (1 << 32) - 1
MAX_SPACERS = 0b00000111_11111111_11111111_11111111


class RuneParseError(ValueError):
    """Raised when a rune name, spaced rune, or rune id cannot be parsed."""


@dataclass(frozen=True, order=True)
class Rune:
    """A rune name stored as its modified base-26 integer value."""

    value: int

    @classmethod
    def from_str(cls, name: str) -> "Rune":
        if not name:
            raise RuneParseError("rune name must not be empty")
        value = 0
        for index, character in enumerate(name):
            if character not in ALPHABET:
                raise RuneParseError(f"invalid character `{character}` in rune name {name}")
            if index > 0:
                value += 1
            value = value * 26 + ALPHABET.index(character)
            if value > MAX_U128:
                raise RuneParseError(f"rune name {name} out of range")
        return cls(value)

    def __str__(self) -> str:
        n = self.value
        if n == MAX_U128:
            return "BCGDENLQRQWDSLRUGSNLBTMFIJAV"
        n += 1
        letters: list[str] = []
        while n > 0:
            letters.append(ALPHABET[(n - 1) % 26])
            n = (n - 1) // 26
        return "".join(reversed(letters))


@dataclass(frozen=True)
class SpacedRune:
    """A rune plus the bitmask of spacers displayed after each letter."""

    rune: Rune
    spacers: int = 0

    @classmethod
    def from_str(cls, text: str) -> "SpacedRune":
        letters: list[str] = []
        spacers = 0
        for character in text:
            if character in ALPHABET:
                letters.append(character)
            elif character in SPACERS:
                if not letters:
                    raise RuneParseError(f"leading spacer in {text}")
                flag = 1 << (len(letters) - 1)
                if spacers & flag:
                    raise RuneParseError(f"double spacer in {text}")
                spacers |= flag
            else:
                raise RuneParseError(f"invalid character `{character}` in {text}")
        if spacers.bit_length() >= len(letters):
            raise RuneParseError(f"trailing spacer in {text}")
        return cls(Rune.from_str("".join(letters)), spacers)

    def __str__(self) -> str:
        name = str(self.rune)
        out: list[str] = []
        for index, character in enumerate(name):
            out.append(character)
            if index < len(name) - 1 and self.spacers & (1 << index):
                out.append("•")
        return "".join(out)


@dataclass(frozen=True, order=True)
class RuneId:
    """Location of a rune's etching: block height and transaction index."""

    block: int = 0
    tx: int = 0

    def __post_init__(self) -> None:
        if not 0 <= self.block <= MAX_U64:
            raise RuneParseError(f"rune id block {self.block} out of range")
        if not 0 <= self.tx <= MAX_U32:
            raise RuneParseError(f"rune id tx {self.tx} out of range")
        if self.block == 0 and self.tx > 0:
            raise RuneParseError(f"rune id {self.block}:{self.tx} is invalid")

    @classmethod
    def from_str(cls, text: str) -> "RuneId":
        block, separator, tx = text.partition(":")
        if not separator:
            raise RuneParseError(f"rune id {text} must be `BLOCK:TX`")
        try:
            return cls(int(block), int(tx))
        except ValueError as exc:
            raise RuneParseError(f"invalid rune id {text}") from exc

    @classmethod
    def checked(cls, block: int, tx: int) -> "RuneId | None":
        """Return the id, or ``None`` when the integers do not form a valid one."""

        try:
            return cls(block, tx)
        except RuneParseError:
            return None

    def delta(self, next_id: "RuneId") -> tuple[int, int]:
        block = next_id.block - self.block
        if block < 0:
            raise ValueError("rune ids must be sorted before delta encoding")
        if block == 0:
            tx = next_id.tx - self.tx
            if tx < 0:
                raise ValueError("rune ids must be sorted before delta encoding")
        else:
            tx = next_id.tx
        return block, tx

    def next(self, block: int, tx: int) -> "RuneId | None":
        if block == 0:
            return RuneId.checked(self.block, self.tx + tx)
        return RuneId.checked(self.block + block, tx)

    def __str__(self) -> str:
        return f"{self.block}:{self.tx}"
