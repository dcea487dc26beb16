"""Rune state as reported by the index, and mint eligibility."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from ..errors import CapReached, Ended, NotMintable, NotStarted
from .rune import SpacedRune

DEFAULT_SYMBOL = "¤"


@dataclass(frozen=True)
class Terms:
    """Open mint terms fixed when the rune was etched."""

    amount: int | None = None
    cap: int | None = None
    height: tuple[int | None, int | None] = (None, None)
    offset: tuple[int | None, int | None] = (None, None)

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "Terms":
        return cls(
            amount=_optional_int(data.get("amount")),
            cap=_optional_int(data.get("cap")),
            height=_optional_pair(data.get("height")),
            offset=_optional_pair(data.get("offset")),
        )


@dataclass(frozen=True)
class Pile:
    """An amount of a rune with the metadata needed to display it."""

    amount: int
    divisibility: int
    symbol: str | None = None

    def __str__(self) -> str:
        cutoff = 10**self.divisibility
        whole, fractional = divmod(self.amount, cutoff)
        if fractional == 0:
            text = str(whole)
        else:
            width = self.divisibility
            while fractional % 10 == 0:
                fractional //= 10
                width -= 1
            text = f"{whole}.{fractional:0{width}d}"
        return f"{text}\u00a0{self.symbol or DEFAULT_SYMBOL}"

    def to_dict(self) -> dict[str, Any]:
        return {"amount": self.amount, "divisibility": self.divisibility, "symbol": self.symbol}


@dataclass(frozen=True)
class RuneEntry:
    """Current on-chain state of an etched rune."""

    block: int
    spaced_rune: SpacedRune
    divisibility: int = 0
    etching: str = ""
    mints: int = 0
    number: int = 0
    premine: int = 0
    burned: int = 0
    symbol: str | None = None
    terms: Terms | None = None
    timestamp: int = 0
    turbo: bool = False

    @classmethod
    def from_json(cls, data: Mapping[str, Any]) -> "RuneEntry":
        """Build an entry from the ord server's JSON representation."""

        terms = data.get("terms")
        divisibility = int(data.get("divisibility", 0))
        if not 0 <= divisibility <= 38:
            raise ValueError(f"divisibility {divisibility} outside 0..=38")
        return cls(
            block=int(data["block"]),
            spaced_rune=SpacedRune.from_str(str(data["spaced_rune"])),
            divisibility=divisibility,
            etching=str(data.get("etching", "")),
            mints=int(data.get("mints", 0)),
            number=int(data.get("number", 0)),
            premine=int(data.get("premine", 0)),
            burned=int(data.get("burned", 0)),
            symbol=data.get("symbol"),
            terms=Terms.from_json(terms) if terms else None,
            timestamp=int(data.get("timestamp", 0)),
            turbo=bool(data.get("turbo", False)),
        )

    def start(self) -> int | None:
        """First height at which minting is open, if bounded."""

        if self.terms is None:
            return None
        relative = None if self.terms.offset[0] is None else self.block + self.terms.offset[0]
        absolute = self.terms.height[0]
        if relative is not None and absolute is not None:
            return max(relative, absolute)
        return relative if relative is not None else absolute

    def end(self) -> int | None:
        """First height at which minting is closed, if bounded."""

        if self.terms is None:
            return None
        relative = None if self.terms.offset[1] is None else self.block + self.terms.offset[1]
        absolute = self.terms.height[1]
        if relative is not None and absolute is not None:
            return min(relative, absolute)
        return relative if relative is not None else absolute

    def mintable(self, height: int) -> int:
        """Return the amount one mint yields at *height*.

        Raises an :class:`~runemint.errors.EligibilityError` subclass when the
        rune has no open terms, the window ``[start, end)`` does not contain
        *height*, or the cap has been reached.
        """

        if self.terms is None:
            raise NotMintable()
        start = self.start()
        if start is not None and height < start:
            raise NotStarted(start)
        end = self.end()
        if end is not None and height >= end:
            raise Ended(end)
        cap = self.terms.cap or 0
        if self.mints >= cap:
            raise CapReached(cap)
        return self.terms.amount or 0

    def pile(self, amount: int) -> Pile:
        return Pile(amount=amount, divisibility=self.divisibility, symbol=self.symbol)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _optional_pair(value: Any) -> tuple[int | None, int | None]:
    if not value:
        return (None, None)
    start, end = value
    return (_optional_int(start), _optional_int(end))
