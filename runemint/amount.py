"""Parsing of bitcoin amounts given on the command line or in requests."""

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from .fees import SATS_PER_BTC

DENOMINATIONS = {
    "btc": Decimal(SATS_PER_BTC),
    "cbtc": Decimal(1_000_000),
    "mbtc": Decimal(100_000),
    "bit": Decimal(100),
    "bits": Decimal(100),
    "sat": Decimal(1),
    "sats": Decimal(1),
}


class AmountError(ValueError):
    """Raised when an amount cannot be converted to whole satoshis."""


def parse_amount(raw: str) -> int:
    """Convert ``"10000sat"``, ``"0.0001 btc"`` and similar to satoshis.

    A denomination is required so a bare number is never silently read as
    BTC where sats were meant, or the other way round.
    """

    text = raw.strip().lower()
    number = text.rstrip("abcdefghijklmnopqrstuvwxyz").strip()
    unit = text[len(text.rstrip("abcdefghijklmnopqrstuvwxyz")) :]
    if not unit:
        raise AmountError(f"missing denomination in amount {raw!r} (use e.g. 10000sat or 0.0001btc)")
    if unit not in DENOMINATIONS:
        raise AmountError(f"unknown denomination {unit!r} in amount {raw!r}")
    try:
        value = Decimal(number)
    except InvalidOperation as exc:
        raise AmountError(f"invalid amount {raw!r}") from exc
    return _to_sats(value * DENOMINATIONS[unit], raw)


def btc_to_sats(value: float | int | str | Decimal) -> int:
    """Convert a BTC amount as found in JSON payloads to satoshis."""

    try:
        decimal_value = Decimal(str(value))
    except InvalidOperation as exc:
        raise AmountError(f"invalid BTC amount {value!r}") from exc
    return _to_sats(decimal_value * SATS_PER_BTC, value)


def _to_sats(sats: Decimal, raw: object) -> int:
    if not sats.is_finite() or sats < 0:
        raise AmountError(f"amount {raw!r} must be a non-negative number")
    if sats != sats.to_integral_value():
        raise AmountError(f"amount {raw!r} has sub-satoshi precision")
    return int(sats)


def format_sats(sats: int) -> str:
    return f"{sats}sat"
