"""Fee rate handling for mint funding."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict

SATS_PER_BTC = 100_000_000


def sat_vb_to_btc_per_kvb(rate: float | int) -> float:
    """Convert a sat/vB fee rate to BTC/kvB, rounding up to a whole sat/kvB."""

    return math.ceil(float(rate) * 1000) / SATS_PER_BTC


@dataclass(frozen=True)
class FeeRate:
    """A strictly positive fee rate in sat/vB."""

    sat_vb: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.sat_vb) or self.sat_vb <= 0:
            raise ValueError(f"fee rate must be a positive number of sat/vB, got {self.sat_vb}")

    @classmethod
    def parse(cls, raw: Any) -> "FeeRate":
        try:
            value = float(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"invalid fee rate: {raw}") from exc
        return cls(value)

    def btc_per_kvb(self) -> float:
        return sat_vb_to_btc_per_kvb(self.sat_vb)

    def __str__(self) -> str:
        return f"{self.sat_vb:g} sat/vB"


def build_fund_options(fee_rate: FeeRate, change_position: int, lock_unspents: bool = True) -> Dict[str, Any]:
    """Prepare ``fundrawtransaction`` options for a mint skeleton.

    ``feeRate`` is expressed per kvB in BTC, which is why the sat/vB rate is
    scaled. Change goes after the skeleton's outputs so the runestone stays
    first and the minted runes keep landing in output 1.
    """

    return {
        "feeRate": fee_rate.btc_per_kvb(),
        "changePosition": change_position,
        "lockUnspents": lock_unspents,
    }
