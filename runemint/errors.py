"""Error taxonomy for the rune mint flow.

Every expected, user-facing failure derives from :class:`MintFlowError` and
carries enough context (rune, thresholds) to explain the rejection. The
orchestrator records the stage it failed to reach on ``stage``.

:class:`EncodingMismatch` is deliberately *not* a :class:`MintFlowError`: it
signals that the runestone codec and the node disagree about wire format and
must abort the process path instead of being reported as a user error.
"""

from __future__ import annotations

from typing import Any


class MintFlowError(RuntimeError):
    """Base class for recoverable mint failures."""

    stage: Any = None


class IndexNotEnabled(MintFlowError):
    def __init__(self) -> None:
        super().__init__("minting requires an ord server index created with `--index-runes`")


class IndexNotSynced(MintFlowError):
    def __init__(self, attempts: int, index_height: int | None, chain_height: int) -> None:
        super().__init__(
            f"ord server failed to synchronize with the node after {attempts} attempts "
            f"(index at {index_height}, chain at {chain_height})"
        )
        self.attempts = attempts
        self.index_height = index_height
        self.chain_height = chain_height


class TokenNotFound(MintFlowError):
    def __init__(self, rune: Any) -> None:
        super().__init__(f"rune {rune} has not been etched")
        self.rune = rune


class EligibilityError(MintFlowError):
    """Raised by :meth:`RuneEntry.mintable` when minting is not permitted."""

    rune: Any = None

    def reason(self) -> str:
        raise NotImplementedError

    def __str__(self) -> str:
        if self.rune is None:
            return self.reason()
        return f"rune {self.rune} {self.reason()}"


class NotMintable(EligibilityError):
    def reason(self) -> str:
        return "not mintable"


class NotStarted(EligibilityError):
    def __init__(self, start: int) -> None:
        super().__init__(start)
        self.start = start

    def reason(self) -> str:
        return f"not mintable until {self.start}"


class Ended(EligibilityError):
    def __init__(self, end: int) -> None:
        super().__init__(end)
        self.end = end

    def reason(self) -> str:
        return f"mint ended on block {self.end}"


class CapReached(EligibilityError):
    def __init__(self, cap: int) -> None:
        super().__init__(cap)
        self.cap = cap

    def reason(self) -> str:
        return f"limited to {self.cap} mints"


class PayloadTooLarge(MintFlowError):
    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"runestone greater than maximum OP_RETURN size: {size} > {limit}")
        self.size = size
        self.limit = limit


class BelowDustLimit(MintFlowError):
    def __init__(self, postage: int, dust: int) -> None:
        super().__init__(f"postage below dust limit of {dust}sat")
        self.postage = postage
        self.dust = dust


class NetworkMismatch(MintFlowError):
    def __init__(self, address: str, network: Any) -> None:
        super().__init__(f"address {address} is not valid for {network}")
        self.address = address
        self.network = network


class FundingFailed(MintFlowError):
    """The node wallet could not add inputs and change to the skeleton."""


class SigningFailed(MintFlowError):
    """The node wallet did not produce a complete signature set."""


class BroadcastFailed(MintFlowError):
    """The node refused to relay the signed mint transaction."""


class EncodingMismatch(AssertionError):
    """The signed transaction no longer deciphers to the enciphered runestone."""

    def __init__(self, expected: Any, actual: Any, raw_tx: str) -> None:
        super().__init__(
            f"signed transaction deciphers to {actual!r}, expected {expected!r}; raw transaction: {raw_tx}"
        )
        self.expected = expected
        self.actual = actual
        self.raw_tx = raw_tx


__all__ = [
    "BelowDustLimit",
    "BroadcastFailed",
    "CapReached",
    "EligibilityError",
    "EncodingMismatch",
    "Ended",
    "FundingFailed",
    "IndexNotEnabled",
    "IndexNotSynced",
    "MintFlowError",
    "NetworkMismatch",
    "NotMintable",
    "NotStarted",
    "PayloadTooLarge",
    "SigningFailed",
    "TokenNotFound",
]
