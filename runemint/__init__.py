"""Rune mint transaction assembly for Bitcoin Core and ord."""

from .errors import (
    BelowDustLimit,
    BroadcastFailed,
    CapReached,
    EligibilityError,
    EncodingMismatch,
    Ended,
    FundingFailed,
    IndexNotEnabled,
    IndexNotSynced,
    MintFlowError,
    NetworkMismatch,
    NotMintable,
    NotStarted,
    PayloadTooLarge,
    SigningFailed,
    TokenNotFound,
)
from .fees import FeeRate
from .mint import MintOrchestrator, MintRequest, MintResult, MintStage, PreparedMint
from .runes import Pile, Rune, RuneEntry, RuneId, Runestone, SpacedRune, Terms

__all__ = [
    "BelowDustLimit",
    "BroadcastFailed",
    "CapReached",
    "EligibilityError",
    "EncodingMismatch",
    "Ended",
    "FeeRate",
    "FundingFailed",
    "IndexNotEnabled",
    "IndexNotSynced",
    "MintFlowError",
    "MintOrchestrator",
    "MintRequest",
    "MintResult",
    "MintStage",
    "NetworkMismatch",
    "NotMintable",
    "NotStarted",
    "PayloadTooLarge",
    "Pile",
    "PreparedMint",
    "Rune",
    "RuneEntry",
    "RuneId",
    "Runestone",
    "SigningFailed",
    "SpacedRune",
    "Terms",
    "TokenNotFound",
]
