"""Runes protocol primitives: names, ids, runestones and rune entries."""

from runemint.runes.entry import Pile, RuneEntry, Terms
from runemint.runes.rune import Rune, RuneId, RuneParseError, SpacedRune
from runemint.runes.runestone import (
    MAX_RUNESTONE_SCRIPT_SIZE,
    Cenotaph,
    Edict,
    Etching,
    Flaw,
    Runestone,
    encipher_mint,
    ensure_script_size,
)

__all__ = [
    "Cenotaph",
    "Edict",
    "Etching",
    "Flaw",
    "MAX_RUNESTONE_SCRIPT_SIZE",
    "Pile",
    "Rune",
    "RuneEntry",
    "RuneId",
    "RuneParseError",
    "Runestone",
    "SpacedRune",
    "Terms",
    "encipher_mint",
    "ensure_script_size",
]
