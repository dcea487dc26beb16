"""Mint orchestration: from a mint request to a broadcast runestone.

The pipeline is strictly sequential and re-reads index state on every
request::

    REQUESTED -> INDEX_CHECKED -> ELIGIBLE -> ENCODED -> SKELETON_BUILT
              -> FUNDED -> SIGNED -> BROADCAST -> REPORTED

Any step may fail instead of advancing. Every failure moves the run to
FAILED and sets ``stage`` on the raised exception to the stage that could not
be reached. Mint rule violations are :class:`~runemint.errors.MintFlowError`
subclasses; index, node, wallet and address errors keep their own types.
Locking non-cardinal outputs and funding run under a per-wallet lock so
concurrent mints from one wallet cannot select overlapping inputs. Outputs
locked by an attempt are released again if its funding fails for any reason.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from .address import Address
from .amount import btc_to_sats, format_sats
from .config import TARGET_POSTAGE, MintContext, RPCConfig
from .errors import EligibilityError, EncodingMismatch, IndexNotEnabled, TokenNotFound
from .fees import FeeRate
from .index import OrdServerIndex, RuneIndex
from .rpc_client import BitcoinRPCClient, RPCError, RPCTransportError
from .runes import Pile, RuneId, Runestone, SpacedRune, encipher_mint
from .transaction import OutPoint, Transaction
from .tx_builder import (
    NodeTransactionService,
    TransactionBroadcaster,
    TransactionFunder,
    TransactionSigner,
    build_unfunded_transaction,
)
from .wallet import NodeWallet, Wallet, WalletError, wallet_lock

logger = logging.getLogger(__name__)


class MintStage(str, Enum):
    REQUESTED = "requested"
    INDEX_CHECKED = "index_checked"
    ELIGIBLE = "eligible"
    ENCODED = "encoded"
    SKELETON_BUILT = "skeleton_built"
    FUNDED = "funded"
    SIGNED = "signed"
    BROADCAST = "broadcast"
    REPORTED = "reported"
    FAILED = "failed"


@dataclass(frozen=True)
class MintRequest:
    """Caller-supplied mint parameters. ``postage`` is in sats."""

    fee_rate: FeeRate
    rune: SpacedRune
    postage: int | None = None
    destination: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "MintRequest":
        """Parse ``{"fee_rate", "rune", "postage", "destination"}`` with postage in BTC."""

        try:
            fee_rate = FeeRate.parse(payload["fee_rate"])
            rune = SpacedRune.from_str(str(payload["rune"]))
        except KeyError as exc:
            raise ValueError(f"mint request is missing {exc.args[0]!r}") from exc
        postage = payload.get("postage")
        destination = payload.get("destination")
        return cls(
            fee_rate=fee_rate,
            rune=rune,
            postage=None if postage is None else btc_to_sats(postage),
            destination=None if destination is None else str(destination),
        )


@dataclass(frozen=True)
class MintResult:
    rune: SpacedRune
    pile: Pile
    mint: str

    def to_dict(self) -> dict[str, Any]:
        return {"rune": str(self.rune), "pile": self.pile.to_dict(), "mint": self.mint}


@dataclass(frozen=True)
class PreparedMint:
    """A funded but unsigned mint transaction."""

    rune: SpacedRune
    pile: Pile
    transaction: Transaction

    def to_dict(self) -> dict[str, Any]:
        return {
            "rune": str(self.rune),
            "pile": self.pile.to_dict(),
            "unsigned_transaction": self.transaction.to_hex(),
        }


@dataclass
class _MintRun:
    """Bookkeeping for one pass through the pipeline."""

    request: MintRequest
    stage: MintStage = MintStage.REQUESTED

    def advance(self, stage: MintStage) -> None:
        logger.debug("Mint %s: %s -> %s", self.request.rune, self.stage.value, stage.value)
        self.stage = stage


@dataclass
class _Funded:
    rune_id: RuneId
    runestone: Runestone
    pile: Pile
    transaction: Transaction


class MintOrchestrator:
    """Run mint requests against injected index, wallet and node collaborators."""

    def __init__(
        self,
        index: RuneIndex,
        wallet: Wallet,
        funder: TransactionFunder,
        signer: TransactionSigner,
        broadcaster: TransactionBroadcaster,
        *,
        target_postage: int = TARGET_POSTAGE,
        lock: threading.Lock | None = None,
    ) -> None:
        self.index = index
        self.wallet = wallet
        self.funder = funder
        self.signer = signer
        self.broadcaster = broadcaster
        self.target_postage = target_postage
        self._lock = lock if lock is not None else wallet_lock(wallet.name)

    @classmethod
    def from_context(cls, context: MintContext, rpc_config: RPCConfig) -> "MintOrchestrator":
        """Build node- and ord-server-backed collaborators once for *context*."""

        rpc = BitcoinRPCClient(rpc_config)
        rpc.set_wallet(context.wallet)
        index = OrdServerIndex(context.server_url, rpc)
        if not context.no_sync:
            index.wait_for_sync()
        service = NodeTransactionService(rpc)
        return cls(
            index,
            NodeWallet(rpc, index, context.wallet),
            service,
            service,
            service,
            target_postage=context.target_postage,
        )

    def mint(self, request: MintRequest) -> MintResult:
        """Run the whole pipeline and return the broadcast mint."""

        run = _MintRun(request)
        try:
            funded = self._fund(run)

            signed = self.signer.sign(funded.transaction)
            run.advance(MintStage.SIGNED)

            artifact = Runestone.decipher(signed)
            if artifact != funded.runestone:
                logger.critical(
                    "Signed mint transaction for %s deciphers to %r instead of %r",
                    request.rune,
                    artifact,
                    funded.runestone,
                )
                raise EncodingMismatch(funded.runestone, artifact, signed.to_hex())

            txid = self.broadcaster.broadcast(signed)
            run.advance(MintStage.BROADCAST)
        except Exception as exc:
            self._fail(run, exc)
            raise

        result = MintResult(rune=request.rune, pile=funded.pile, mint=txid)
        run.advance(MintStage.REPORTED)
        logger.info("Minted %s of %s in %s", result.pile, request.rune, txid)
        return result

    def prepare(self, request: MintRequest) -> PreparedMint:
        """Stop after funding and return the unsigned transaction."""

        run = _MintRun(request)
        try:
            funded = self._fund(run)
        except Exception as exc:
            self._fail(run, exc)
            raise
        return PreparedMint(rune=request.rune, pile=funded.pile, transaction=funded.transaction)

    def _fund(self, run: _MintRun) -> _Funded:
        request = run.request

        if not self.index.is_rune_indexing_enabled():
            raise IndexNotEnabled()
        run.advance(MintStage.INDEX_CHECKED)

        height = self.index.current_chain_height()
        found = self.index.lookup(request.rune)
        if found is None:
            raise TokenNotFound(request.rune)
        rune_id, entry = found
        try:
            amount = entry.mintable(height)
        except EligibilityError as exc:
            exc.rune = request.rune
            raise
        pile = entry.pile(amount)
        run.advance(MintStage.ELIGIBLE)
        logger.debug("Rune %s (%s) mintable at height %s: %s", request.rune, rune_id, height, pile)

        runestone, script = encipher_mint(rune_id)
        run.advance(MintStage.ENCODED)

        postage = request.postage if request.postage is not None else self.target_postage
        destination = self._destination_script(request.destination)
        skeleton = build_unfunded_transaction(script, destination, postage)
        run.advance(MintStage.SKELETON_BUILT)
        logger.debug("Mint skeleton for %s pays %s postage", request.rune, format_sats(postage))

        with self._lock:
            locked = self.wallet.lock_non_cardinal_outputs()
            try:
                funded = self.funder.fund(skeleton, request.fee_rate)
            except BaseException:
                self._release(locked)
                raise
        run.advance(MintStage.FUNDED)

        return _Funded(rune_id=rune_id, runestone=runestone, pile=pile, transaction=funded)

    def _destination_script(self, destination: str | None) -> bytes:
        if destination is None:
            return self.wallet.default_change_script()
        return Address.from_string(destination).require_network(self.wallet.network()).script_pubkey

    def _release(self, locked: list[OutPoint]) -> None:
        # The funding error is the one to surface; a failed release is only logged.
        try:
            self.wallet.release_outputs(locked)
        except (WalletError, RPCError, RPCTransportError) as exc:
            logger.error(
                "Could not release %d locked outputs in wallet %s: %s",
                len(locked),
                self.wallet.name,
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )

    @staticmethod
    def _fail(run: _MintRun, exc: Exception) -> None:
        stages = list(MintStage)
        failed_to_reach = stages[stages.index(run.stage) + 1]
        exc.stage = failed_to_reach
        run.advance(MintStage.FAILED)
        logger.debug("Mint %s failed before %s: %s", run.request.rune, failed_to_reach.value, exc)
