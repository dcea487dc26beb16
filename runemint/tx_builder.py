"""Mint transaction skeleton building and node-backed completion.

:func:`build_unfunded_transaction` produces the deterministic two-output
skeleton. The collaborators below complete it through the node wallet:
``fundrawtransaction`` adds inputs and change, ``signrawtransactionwithwallet``
signs, ``sendrawtransaction`` broadcasts. None of them retries.
"""

from __future__ import annotations

import logging

from .errors import BelowDustLimit, BroadcastFailed, FundingFailed, SigningFailed
from .fees import FeeRate, build_fund_options
from .rpc_client import RPCError, RPCTransportError, format_rpc_hint
from .runes.runestone import ensure_script_size
from .script import dust_value
from .transaction import Transaction, TransactionDecodeError, TxOut

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS_CODE = -6


def build_unfunded_transaction(runestone_script: bytes, destination_script: bytes, postage: int) -> Transaction:
    """Return the unfunded mint skeleton.

    Output 0 carries the runestone with value 0, output 1 pays *postage* to
    *destination_script*. There are no inputs, so the result must be funded
    and signed before it can be broadcast.
    """

    ensure_script_size(runestone_script)
    dust = dust_value(destination_script)
    if postage <= dust:
        raise BelowDustLimit(postage, dust)
    return Transaction(
        version=2,
        lock_time=0,
        inputs=[],
        outputs=[
            TxOut(value=0, script_pubkey=runestone_script),
            TxOut(value=postage, script_pubkey=destination_script),
        ],
    )


class TransactionFunder:
    def fund(self, transaction: Transaction, fee_rate: FeeRate) -> Transaction:
        raise NotImplementedError


class TransactionSigner:
    def sign(self, transaction: Transaction) -> Transaction:
        raise NotImplementedError


class TransactionBroadcaster:
    def broadcast(self, transaction: Transaction) -> str:
        raise NotImplementedError


def _with_hint(prefix: str, exc: RPCError) -> str:
    hint = format_rpc_hint(exc)
    hint_suffix = f"\nHint: {hint}" if hint else ""
    return f"{prefix}: {exc}{hint_suffix}"


def _parse(reply: dict, what: str, error: type[Exception]) -> Transaction:
    raw_hex = reply.get("hex")
    if not isinstance(raw_hex, str):
        raise error(f"node returned no {what} transaction hex")
    try:
        return Transaction.from_hex(raw_hex)
    except TransactionDecodeError as exc:
        raise error(f"node returned an undecodable {what} transaction: {exc}") from exc


class NodeTransactionService(TransactionFunder, TransactionSigner, TransactionBroadcaster):
    """Fund, sign and broadcast through a Bitcoin Core wallet."""

    def __init__(self, rpc) -> None:
        self.rpc = rpc

    def fund(self, transaction: Transaction, fee_rate: FeeRate) -> Transaction:
        options = build_fund_options(fee_rate, change_position=len(transaction.outputs))
        logger.debug("Funding mint skeleton at %s with options %s", fee_rate, options)
        try:
            funded = self.rpc.fundrawtransaction(transaction.to_hex(), options)
        except RPCError as exc:
            if exc.code == INSUFFICIENT_FUNDS_CODE:
                raise FundingFailed(_with_hint("not enough cardinal utxos", exc)) from exc
            raise FundingFailed(_with_hint("fundrawtransaction failed", exc)) from exc
        except RPCTransportError as exc:
            raise FundingFailed(f"fundrawtransaction failed: {exc}") from exc
        logger.debug("Wallet chose fee %s BTC, change position %s", funded.get("fee"), funded.get("changepos"))
        return _parse(funded, "funded", FundingFailed)

    def sign(self, transaction: Transaction) -> Transaction:
        try:
            signed = self.rpc.signrawtransactionwithwallet(transaction.to_hex())
        except (RPCError, RPCTransportError) as exc:
            raise SigningFailed(f"signrawtransactionwithwallet failed: {exc}") from exc
        if not signed.get("complete"):
            errors = signed.get("errors") or []
            detail = "; ".join(str(error.get("error", error)) for error in errors if isinstance(error, dict))
            raise SigningFailed(
                "Node failed to produce a complete signature set" + (f": {detail}" if detail else "")
            )
        return _parse(signed, "signed", SigningFailed)

    def broadcast(self, transaction: Transaction) -> str:
        try:
            txid = self.rpc.sendrawtransaction(transaction.to_hex())
        except RPCError as exc:
            raise BroadcastFailed(_with_hint("Broadcast failed", exc)) from exc
        except RPCTransportError as exc:
            raise BroadcastFailed(f"Broadcast failed: {exc}") from exc
        logger.info("Broadcasted transaction %s", txid)
        return txid
