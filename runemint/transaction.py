"""Transactions exchanged with the node, serialized through python-bitcoinlib."""

from __future__ import annotations

import binascii
from dataclasses import dataclass, field

from bitcoin.core import (
    CMutableTransaction,
    CMutableTxIn,
    CMutableTxOut,
    COutPoint,
    CTransaction,
    CTxInWitness,
    CTxWitness,
    b2lx,
    lx,
)
from bitcoin.core.script import CScript, CScriptWitness
from bitcoin.core.serialize import SerializationError


class TransactionDecodeError(ValueError):
    """Raised when raw transaction bytes cannot be parsed."""


@dataclass(frozen=True)
class OutPoint:
    txid: str
    vout: int

    def to_rpc(self) -> dict[str, object]:
        return {"txid": self.txid, "vout": self.vout}

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}"


@dataclass
class TxIn:
    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: list[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes


@dataclass
class Transaction:
    version: int = 2
    lock_time: int = 0
    inputs: list[TxIn] = field(default_factory=list)
    outputs: list[TxOut] = field(default_factory=list)

    def to_ctransaction(self) -> CMutableTransaction:
        vin = [
            CMutableTxIn(
                COutPoint(lx(txin.previous_output.txid), txin.previous_output.vout),
                CScript(txin.script_sig),
                txin.sequence,
            )
            for txin in self.inputs
        ]
        vout = [CMutableTxOut(txout.value, CScript(txout.script_pubkey)) for txout in self.outputs]
        witness = CTxWitness([CTxInWitness(CScriptWitness(txin.witness)) for txin in self.inputs])
        return CMutableTransaction(vin, vout, nLockTime=self.lock_time, nVersion=self.version, witness=witness)

    @classmethod
    def from_ctransaction(cls, tx: CTransaction) -> "Transaction":
        stacks = [[bytes(item) for item in txinwit.scriptWitness.stack] for txinwit in tx.wit.vtxinwit]
        inputs = []
        for position, txin in enumerate(tx.vin):
            inputs.append(
                TxIn(
                    OutPoint(b2lx(txin.prevout.hash), txin.prevout.n),
                    bytes(txin.scriptSig),
                    txin.nSequence,
                    stacks[position] if position < len(stacks) else [],
                )
            )
        outputs = [TxOut(txout.nValue, bytes(txout.scriptPubKey)) for txout in tx.vout]
        return cls(version=tx.nVersion, lock_time=tx.nLockTime, inputs=inputs, outputs=outputs)

    def serialize(self) -> bytes:
        return self.to_ctransaction().serialize()

    def to_hex(self) -> str:
        return binascii.hexlify(self.serialize()).decode()

    @property
    def txid(self) -> str:
        return b2lx(self.to_ctransaction().GetTxid())

    @classmethod
    def from_hex(cls, raw_hex: str) -> "Transaction":
        """Parse a raw transaction with the consensus deserializer.

        A transaction without inputs and with exactly one output starts with
        the witness marker and flag, so it is read as a witness transaction.
        """

        try:
            raw = binascii.unhexlify(raw_hex)
        except (binascii.Error, ValueError) as exc:
            raise TransactionDecodeError("raw transaction is not valid hex") from exc
        try:
            return cls.from_ctransaction(CTransaction.deserialize(raw))
        except (SerializationError, ValueError) as exc:
            raise TransactionDecodeError(f"malformed transaction: {exc}") from exc
