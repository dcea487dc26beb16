"""Wallet access for the mint flow, backed by a Bitcoin Core wallet."""

from __future__ import annotations

import logging
import threading
from typing import Iterable

from .address import Address, Network
from .index import RuneIndex, output_is_cardinal
from .rpc_client import RPCError
from .transaction import OutPoint

logger = logging.getLogger(__name__)

_WALLET_LOCKS: dict[str, threading.Lock] = {}
_WALLET_LOCKS_GUARD = threading.Lock()


def wallet_lock(name: str) -> threading.Lock:
    """Return the process-wide lock serializing output locking and funding for *name*."""

    with _WALLET_LOCKS_GUARD:
        return _WALLET_LOCKS.setdefault(name, threading.Lock())


class WalletError(RuntimeError):
    """Raised when the wallet cannot reserve or release outputs."""


class Wallet:
    """Interface for the wallet collaborator."""

    name: str = ""

    def lock_non_cardinal_outputs(self) -> list[OutPoint]:
        raise NotImplementedError

    def release_outputs(self, outpoints: Iterable[OutPoint]) -> None:
        raise NotImplementedError

    def default_change_script(self) -> bytes:
        raise NotImplementedError

    def network(self) -> Network:
        raise NotImplementedError


class NodeWallet(Wallet):
    """A named Bitcoin Core wallet whose inscription and rune outputs are known to an index."""

    def __init__(self, rpc, index: RuneIndex, name: str) -> None:
        self.rpc = rpc
        self.index = index
        self.name = name
        self._network: Network | None = None

    def lock_non_cardinal_outputs(self) -> list[OutPoint]:
        """Lock every unspent output carrying inscriptions or runes.

        Outputs the index has not indexed are locked too. An output the index
        does not know at all raises :class:`~runemint.index.IndexClientError`
        before anything is locked.

        Returns the outputs newly locked by this call so a failed attempt can
        release exactly those.
        """

        already_locked = {OutPoint(item["txid"], int(item["vout"])) for item in self.rpc.listlockunspent()}
        to_lock: list[OutPoint] = []
        for item in self.rpc.listunspent(0):
            outpoint = OutPoint(item["txid"], int(item["vout"]))
            if outpoint in already_locked:
                continue
            if not output_is_cardinal(self.index.output_info(outpoint)):
                to_lock.append(outpoint)

        if not to_lock:
            return []
        logger.debug("Locking %d non-cardinal outputs in wallet %s", len(to_lock), self.name)
        try:
            locked = self.rpc.lockunspent(False, [outpoint.to_rpc() for outpoint in to_lock])
        except RPCError as exc:
            raise WalletError(f"failed to lock non-cardinal outputs: {exc}") from exc
        if not locked:
            raise WalletError("failed to lock non-cardinal outputs")
        return to_lock

    def release_outputs(self, outpoints: Iterable[OutPoint]) -> None:
        outputs = [outpoint.to_rpc() for outpoint in outpoints]
        if not outputs:
            return
        logger.debug("Releasing %d outputs in wallet %s", len(outputs), self.name)
        if not self.rpc.lockunspent(True, outputs):
            raise WalletError("failed to release locked outputs")

    def default_change_script(self) -> bytes:
        address = Address.from_string(self.rpc.getrawchangeaddress("bech32m"))
        return address.require_network(self.network()).script_pubkey

    def network(self) -> Network:
        if self._network is None:
            self._network = Network.from_chain(self.rpc.getblockchaininfo()["chain"])
        return self._network
