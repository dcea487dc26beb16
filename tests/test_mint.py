from __future__ import annotations

import logging
import threading

import pytest

from runemint.address import AddressError, Network
from runemint.config import MintContext, RPCConfig
from runemint.errors import (
    BelowDustLimit,
    CapReached,
    EncodingMismatch,
    Ended,
    FundingFailed,
    IndexNotEnabled,
    NetworkMismatch,
    NotStarted,
    TokenNotFound,
)
from runemint.fees import FeeRate
from runemint.index import IndexClientError, OrdServerIndex, RuneIndex
from runemint.mint import MintOrchestrator, MintRequest, MintResult, MintStage, PreparedMint
from runemint.runes import Pile, RuneEntry, RuneId, Runestone, SpacedRune, Terms, encipher_mint
from runemint.script import witness_script
from runemint.transaction import OutPoint, Transaction, TxIn, TxOut
from runemint.tx_builder import TransactionBroadcaster, TransactionFunder, TransactionSigner
from runemint.wallet import NodeWallet, Wallet, WalletError

ABCD = SpacedRune.from_str("ABCD")
ABCD_ID = RuneId(840000, 3)
CHANGE_SCRIPT = witness_script(1, b"\x07" * 32)
FUNDING_CHANGE = witness_script(0, b"\x08" * 20)


def _entry(terms: Terms | None = None, *, mints: int = 5, block: int = 840000) -> RuneEntry:
    if terms is None:
        terms = Terms(amount=1000, cap=100)
    return RuneEntry(block=block, spaced_rune=ABCD, divisibility=0, mints=mints, symbol="$", terms=terms)


class StubIndex(RuneIndex):
    def __init__(self, entry: RuneEntry | None = None, *, enabled: bool = True, height: int = 840100) -> None:
        self.entry = entry
        self.enabled = enabled
        self.height = height
        self.height_reads = 0

    def is_rune_indexing_enabled(self) -> bool:
        return self.enabled

    def current_chain_height(self) -> int:
        self.height_reads += 1
        return self.height

    def lookup(self, spaced_rune):
        if self.entry is None or spaced_rune != ABCD:
            return None
        return ABCD_ID, self.entry


class StubWallet(Wallet):
    def __init__(self, locked: list[OutPoint] | None = None) -> None:
        self.name = "ord"
        self.locked = locked or []
        self.lock_calls = 0
        self.released: list[OutPoint] = []

    def lock_non_cardinal_outputs(self):
        self.lock_calls += 1
        return list(self.locked)

    def release_outputs(self, outpoints):
        self.released.extend(outpoints)

    def default_change_script(self) -> bytes:
        return CHANGE_SCRIPT

    def network(self) -> Network:
        return Network.MAINNET


class StubNode(TransactionFunder, TransactionSigner, TransactionBroadcaster):
    def __init__(self, *, forge: bool = False, fund_error: Exception | None = None) -> None:
        self.forge = forge
        self.fund_error = fund_error
        self.funded: list[tuple[Transaction, FeeRate]] = []
        self.signed: list[Transaction] = []
        self.broadcasted: list[Transaction] = []

    def fund(self, transaction, fee_rate):
        self.funded.append((transaction, fee_rate))
        if self.fund_error is not None:
            raise self.fund_error
        outputs = list(transaction.outputs) + [TxOut(90_000, FUNDING_CHANGE)]
        if self.forge:
            outputs[0] = TxOut(0, encipher_mint(RuneId(1, 1))[1])
        return Transaction(inputs=[TxIn(OutPoint("aa" * 32, 0))], outputs=outputs)

    def sign(self, transaction):
        self.signed.append(transaction)
        inputs = [TxIn(txin.previous_output, witness=[b"\x01" * 64]) for txin in transaction.inputs]
        return Transaction(transaction.version, transaction.lock_time, inputs, list(transaction.outputs))

    def broadcast(self, transaction):
        self.broadcasted.append(transaction)
        return transaction.txid


def _orchestrator(index: StubIndex, wallet: StubWallet | None = None, node: StubNode | None = None):
    wallet = wallet or StubWallet()
    node = node or StubNode()
    return MintOrchestrator(index, wallet, node, node, node), wallet, node


def test_end_to_end_mint_with_defaults() -> None:
    index = StubIndex(_entry())
    orchestrator, wallet, node = _orchestrator(index)

    result = orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    skeleton, fee_rate = node.funded[0]
    assert fee_rate == FeeRate(5)
    assert skeleton.inputs == []
    assert skeleton.outputs == [TxOut(0, encipher_mint(ABCD_ID)[1]), TxOut(10_000, CHANGE_SCRIPT)]

    signed = node.broadcasted[0]
    assert Runestone.decipher(signed) == Runestone(mint=ABCD_ID)
    assert result == MintResult(rune=ABCD, pile=Pile(1000, 0, "$"), mint=signed.txid)
    assert result.to_dict() == {
        "rune": "ABCD",
        "pile": {"amount": 1000, "divisibility": 0, "symbol": "$"},
        "mint": signed.txid,
    }
    assert wallet.lock_calls == 1
    assert wallet.released == []
    assert index.height_reads == 1


def test_explicit_postage_and_destination() -> None:
    orchestrator, _, node = _orchestrator(StubIndex(_entry()))

    orchestrator.mint(
        MintRequest(
            fee_rate=FeeRate(2),
            rune=ABCD,
            postage=546,
            destination="bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4",
        )
    )

    skeleton, _ = node.funded[0]
    assert skeleton.outputs[1] == TxOut(546, bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6"))


def test_ended_window_stops_before_funding() -> None:
    entry = _entry(Terms(amount=1000, cap=100, height=(None, 900)), block=1)
    orchestrator, wallet, node = _orchestrator(StubIndex(entry, height=900))

    with pytest.raises(Ended) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert str(excinfo.value) == "rune ABCD mint ended on block 900"
    assert excinfo.value.stage is MintStage.ELIGIBLE
    assert node.funded == []
    assert node.signed == []
    assert node.broadcasted == []
    assert wallet.lock_calls == 0


def test_not_started_and_cap_reached() -> None:
    orchestrator, _, _ = _orchestrator(StubIndex(_entry(Terms(amount=1, cap=10, offset=(200, None))), height=840100))
    with pytest.raises(NotStarted, match="rune ABCD not mintable until 840200"):
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    orchestrator, _, _ = _orchestrator(StubIndex(_entry(Terms(amount=1, cap=10), mints=10)))
    with pytest.raises(CapReached, match="rune ABCD limited to 10 mints"):
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))


def test_forged_funding_is_fatal_and_never_broadcast() -> None:
    node = StubNode(forge=True)
    orchestrator, _, _ = _orchestrator(StubIndex(_entry()), node=node)

    with pytest.raises(EncodingMismatch) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert excinfo.value.expected == Runestone(mint=ABCD_ID)
    assert excinfo.value.actual == Runestone(mint=RuneId(1, 1))
    assert len(node.signed) == 1
    assert node.broadcasted == []


def test_index_without_runes() -> None:
    orchestrator, _, node = _orchestrator(StubIndex(_entry(), enabled=False))

    with pytest.raises(IndexNotEnabled) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert excinfo.value.stage is MintStage.INDEX_CHECKED
    assert node.funded == []


def test_unknown_rune() -> None:
    orchestrator, _, _ = _orchestrator(StubIndex(None))

    with pytest.raises(TokenNotFound, match="rune ABCD has not been etched") as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))
    assert excinfo.value.stage is MintStage.ELIGIBLE


def test_destination_on_wrong_network() -> None:
    orchestrator, _, node = _orchestrator(StubIndex(_entry()))

    with pytest.raises(NetworkMismatch) as excinfo:
        orchestrator.mint(
            MintRequest(
                fee_rate=FeeRate(5),
                rune=ABCD,
                destination="tb1qrp33g0q5c5txsp9arysrx4k6zdkfs4nce4xj0gdcccefvpysxf3q0sl5k7",
            )
        )

    assert excinfo.value.stage is MintStage.SKELETON_BUILT
    assert node.funded == []


def test_postage_at_dust_is_rejected() -> None:
    orchestrator, wallet, node = _orchestrator(StubIndex(_entry()))

    with pytest.raises(BelowDustLimit, match="330sat") as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD, postage=330))

    assert excinfo.value.stage is MintStage.SKELETON_BUILT
    assert wallet.lock_calls == 0
    assert node.funded == []


def test_failed_funding_releases_locked_outputs() -> None:
    locked = [OutPoint("bb" * 32, 0), OutPoint("cc" * 32, 3)]
    wallet = StubWallet(locked)
    node = StubNode(fund_error=FundingFailed("not enough cardinal utxos"))
    orchestrator, _, _ = _orchestrator(StubIndex(_entry()), wallet=wallet, node=node)

    with pytest.raises(FundingFailed) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert excinfo.value.stage is MintStage.FUNDED
    assert wallet.released == locked
    assert node.signed == []


def test_prepare_stops_after_funding() -> None:
    orchestrator, _, node = _orchestrator(StubIndex(_entry()))

    prepared = orchestrator.prepare(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert isinstance(prepared, PreparedMint)
    assert prepared.pile == Pile(1000, 0, "$")
    assert prepared.transaction.outputs[0].script_pubkey == encipher_mint(ABCD_ID)[1]
    assert prepared.to_dict()["unsigned_transaction"] == prepared.transaction.to_hex()
    assert node.signed == []
    assert node.broadcasted == []


def test_request_from_dict_converts_btc_postage() -> None:
    request = MintRequest.from_dict(
        {"fee_rate": 5, "rune": "UNCOMMON.GOODS", "postage": 0.0001, "destination": "bc1qexample"}
    )

    assert request == MintRequest(
        fee_rate=FeeRate(5),
        rune=SpacedRune.from_str("UNCOMMON•GOODS"),
        postage=10_000,
        destination="bc1qexample",
    )
    assert MintRequest.from_dict({"fee_rate": "1.5", "rune": "ABCD"}).postage is None


@pytest.mark.parametrize("payload", [{"rune": "ABCD"}, {"fee_rate": 5}, {"fee_rate": 0, "rune": "ABCD"}])
def test_request_from_dict_rejects_invalid(payload) -> None:
    with pytest.raises(ValueError):
        MintRequest.from_dict(payload)


def test_from_context_waits_for_sync(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[str] = []
    monkeypatch.setattr(OrdServerIndex, "wait_for_sync", lambda self: calls.append(self.server_url) or 1)

    orchestrator = MintOrchestrator.from_context(
        MintContext(wallet="minter", server_url="http://ord.local:8080", target_postage=600),
        RPCConfig(user="u", password="p"),
    )

    assert calls == ["http://ord.local:8080"]
    assert isinstance(orchestrator.index, OrdServerIndex)
    assert isinstance(orchestrator.wallet, NodeWallet)
    assert orchestrator.wallet.name == "minter"
    assert orchestrator.index.rpc.wallet == "minter"
    assert orchestrator.target_postage == 600


def test_from_context_can_skip_sync(monkeypatch: pytest.MonkeyPatch) -> None:
    def fail(self):
        raise AssertionError("should not wait for sync")

    monkeypatch.setattr(OrdServerIndex, "wait_for_sync", fail)

    orchestrator = MintOrchestrator.from_context(MintContext(no_sync=True), RPCConfig(user="u", password="p"))
    assert orchestrator.wallet.name == "ord"


def test_invalid_destination_fails_the_run() -> None:
    orchestrator, wallet, node = _orchestrator(StubIndex(_entry()))

    with pytest.raises(AddressError) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD, destination="notanaddress"))

    assert excinfo.value.stage is MintStage.SKELETON_BUILT
    assert wallet.lock_calls == 0
    assert node.funded == []


def test_index_errors_carry_the_stage() -> None:
    class BrokenIndex(StubIndex):
        def lookup(self, spaced_rune):
            raise IndexClientError("ord server returned HTTP 500 for /rune/ABCD", status_code=500)

    orchestrator, _, _ = _orchestrator(BrokenIndex(_entry()))

    with pytest.raises(IndexClientError) as excinfo:
        orchestrator.prepare(MintRequest(fee_rate=FeeRate(5), rune=ABCD))
    assert excinfo.value.stage is MintStage.ELIGIBLE


def test_unexpected_funding_error_releases_locked_outputs() -> None:
    locked = [OutPoint("bb" * 32, 0)]
    wallet = StubWallet(locked)
    node = StubNode(fund_error=KeyError("hex"))
    orchestrator, _, _ = _orchestrator(StubIndex(_entry()), wallet=wallet, node=node)

    with pytest.raises(KeyError) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert excinfo.value.stage is MintStage.FUNDED
    assert wallet.released == locked


def test_release_failure_keeps_the_funding_error(caplog: pytest.LogCaptureFixture) -> None:
    class StuckWallet(StubWallet):
        def release_outputs(self, outpoints):
            raise WalletError("failed to release locked outputs")

    wallet = StuckWallet([OutPoint("bb" * 32, 0)])
    node = StubNode(fund_error=FundingFailed("not enough cardinal utxos"))
    orchestrator, _, _ = _orchestrator(StubIndex(_entry()), wallet=wallet, node=node)

    with caplog.at_level(logging.ERROR, logger="runemint.mint"):
        with pytest.raises(FundingFailed, match="not enough cardinal utxos"):
            orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert "Could not release 1 locked outputs" in caplog.text


def test_encoding_mismatch_fails_the_run_before_broadcast() -> None:
    orchestrator, _, node = _orchestrator(StubIndex(_entry()), node=StubNode(forge=True))

    with pytest.raises(EncodingMismatch) as excinfo:
        orchestrator.mint(MintRequest(fee_rate=FeeRate(5), rune=ABCD))

    assert excinfo.value.stage is MintStage.BROADCAST
    assert node.broadcasted == []


class RecordingWallet(StubWallet):
    def __init__(self, events: list[str]) -> None:
        super().__init__()
        self.name = "concurrent-mints"
        self.events = events

    def lock_non_cardinal_outputs(self):
        self.events.append("lock")
        return super().lock_non_cardinal_outputs()


class BlockingNode(StubNode):
    def __init__(self, events: list[str]) -> None:
        super().__init__()
        self.events = events
        self.entered = threading.Event()
        self.proceed = threading.Event()

    def fund(self, transaction, fee_rate):
        self.events.append("fund-start")
        self.entered.set()
        assert self.proceed.wait(5)
        funded = super().fund(transaction, fee_rate)
        self.events.append("fund-end")
        return funded


def test_concurrent_mints_on_one_wallet_serialize_locking_and_funding() -> None:
    events: list[str] = []
    node = BlockingNode(events)
    orchestrators = [
        MintOrchestrator(StubIndex(_entry()), RecordingWallet(events), node, node, node) for _ in range(2)
    ]
    request = MintRequest(fee_rate=FeeRate(5), rune=ABCD)
    results: list[MintResult] = []

    def run(orchestrator: MintOrchestrator) -> None:
        results.append(orchestrator.mint(request))

    first = threading.Thread(target=run, args=(orchestrators[0],))
    first.start()
    assert node.entered.wait(5)

    second = threading.Thread(target=run, args=(orchestrators[1],))
    second.start()
    second.join(0.2)
    assert events == ["lock", "fund-start"]

    node.proceed.set()
    first.join(5)
    second.join(5)

    assert events == ["lock", "fund-start", "fund-end", "lock", "fund-start", "fund-end"]
    assert len(results) == 2
