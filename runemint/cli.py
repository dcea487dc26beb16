"""Command-line interface for minting runes through Bitcoin Core and ord.

The CLI is a thin layer over :class:`~runemint.mint.MintOrchestrator`: it
turns flags into a :class:`~runemint.mint.MintRequest`, loads node and ord
server settings and prints the result as JSON.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Any, Sequence

from .amount import parse_amount
from .config import ConfigurationError, load_mint_context, load_rpc_config, set_default_config_path
from .errors import EligibilityError, IndexNotEnabled, MintFlowError
from .fees import FeeRate
from .index import IndexClientError, OrdServerIndex
from .mint import MintOrchestrator, MintRequest
from .rpc_client import BitcoinRPCClient, RPCError, RPCTransportError
from .runes import Runestone, SpacedRune
from .transaction import Transaction
from .wallet import WalletError

logger = logging.getLogger(__name__)

COMPACT_JSON_SEPARATORS = (",", ":")


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def _parse_fee_rate(raw: str) -> FeeRate:
    try:
        return FeeRate.parse(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parse_rune(raw: str) -> SpacedRune:
    try:
        return SpacedRune.from_str(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _parse_postage(raw: str) -> int:
    try:
        return parse_amount(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(str(exc)) from exc


def _add_connection_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--wallet", help="Bitcoin Core wallet to mint from (default: ord)")
    parser.add_argument("--server-url", help="ord server URL (default: http://127.0.0.1:80)")
    parser.add_argument(
        "--no-sync",
        action="store_true",
        default=None,
        help="Do not wait for the ord server to catch up with the node",
    )
    parser.add_argument("--rpc-url", help="Override RPC endpoint URL")
    parser.add_argument("--rpc-host", help="Override RPC host")
    parser.add_argument("--rpc-port", type=int, help="Override RPC port")
    parser.add_argument("--rpc-user", help="Override RPC username")
    parser.add_argument("--rpc-password", help="Override RPC password")
    parser.add_argument("--rpc-cookie-file", help="Read RPC credentials from a bitcoind .cookie file")


def _add_mint_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--fee-rate",
        required=True,
        type=_parse_fee_rate,
        help="Fee rate in sat/vB used to fund the mint transaction",
    )
    parser.add_argument(
        "--rune",
        required=True,
        type=_parse_rune,
        help="Rune to mint, optionally with spacers (e.g. UNCOMMON.GOODS or UNCOMMON•GOODS)",
    )
    parser.add_argument(
        "--postage",
        type=_parse_postage,
        help="Amount of postage to include in the mint output (e.g. 10000sat, 0.0001btc)",
    )
    parser.add_argument(
        "--destination",
        help="Address to receive the minted runes (default: a new wallet change address)",
    )
    _add_connection_args(parser)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Mint runes through Bitcoin Core and an ord server index")
    parser.add_argument("--config", help="Path to a YAML config file (default: ~/.runemint.yaml)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    mint_parser = subparsers.add_parser("mint", help="mint a rune and broadcast the transaction")
    _add_mint_args(mint_parser)

    prepare_parser = subparsers.add_parser(
        "prepare", help="build and fund a mint transaction without signing or broadcasting it"
    )
    _add_mint_args(prepare_parser)

    check_parser = subparsers.add_parser("check", help="report whether a rune can be minted at the current height")
    check_parser.add_argument("--rune", required=True, type=_parse_rune, help="Rune to check")
    _add_connection_args(check_parser)

    decode_parser = subparsers.add_parser("decode", help="decipher the runestone carried by a raw transaction")
    decode_parser.add_argument("raw_tx", help="Raw transaction hex, or - to read it from stdin")

    return parser


def _rpc_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "endpoint": args.rpc_url,
        "host": args.rpc_host,
        "port": args.rpc_port,
        "user": args.rpc_user,
        "password": args.rpc_password,
        "cookie_file": args.rpc_cookie_file,
    }


def _mint_overrides(args: argparse.Namespace) -> dict[str, Any]:
    return {
        "wallet": args.wallet,
        "server_url": args.server_url,
        "no_sync": args.no_sync,
    }


def _build_orchestrator(args: argparse.Namespace) -> MintOrchestrator:
    context = load_mint_context(overrides=_mint_overrides(args))
    rpc_config = load_rpc_config(overrides=_rpc_overrides(args))
    return MintOrchestrator.from_context(context, rpc_config)


def _request_from_args(args: argparse.Namespace) -> MintRequest:
    return MintRequest(
        fee_rate=args.fee_rate,
        rune=args.rune,
        postage=args.postage,
        destination=args.destination,
    )


def cmd_mint(args: argparse.Namespace) -> None:
    orchestrator = _build_orchestrator(args)
    result = orchestrator.mint(_request_from_args(args))
    print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))


def cmd_prepare(args: argparse.Namespace) -> None:
    orchestrator = _build_orchestrator(args)
    prepared = orchestrator.prepare(_request_from_args(args))
    print(json.dumps(prepared.to_dict(), indent=2, ensure_ascii=False))


def cmd_check(args: argparse.Namespace) -> None:
    context = load_mint_context(overrides=_mint_overrides(args))
    rpc = BitcoinRPCClient(load_rpc_config(overrides=_rpc_overrides(args)))
    rpc.set_wallet(context.wallet)
    index = OrdServerIndex(context.server_url, rpc)
    if not context.no_sync:
        index.wait_for_sync()
    if not index.is_rune_indexing_enabled():
        raise IndexNotEnabled()

    height = index.current_chain_height()
    found = index.lookup(args.rune)
    if found is None:
        raise CLIError(f"rune {args.rune} has not been etched")
    rune_id, entry = found

    report: dict[str, Any] = {
        "rune": str(entry.spaced_rune),
        "id": str(rune_id),
        "height": height,
        "mints": entry.mints,
        "start": entry.start(),
        "end": entry.end(),
    }
    try:
        amount = entry.mintable(height)
    except EligibilityError as exc:
        report.update(mintable=False, reason=exc.reason())
    else:
        pile = entry.pile(amount)
        report.update(mintable=True, pile=pile.to_dict(), display=str(pile))
    print(json.dumps(report, indent=2, ensure_ascii=False))


def cmd_decode(args: argparse.Namespace) -> None:
    raw = sys.stdin.read() if args.raw_tx == "-" else args.raw_tx
    transaction = Transaction.from_hex(raw.strip())
    artifact = Runestone.decipher(transaction)
    payload = {"txid": transaction.txid, "runestone": artifact.to_dict() if artifact is not None else None}
    print(json.dumps(payload, separators=COMPACT_JSON_SEPARATORS, ensure_ascii=False))


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    set_default_config_path(args.config)
    try:
        if args.command == "mint":
            cmd_mint(args)
        elif args.command == "prepare":
            cmd_prepare(args)
        elif args.command == "check":
            cmd_check(args)
        elif args.command == "decode":
            cmd_decode(args)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except KeyboardInterrupt:  # pragma: no cover - interactive use
        logger.info("Interrupted by user")
    except (
        CLIError,
        ConfigurationError,
        RPCError,
        RPCTransportError,
        IndexClientError,
        MintFlowError,
        WalletError,
        ValueError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
