"""Typed JSON-RPC client for Bitcoin Core nodes.

The mint flow only needs a handful of wallet and chain calls; each helper maps
directly onto the node's RPC method and returns the parsed JSON result. No
consensus logic lives here; the client forwards requests and surfaces errors
clearly.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Dict, Optional

import requests
from requests import RequestException, Response

from .config import ConfigurationError, RPCConfig, load_rpc_config

logger = logging.getLogger(__name__)

RPC_TIMEOUT_SECONDS = 30


class RPCError(RuntimeError):
    """Raised when the node responds with an RPC error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message


class RPCTransportError(RuntimeError):
    """Raised when the RPC endpoint is unreachable or returns malformed data."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def format_rpc_hint(error_obj: dict[str, Any] | RPCError | None) -> str | None:
    """Return a human-friendly hint for common Bitcoin Core JSON-RPC errors."""

    if error_obj is None:
        return None

    code = None
    message = ""
    if isinstance(error_obj, RPCError):
        code = error_obj.code
        message = error_obj.message
    elif isinstance(error_obj, dict):
        code = error_obj.get("code")
        message = str(error_obj.get("message", ""))

    if code == -26 and "min relay fee not met" in message:
        return "The node rejected the transaction because the fee is below its minrelaytxfee policy. Retry with a higher --fee-rate."
    if code == -26 and "dust" in message:
        return "An output is below the node's dust threshold. Increase --postage."
    if code == -6 or "insufficient funds" in message.lower():
        return (
            "The wallet does not hold enough cardinal (inscription- and rune-free) outputs to pay for the mint. "
            "Send plain bitcoin to the wallet and retry."
        )
    if code == -13 or "wallet passphrase" in message.lower() or "wallet locked" in message.lower():
        return "The wallet is locked. Unlock it with walletpassphrase, then retry the command."
    if code in {-25, -27} or "missing inputs" in message.lower() or "already in block chain" in message.lower():
        return (
            "One of the funding inputs was spent by another transaction. Another mint from the same wallet may have "
            "raced this one; retry once it confirms."
        )
    if code == -18:
        return "The requested wallet is not loaded. Load it with `loadwallet` or pass --wallet."
    return None


class BitcoinRPCClient:
    """Typed JSON-RPC client for Bitcoin Core compatible nodes.

    Connection defaults can be overridden via ``BITCOIN_RPC_USER``,
    ``BITCOIN_RPC_PASSWORD``, ``BITCOIN_RPC_HOST``, ``BITCOIN_RPC_PORT`` and
    ``BITCOIN_RPC_WALLET`` (or their ``RUNEMINT_RPC_*`` spellings), or by the
    ``rpc`` section of ``~/.runemint.yaml``.
    """

    def __init__(self, config: RPCConfig, session: requests.Session | None = None) -> None:
        self.config = config
        self._session = session or requests.Session()
        self._base_url = config.base_url
        self._wallet = config.wallet

    @classmethod
    def from_env(cls) -> "BitcoinRPCClient":
        """Instantiate a client using environment variables or config file."""

        return cls(load_rpc_config())

    def call(self, method: str, params: Optional[list[Any]] = None) -> Any:
        """Perform a JSON-RPC request."""

        payload = {
            "jsonrpc": "1.0",
            "id": str(uuid.uuid4()),
            "method": method,
            "params": params or [],
        }
        logger.debug("RPC call %s params=%s", method, params)
        try:
            response = self._session.post(
                self._url,
                data=json.dumps(payload),
                headers={"content-type": "application/json"},
                auth=(self.config.user, self.config.password),
                timeout=RPC_TIMEOUT_SECONDS,
            )
        except RequestException as exc:
            logger.error(
                "RPC connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise RPCTransportError(
                "RPC connection failed. Ensure bitcoind is reachable, authentication is valid, "
                "and BITCOIN_RPC_* variables (or ~/.runemint.yaml) point to the right host and port."
            ) from exc

        # Bitcoin Core reports JSON-RPC errors with HTTP 500 and a JSON body;
        # prefer the structured error over the status code.
        try:
            result = response.json()
        except ValueError as exc:
            self._raise_for_status(response)
            logger.debug("RPC JSON parse error: %s", response.text, exc_info=True)
            raise RPCTransportError("RPC server returned malformed JSON") from exc
        if not isinstance(result, dict):
            raise RPCTransportError("RPC server returned a non-object JSON response")
        if result.get("error"):
            error = result["error"]
            raise RPCError(error.get("code", -1), error.get("message", "unknown"))
        self._raise_for_status(response)
        return result.get("result")

    def _raise_for_status(self, response: Response) -> None:
        if response.ok:
            return
        logger.error("RPC HTTP error %s from %s", response.status_code, response.url)
        if response.status_code == 401:
            raise RPCTransportError(
                "Unauthorized (401). Ensure BITCOIN_RPC_USER/BITCOIN_RPC_PASSWORD or the cookie file are valid.",
                status_code=response.status_code,
            )
        raise RPCTransportError(
            "RPC server returned an HTTP error; check the URL, wallet name, authentication, and BITCOIN_RPC_* settings.",
            status_code=response.status_code,
        )

    @property
    def _url(self) -> str:
        if self._wallet:
            return f"{self._base_url}/wallet/{self._wallet}"
        return self._base_url

    @property
    def wallet(self) -> str | None:
        return self._wallet

    def set_wallet(self, wallet: str | None) -> None:
        """Switch the RPC client to a different loaded wallet."""

        self._wallet = wallet

    # Convenience wrappers -------------------------------------------------

    def getblockchaininfo(self) -> Dict[str, Any]:
        return self.call("getblockchaininfo")

    def getblockcount(self) -> int:
        return int(self.call("getblockcount"))

    def decoderawtransaction(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("decoderawtransaction", [raw_tx])

    def listunspent(self, minconf: int = 0, maxconf: int = 9999999) -> list[Dict[str, Any]]:
        return self.call("listunspent", [minconf, maxconf])

    def listlockunspent(self) -> list[Dict[str, Any]]:
        return self.call("listlockunspent")

    def lockunspent(self, unlock: bool, outputs: list[Dict[str, Any]]) -> bool:
        return bool(self.call("lockunspent", [unlock, outputs]))

    def getrawchangeaddress(self, address_type: str | None = None) -> str:
        params: list[Any] = []
        if address_type is not None:
            params.append(address_type)
        return self.call("getrawchangeaddress", params)

    def fundrawtransaction(self, raw_tx: str, options: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        params: list[Any] = [raw_tx]
        if options is not None:
            params.append(options)
        return self.call("fundrawtransaction", params)

    def signrawtransactionwithwallet(self, raw_tx: str) -> Dict[str, Any]:
        return self.call("signrawtransactionwithwallet", [raw_tx])

    def sendrawtransaction(self, raw_tx: str) -> str:
        return self.call("sendrawtransaction", [raw_tx])


__all__ = [
    "BitcoinRPCClient",
    "ConfigurationError",
    "RPCConfig",
    "RPCError",
    "RPCTransportError",
    "format_rpc_hint",
]
