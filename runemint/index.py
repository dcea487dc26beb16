"""Access to rune state through an ``ord server`` index.

The index answers three questions for the mint flow: whether runes are
indexed at all, what the current entry of a rune looks like, and which wallet
outputs carry inscriptions or runes. Chain height is read from the node,
since that is the tip eligibility has to be judged against.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict

import requests
from requests import RequestException

from .errors import IndexNotSynced
from .runes import RuneEntry, RuneId, SpacedRune
from .transaction import OutPoint

logger = logging.getLogger(__name__)

INDEX_TIMEOUT_SECONDS = 30
SYNC_ATTEMPTS = 20
SYNC_INTERVAL_SECONDS = 0.05


class IndexClientError(RuntimeError):
    """Raised when the ord server is unreachable or answers unexpectedly."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RuneIndex:
    """Interface for the rune index consulted by the mint flow."""

    def is_rune_indexing_enabled(self) -> bool:
        raise NotImplementedError

    def lookup(self, spaced_rune: SpacedRune) -> tuple[RuneId, RuneEntry] | None:
        raise NotImplementedError

    def current_chain_height(self) -> int:
        raise NotImplementedError

    def block_count(self) -> int:
        raise NotImplementedError

    def output_info(self, outpoint: OutPoint) -> Dict[str, Any]:
        raise NotImplementedError


class OrdServerIndex(RuneIndex):
    """Query an ``ord server`` JSON API, using the node for the chain tip."""

    def __init__(self, server_url: str, rpc, session: requests.Session | None = None) -> None:
        self.server_url = server_url.rstrip("/")
        self.rpc = rpc
        self._session = session or requests.Session()

    def _get(self, path: str) -> requests.Response | None:
        url = f"{self.server_url}{path}"
        logger.debug("ord server GET %s", url)
        try:
            response = self._session.get(
                url,
                headers={"Accept": "application/json"},
                timeout=INDEX_TIMEOUT_SECONDS,
            )
        except RequestException as exc:
            logger.error(
                "ord server connection failed: %s",
                exc,
                exc_info=logger.isEnabledFor(logging.DEBUG),
            )
            raise IndexClientError(
                f"Could not reach ord server at {self.server_url}; check --server-url and that `ord server` is running."
            ) from exc
        if response.status_code == 404:
            return None
        if not response.ok:
            logger.error("ord server HTTP error %s from %s: %s", response.status_code, url, response.text)
            raise IndexClientError(
                f"ord server returned HTTP {response.status_code} for {path}",
                status_code=response.status_code,
            )
        return response

    def _get_json(self, path: str) -> Any:
        response = self._get(path)
        if response is None:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.debug("ord server JSON parse error: %s", response.text, exc_info=True)
            raise IndexClientError(f"ord server returned malformed JSON for {path}") from exc

    def is_rune_indexing_enabled(self) -> bool:
        status = self._get_json("/status")
        if not isinstance(status, dict):
            raise IndexClientError("ord server /status did not return a JSON object")
        return bool(status.get("rune_index"))

    def lookup(self, spaced_rune: SpacedRune) -> tuple[RuneId, RuneEntry] | None:
        payload = self._get_json(f"/rune/{spaced_rune.rune}")
        if payload is None:
            return None
        try:
            rune_id = RuneId.from_str(str(payload["id"]))
            entry = RuneEntry.from_json(payload["entry"])
        except (KeyError, TypeError, ValueError) as exc:
            raise IndexClientError(f"ord server returned an unexpected rune payload for {spaced_rune}") from exc
        logger.debug("Rune %s resolved to %s (mints=%s)", spaced_rune, rune_id, entry.mints)
        return rune_id, entry

    def current_chain_height(self) -> int:
        return self.rpc.getblockcount()

    def block_count(self) -> int:
        response = self._get("/blockcount")
        if response is None:
            raise IndexClientError("ord server does not expose /blockcount")
        try:
            return int(response.text.strip())
        except ValueError as exc:
            raise IndexClientError(f"ord server returned a non-numeric block count: {response.text!r}") from exc

    def output_info(self, outpoint: OutPoint) -> Dict[str, Any]:
        payload = self._get_json(f"/output/{outpoint}")
        if payload is None:
            raise IndexClientError(f"output in wallet but not in ord server: {outpoint}", status_code=404)
        if not isinstance(payload, dict):
            raise IndexClientError(f"ord server /output/{outpoint} did not return a JSON object")
        return payload

    def wait_for_sync(
        self,
        attempts: int = SYNC_ATTEMPTS,
        interval: float = SYNC_INTERVAL_SECONDS,
    ) -> int:
        """Block until the index has caught up with the node's chain tip.

        Returns the index block count. Raises :class:`IndexNotSynced` after
        *attempts* polls.
        """

        chain_height = self.current_chain_height()
        index_height = None
        for attempt in range(attempts):
            # ord's /blockcount is the number of indexed blocks, one past the height
            index_height = self.block_count()
            if index_height > chain_height:
                logger.debug("ord server synced at %s blocks after %d polls", index_height, attempt + 1)
                return index_height
            time.sleep(interval)
        raise IndexNotSynced(attempts, index_height, chain_height)


def output_is_cardinal(info: Dict[str, Any]) -> bool:
    """Return ``True`` when an indexed ``/output`` payload carries no inscriptions or runes.

    Outputs the index has not processed yet cannot be vouched for and count as
    non-cardinal.
    """

    if not info.get("indexed"):
        return False
    return not info.get("inscriptions") and not info.get("runes")
