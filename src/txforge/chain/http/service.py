"""REST backend — submit, evaluate, confirmation and UTxO queries over HTTP.

Provides an async HTTP client for a Blockfrost-compatible v0 API:
- POST /tx/submit — Submit a signed transaction (raw CBOR body)
- POST /utils/txs/evaluate — Evaluate redeemers (hex CBOR body)
- GET /txs/{hash} — Confirmation status (404 while not yet in a block)
- GET /addresses/{address}/utxos — Unspent outputs, paginated
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from txforge.chain.backend import ChainBackend, ConfirmationStatus
from txforge.chain.http.models import first_failure, parse_evaluation, parse_utxo, rejection_from_message
from txforge.errors.builder_errors import ScriptEvaluationError
from txforge.errors.chain_errors import TransactionRejected, TransportError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from txforge.config.settings import HttpBackendConfig
    from txforge.ledger.address import Address
    from txforge.ledger.primitives import ExecutionUnits, RedeemerKey, UTxO

logger = logging.getLogger(__name__)

_CBOR = {"Content-Type": "application/cbor"}
_PAGE_SIZE = 100


class HttpBackend(ChainBackend):
    """Backend for a Blockfrost-style REST API.

    Usage::

        http = HttpBackend(config.http)
        await http.connect()
        try:
            tx_hash = await http.submit_transaction(signed.to_cbor())
        finally:
            await http.close()
    """

    def __init__(self, config: HttpBackendConfig) -> None:
        """Initialize the HTTP backend.

        Args:
            config: API base URL, project id and request timeout.
        """
        self._config = config
        self._client: httpx.AsyncClient | None = None

    async def connect(self) -> None:
        """Create the underlying HTTP client."""
        if self._client is not None:
            return
        headers: dict[str, str] = {"Accept": "application/json"}
        if self._config.project_id:
            headers["project_id"] = self._config.project_id

        self._client = httpx.AsyncClient(
            base_url=self._config.url.rstrip("/"),
            headers=headers,
            timeout=self._config.timeout,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @property
    def is_connected(self) -> bool:
        """Check if the HTTP client is active."""
        return self._client is not None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction.

        Raises:
            TransactionRejected: On a 400 response (ledger-level failure).
            TransportError: On network errors, throttling or server faults.
        """
        response = await self._send("POST", "/tx/submit", content=tx_cbor, headers=_CBOR)
        if response.status_code == 200:
            tx_hash = str(response.json())
            logger.info("Submitted %s", tx_hash)
            return tx_hash
        if response.status_code == 400:
            message = self._error_message(response)
            raise TransactionRejected(rejection_from_message(message), detail=message)
        raise self._status_error(response, "submit")

    async def evaluate_transaction(self, tx_cbor: bytes) -> dict[RedeemerKey, ExecutionUnits]:
        """Evaluate every redeemer in a draft.

        Raises:
            ScriptEvaluationError: If a script fails or the draft cannot be evaluated.
            TransportError: On network errors, throttling or server faults.
        """
        response = await self._send(
            "POST", "/utils/txs/evaluate", content=tx_cbor.hex(), headers=_CBOR
        )
        if response.status_code == 400:
            raise ScriptEvaluationError(None, self._error_message(response))
        if response.status_code != 200:
            raise self._status_error(response, "evaluate")

        result: dict[str, Any] = response.json().get("result", {})
        if "EvaluationResult" in result:
            return parse_evaluation(result["EvaluationResult"])
        if "EvaluationFailure" in result:
            index, reason = first_failure(result["EvaluationFailure"])
            raise ScriptEvaluationError(index, reason)
        msg = f"Unexpected evaluation response: {result!r}"
        raise TransportError(msg)

    async def query_transaction(self, tx_hash: str) -> ConfirmationStatus:
        """Report whether ``tx_hash`` is in a block; 404 means still pending."""
        response = await self._send("GET", f"/txs/{tx_hash}")
        if response.status_code == 404:
            return ConfirmationStatus.pending()
        if response.status_code != 200:
            raise self._status_error(response, "query")
        height = response.json().get("block_height")
        return ConfirmationStatus.confirmed(int(height) if height is not None else None)

    async def candidates_for(self, addresses: Sequence[Address]) -> list[UTxO]:
        """List unspent outputs at ``addresses``, following pagination."""
        utxos: list[UTxO] = []
        for address in addresses:
            page = 1
            while True:
                response = await self._send(
                    "GET",
                    f"/addresses/{address.to_bech32()}/utxos",
                    params={"page": page, "count": _PAGE_SIZE},
                )
                if response.status_code == 404:
                    break
                if response.status_code != 200:
                    raise self._status_error(response, "utxo query")
                items = response.json()
                utxos.extend(parse_utxo(item) for item in items)
                if len(items) < _PAGE_SIZE:
                    break
                page += 1
        return sorted(utxos, key=lambda u: u.ref)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _ensure_connected(self) -> httpx.AsyncClient:
        """Return the HTTP client, raising if not connected."""
        if self._client is None:
            msg = "HTTP backend not connected. Call connect() first."
            raise TransportError(msg)
        return self._client

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_connected()
        try:
            return await client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            msg = f"{method} {path} failed: {exc}"
            raise TransportError(msg) from exc

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text
        if isinstance(body, dict):
            return str(body.get("message", body.get("error", response.text)))
        return str(body)

    def _status_error(self, response: httpx.Response, operation: str) -> TransportError:
        """Build a TransportError from an unexpected status code."""
        status = response.status_code
        error_map = {
            402: "Daily request limit exceeded",
            403: "Authentication failed (check project_id)",
            418: "Client banned after exceeding the rate limit",
            425: "Mempool is full",
            429: "Rate limited",
        }
        message = error_map.get(
            status, f"HTTP {operation} failed ({status}): {self._error_message(response)}"
        )
        return TransportError(message)
