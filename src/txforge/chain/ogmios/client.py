"""JSON-RPC websocket backend — submit, evaluate, query, UTxOs.

One persistent websocket carries every request. Each request gets a fresh
uuid; a single reader task routes responses to the waiting caller by id,
so concurrent requests share the socket without a lock. When the socket
drops, every request still waiting fails with :class:`TransportError` and
the next request reconnects.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import TYPE_CHECKING, Any

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from txforge.chain.backend import ChainBackend, ConfirmationStatus, TxStatus
from txforge.chain.ogmios.models import (
    SCRIPT_EXECUTION_FAILURE,
    Method,
    RpcRequest,
    RpcResponse,
    first_script_failure,
    parse_evaluation,
    parse_utxo,
    rejection_reason,
)
from txforge.errors.builder_errors import ScriptEvaluationError
from txforge.errors.chain_errors import TransactionRejected, TransportError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from txforge.config.settings import OgmiosConfig
    from txforge.ledger.address import Address
    from txforge.ledger.primitives import ExecutionUnits, RedeemerKey, UTxO

logger = logging.getLogger(__name__)


class OgmiosBackend(ChainBackend):
    """Backend speaking JSON-RPC 2.0 over a websocket.

    Usage::

        ogmios = OgmiosBackend(config.ogmios)
        await ogmios.connect()
        try:
            tx_hash = await ogmios.submit_transaction(signed.to_cbor())
        finally:
            await ogmios.close()
    """

    def __init__(self, config: OgmiosConfig) -> None:
        """Initialize the backend.

        Args:
            config: Websocket URL and per-request timeout.
        """
        self._config = config
        self._ws: ClientConnection | None = None
        self._reader: asyncio.Task[None] | None = None
        self._pending: dict[str, asyncio.Future[RpcResponse]] = {}

    @property
    def is_connected(self) -> bool:
        """Check if the websocket is open."""
        return self._ws is not None

    @property
    def pending_requests(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    async def connect(self) -> None:
        """Open the websocket and start the reader task."""
        if self._ws is not None:
            return
        try:
            ws = await connect(
                self._config.url,
                open_timeout=self._config.request_timeout,
                max_size=None,
            )
        except (OSError, WebSocketException, TimeoutError) as exc:
            msg = f"Cannot connect to {self._config.url}: {exc}"
            raise TransportError(msg) from exc
        if self._ws is not None:
            # Another caller connected while this one was waiting
            await ws.close()
            return
        self._ws = ws
        self._reader = asyncio.create_task(self._read_loop(ws))
        logger.info("Connected to %s", self._config.url)

    async def close(self) -> None:
        """Close the websocket; outstanding requests fail with TransportError."""
        ws, reader = self._ws, self._reader
        self._ws = None
        self._reader = None
        if ws is not None:
            await ws.close()
        if reader is not None:
            reader.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await reader
        self._fail_pending("connection closed by client")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction.

        Raises:
            TransactionRejected: If the ledger refuses the transaction.
            TransportError: On connection failures or timeouts.
        """
        response = await self._call(
            Method.SUBMIT_TRANSACTION,
            {"transaction": {"cbor": tx_cbor.hex()}},
        )
        if response.error is not None:
            raise TransactionRejected(
                rejection_reason(response.error.code),
                detail=response.error.message,
            )
        tx_id = response.result["transaction"]["id"]
        logger.info("Submitted %s", tx_id)
        return tx_id

    async def evaluate_transaction(self, tx_cbor: bytes) -> dict[RedeemerKey, ExecutionUnits]:
        """Evaluate every redeemer in a draft.

        Raises:
            ScriptEvaluationError: If a script fails or the draft cannot be evaluated.
            TransportError: On connection failures or timeouts.
        """
        response = await self._call(
            Method.EVALUATE_TRANSACTION,
            {"transaction": {"cbor": tx_cbor.hex()}},
        )
        if response.error is not None:
            error = response.error
            if error.code == SCRIPT_EXECUTION_FAILURE:
                index, reason = first_script_failure(error.data)
                raise ScriptEvaluationError(index, reason)
            raise ScriptEvaluationError(None, f"{rejection_reason(error.code)}: {error.message}")
        return parse_evaluation(response.result)

    async def query_transaction(self, tx_hash: str) -> ConfirmationStatus:
        """Ask whether ``tx_hash`` is on chain yet."""
        response = await self._call(Method.QUERY_TRANSACTION, {"transaction": {"id": tx_hash}})
        if response.error is not None:
            msg = f"Transaction query failed ({response.error.code}): {response.error.message}"
            raise TransportError(msg)
        result = response.result or {}
        return ConfirmationStatus(
            TxStatus.from_string(str(result.get("status", ""))),
            result.get("blockHeight"),
            str(result.get("reason", "")),
        )

    async def candidates_for(self, addresses: Sequence[Address]) -> list[UTxO]:
        """List unspent outputs at ``addresses`` from the ledger state."""
        response = await self._call(
            Method.QUERY_UTXO,
            {"addresses": [a.to_bech32() for a in addresses]},
        )
        if response.error is not None:
            msg = f"UTxO query failed ({response.error.code}): {response.error.message}"
            raise TransportError(msg)
        return sorted((parse_utxo(item) for item in response.result), key=lambda u: u.ref)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: dict[str, Any]) -> RpcResponse:
        """Send one request and wait for the response with the same id."""
        await self.connect()
        ws = self._ws
        if ws is None:
            msg = "Connection dropped before the request was sent"
            raise TransportError(msg)

        request = RpcRequest(method, params)
        future: asyncio.Future[RpcResponse] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future
        try:
            await ws.send(json.dumps(request.to_dict()))
            async with asyncio.timeout(self._config.request_timeout):
                return await future
        except TimeoutError as exc:
            msg = f"{method} timed out after {self._config.request_timeout}s"
            raise TransportError(msg) from exc
        except (ConnectionClosed, OSError) as exc:
            msg = f"{method} failed: {exc}"
            raise TransportError(msg) from exc
        finally:
            self._pending.pop(request.id, None)

    async def _read_loop(self, ws: ClientConnection) -> None:
        """Route every incoming message to the request it answers."""
        reason = "connection closed"
        try:
            async for message in ws:
                try:
                    response = RpcResponse.from_dict(json.loads(message))
                except (ValueError, AttributeError):
                    logger.warning("Ignoring malformed message from %s", self._config.url)
                    continue
                future = self._pending.pop(response.id, None) if response.id is not None else None
                if future is None:
                    logger.warning("Dropping response with unknown id %s", response.id)
                    continue
                if not future.done():
                    future.set_result(response)
        except ConnectionClosed as exc:
            reason = f"connection lost: {exc}"
        finally:
            if self._ws is ws:
                self._ws = None
                self._reader = None
            self._fail_pending(reason)
            logger.info("Disconnected from %s (%s)", self._config.url, reason)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(TransportError(reason))
