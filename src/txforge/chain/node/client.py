"""Node socket backend — length-prefixed CBOR request/response.

Each request opens its own connection (unix socket or TCP), writes one
frame, reads one frame and closes. Nothing is shared between concurrent
requests, so no lock is held across a round trip.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

from txforge.chain.backend import ChainBackend, ConfirmationStatus, TxStatus
from txforge.chain.node.messages import (
    Accepted,
    ErrorReply,
    EvaluationFailure,
    EvaluationResult,
    Rejected,
    RequestKind,
    TxStatusReply,
    encode_frame,
    parse_response,
    read_frame,
)
from txforge.errors.builder_errors import ScriptEvaluationError
from txforge.errors.chain_errors import TransactionRejected, TransportError

if TYPE_CHECKING:
    from txforge.chain.node.messages import Response
    from txforge.config.settings import NodeConfig
    from txforge.ledger.primitives import ExecutionUnits, RedeemerKey

logger = logging.getLogger(__name__)


class NodeBackend(ChainBackend):
    """Backend speaking the framed CBOR protocol to a local node.

    Usage::

        node = NodeBackend(config.node)
        tx_hash = await node.submit_transaction(signed.to_cbor())
    """

    def __init__(self, config: NodeConfig) -> None:
        """Initialize the node backend.

        Args:
            config: Node settings (socket path or host/port, timeout).
        """
        self._config = config

    @property
    def endpoint(self) -> str:
        if self._config.socket_path:
            return f"unix:{self._config.socket_path}"
        return f"tcp:{self._config.host}:{self._config.port}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction.

        Raises:
            TransactionRejected: If the node refuses the transaction.
            TransportError: On connection or protocol failures.
        """
        response = await self._request([int(RequestKind.SUBMIT_TX), tx_cbor])
        match response:
            case Accepted(tx_hash=tx_hash):
                logger.info("Node accepted %s", tx_hash.hex())
                return tx_hash.hex()
            case Rejected(code=code, reason=reason):
                raise TransactionRejected(reason, detail=f"code {code}")
        raise self._unexpected(response, "submit")

    async def evaluate_transaction(self, tx_cbor: bytes) -> dict[RedeemerKey, ExecutionUnits]:
        """Evaluate the redeemers of a draft.

        Raises:
            ScriptEvaluationError: If a script fails or the draft is refused.
            TransportError: On connection or protocol failures.
        """
        response = await self._request([int(RequestKind.EVALUATE_TX), tx_cbor])
        match response:
            case EvaluationResult(units=units):
                return dict(units)
            case EvaluationFailure(failures=failures) if failures:
                key, reason = failures[0]
                raise ScriptEvaluationError(str(key), reason)
            case Rejected(reason=reason):
                raise ScriptEvaluationError(None, reason)
        raise self._unexpected(response, "evaluate")

    async def query_transaction(self, tx_hash: str) -> ConfirmationStatus:
        """Ask the node whether ``tx_hash`` has been included in a block."""
        response = await self._request([int(RequestKind.QUERY_TX), bytes.fromhex(tx_hash)])
        match response:
            case TxStatusReply(status=status, block_height=block_height, reason=reason):
                return ConfirmationStatus(TxStatus.from_string(status), block_height, reason)
        raise self._unexpected(response, "query")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self._config.socket_path:
            return await asyncio.open_unix_connection(self._config.socket_path)
        return await asyncio.open_connection(self._config.host, self._config.port)

    async def _request(self, message: list[Any]) -> Response:
        """One connection, one request frame, one response frame."""
        try:
            async with asyncio.timeout(self._config.timeout):
                reader, writer = await self._open()
                try:
                    writer.write(encode_frame(message))
                    await writer.drain()
                    item = await read_frame(reader)
                finally:
                    writer.close()
                    with contextlib.suppress(OSError):
                        await writer.wait_closed()
        except TimeoutError as exc:
            msg = f"Node request to {self.endpoint} timed out"
            raise TransportError(msg) from exc
        except (OSError, asyncio.IncompleteReadError) as exc:
            msg = f"Node connection to {self.endpoint} failed: {exc}"
            raise TransportError(msg) from exc
        except ValueError as exc:
            msg = f"Node sent an unreadable frame: {exc}"
            raise TransportError(msg) from exc

        try:
            return parse_response(item)
        except ValueError as exc:
            raise TransportError(str(exc)) from exc

    @staticmethod
    def _unexpected(response: Response, operation: str) -> TransportError:
        if isinstance(response, ErrorReply):
            msg = f"Node {operation} failed: {response.message}"
        else:
            msg = f"Unexpected node response to {operation}: {type(response).__name__}"
        return TransportError(msg)
