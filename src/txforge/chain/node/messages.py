"""Node protocol messages and framing.

Every message is a CBOR array prefixed by its length as a big-endian
uint32. Requests:

- ``[0, tx_bytes]`` SubmitTx
- ``[1, tx_bytes]`` EvaluateTx
- ``[2, tx_hash]`` QueryTx

Responses:

- ``[0, tx_hash]`` Accepted
- ``[1, code, reason]`` Rejected
- ``[2, [[tag, index, mem, steps], ...]]`` EvaluationResult
- ``[3, [[tag, index, reason], ...]]`` EvaluationFailure
- ``[4, status, block_height | null, reason?]`` TxStatus
- ``[5, message]`` Error
"""

from __future__ import annotations

import enum
import struct
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from txforge.ledger import codec
from txforge.ledger.primitives import ExecutionUnits, RedeemerKey, RedeemerTag

if TYPE_CHECKING:
    import asyncio

# Upper bound on an incoming frame; anything larger is treated as corruption
MAX_FRAME_SIZE = 4 * 1024 * 1024

_LENGTH = struct.Struct(">I")


class RequestKind(enum.IntEnum):
    SUBMIT_TX = 0
    EVALUATE_TX = 1
    QUERY_TX = 2


class ResponseKind(enum.IntEnum):
    ACCEPTED = 0
    REJECTED = 1
    EVALUATION_RESULT = 2
    EVALUATION_FAILURE = 3
    TX_STATUS = 4
    ERROR = 5


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------


def encode_frame(message: Any) -> bytes:
    """Serialize ``message`` and prefix it with its length."""
    payload = codec.dumps(message)
    return _LENGTH.pack(len(payload)) + payload


async def read_frame(reader: asyncio.StreamReader) -> Any:
    """Read one length-prefixed frame and decode it.

    Raises:
        asyncio.IncompleteReadError: If the peer closes mid-frame.
        ValueError: If the frame is oversized or not valid CBOR.
    """
    header = await reader.readexactly(_LENGTH.size)
    (length,) = _LENGTH.unpack(header)
    if length > MAX_FRAME_SIZE:
        msg = f"Frame of {length} bytes exceeds the {MAX_FRAME_SIZE} byte limit"
        raise ValueError(msg)
    return codec.loads(await reader.readexactly(length))


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Accepted:
    tx_hash: bytes


@dataclass(frozen=True)
class Rejected:
    code: int
    reason: str


@dataclass(frozen=True)
class EvaluationResult:
    units: dict[RedeemerKey, ExecutionUnits] = field(default_factory=dict)


@dataclass(frozen=True)
class EvaluationFailure:
    failures: tuple[tuple[RedeemerKey, str], ...] = ()


@dataclass(frozen=True)
class TxStatusReply:
    status: str
    block_height: int | None = None
    reason: str = ""


@dataclass(frozen=True)
class ErrorReply:
    message: str


Response = Accepted | Rejected | EvaluationResult | EvaluationFailure | TxStatusReply | ErrorReply


def parse_response(item: Any) -> Response:
    """Decode a response array into its typed form.

    Raises:
        ValueError: If the array does not match any known response.
    """
    if not isinstance(item, list) or not item:
        msg = f"Malformed node response: {item!r}"
        raise ValueError(msg)
    try:
        kind = ResponseKind(item[0])
        match kind:
            case ResponseKind.ACCEPTED:
                return Accepted(bytes(item[1]))
            case ResponseKind.REJECTED:
                return Rejected(int(item[1]), str(item[2]))
            case ResponseKind.EVALUATION_RESULT:
                return EvaluationResult(
                    {
                        RedeemerKey(RedeemerTag(tag), index): ExecutionUnits(mem, steps)
                        for tag, index, mem, steps in item[1]
                    }
                )
            case ResponseKind.EVALUATION_FAILURE:
                return EvaluationFailure(
                    tuple(
                        (RedeemerKey(RedeemerTag(tag), index), str(reason))
                        for tag, index, reason in item[1]
                    )
                )
            case ResponseKind.TX_STATUS:
                height = item[2] if len(item) > 2 else None
                reason = item[3] if len(item) > 3 and item[3] is not None else ""
                return TxStatusReply(str(item[1]), height, str(reason))
            case ResponseKind.ERROR:
                return ErrorReply(str(item[1]))
    except (IndexError, TypeError, ValueError) as exc:
        msg = f"Malformed node response: {item!r}"
        raise ValueError(msg) from exc
    msg = f"Unhandled node response kind: {item[0]!r}"
    raise ValueError(msg)
