"""Chain backend capability — the interface every node connection implements.

A backend submits serialized transactions, evaluates redeemers and reports
confirmation status. Backends that can list unspent outputs also act as a
UTxO source for the balancer.
"""

from __future__ import annotations

import abc
import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, Self, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence

    from txforge.ledger.address import Address
    from txforge.ledger.primitives import ExecutionUnits, RedeemerKey, UTxO


class TxStatus(enum.StrEnum):
    """What a backend knows about a submitted transaction."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"

    @classmethod
    def from_string(cls, value: str) -> TxStatus:
        """Parse a status string, returning UNKNOWN for unrecognised values."""
        try:
            return cls(value.lower())
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class ConfirmationStatus:
    """Result of a confirmation query.

    Attributes:
        status: Current status.
        block_height: Height of the including block, once confirmed.
        reason: Rejection reason, if the backend reports one.
    """

    status: TxStatus = TxStatus.UNKNOWN
    block_height: int | None = None
    reason: str = ""

    @property
    def is_confirmed(self) -> bool:
        return self.status is TxStatus.CONFIRMED

    @classmethod
    def confirmed(cls, block_height: int | None = None) -> Self:
        return cls(TxStatus.CONFIRMED, block_height)

    @classmethod
    def pending(cls) -> Self:
        return cls(TxStatus.PENDING)


@runtime_checkable
class UtxoSource(Protocol):
    """Anything that can list spendable outputs at some addresses."""

    async def candidates_for(self, addresses: Sequence[Address]) -> list[UTxO]: ...


class ChainBackend(abc.ABC):
    """Abstract node connection.

    Usage::

        backend = create_backend(config)
        await backend.connect()
        try:
            tx_hash = await backend.submit_transaction(tx.to_cbor())
        finally:
            await backend.close()

    Implementations raise :class:`TransportError` for connectivity faults and
    :class:`TransactionRejected` / :class:`ScriptEvaluationError` for content
    the ledger refuses.
    """

    async def connect(self) -> None:
        """Open any long-lived resources."""

    async def close(self) -> None:
        """Release long-lived resources."""

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    @abc.abstractmethod
    async def submit_transaction(self, tx_cbor: bytes) -> str:
        """Submit a signed transaction and return its hash (hex)."""

    @abc.abstractmethod
    async def evaluate_transaction(self, tx_cbor: bytes) -> dict[RedeemerKey, ExecutionUnits]:
        """Evaluate every redeemer in a draft transaction."""

    @abc.abstractmethod
    async def query_transaction(self, tx_hash: str) -> ConfirmationStatus:
        """Report the confirmation status of a submitted transaction."""

    async def candidates_for(self, addresses: Sequence[Address]) -> list[UTxO]:
        """List unspent outputs at ``addresses``.

        Raises:
            NotImplementedError: If the backend cannot query UTxOs.
        """
        msg = f"{type(self).__name__} cannot query UTxOs"
        raise NotImplementedError(msg)
