"""Submission lifecycle — states and the per-transaction record.

Lifecycle: PENDING → SUBMITTED → CONFIRMED | REJECTED | TIMED_OUT
(PENDING → REJECTED when the ledger refuses the submit call itself or the
transport retry budget runs out.) TIMED_OUT only means the outcome is
unknown; polling it again moves it on to CONFIRMED or REJECTED.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from txforge.errors.chain_errors import ConfirmationTimedOut, TransactionRejected

# Rejection reason recorded when every submit attempt hit a transport fault
TRANSPORT_EXHAUSTED = "TransportExhausted"


class SubmissionState(enum.StrEnum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        """CONFIRMED, REJECTED and TIMED_OUT end the lifecycle."""
        return self in (SubmissionState.CONFIRMED, SubmissionState.REJECTED, SubmissionState.TIMED_OUT)

    @property
    def awaits_confirmation(self) -> bool:
        """SUBMITTED and TIMED_OUT records can still be confirmed."""
        return self in (SubmissionState.SUBMITTED, SubmissionState.TIMED_OUT)


@dataclass
class SubmissionRecord:
    """What the client knows about one signed transaction.

    Attributes:
        tx_hash: Transaction hash (hex).
        state: Current lifecycle state.
        retries: Submit attempts made after the first one.
        last_error: Most recent fault seen while submitting or polling.
        reason: Rejection reason once ``state`` is REJECTED.
        block_height: Height of the including block once CONFIRMED.
    """

    tx_hash: str
    state: SubmissionState = SubmissionState.PENDING
    retries: int = 0
    last_error: str | None = None
    reason: str | None = None
    block_height: int | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def mark_submitted(self) -> None:
        self.state = SubmissionState.SUBMITTED

    def mark_confirmed(self, block_height: int | None) -> None:
        self.state = SubmissionState.CONFIRMED
        self.block_height = block_height

    def mark_rejected(self, reason: str, detail: str | None = None) -> None:
        self.state = SubmissionState.REJECTED
        self.reason = reason
        if detail:
            self.last_error = detail

    def mark_timed_out(self) -> None:
        self.state = SubmissionState.TIMED_OUT

    def raise_for_state(self) -> None:
        """Raise if the record ended badly.

        Raises:
            TransactionRejected: If the state is REJECTED.
            ConfirmationTimedOut: If the state is TIMED_OUT (outcome unknown).
        """
        if self.state is SubmissionState.REJECTED:
            raise TransactionRejected(self.reason or "Rejected", detail=self.last_error or "")
        if self.state is SubmissionState.TIMED_OUT:
            raise ConfirmationTimedOut(self.tx_hash)
