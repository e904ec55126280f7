"""Backend and submission errors."""

from __future__ import annotations

from txforge.errors.forge_errors import TxForgeError


class TransportError(TxForgeError):
    """A backend could not be reached or the exchange broke off (retryable)."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="transport-error")


class TransactionRejected(TxForgeError):
    """The ledger refused the transaction; resubmitting the same bytes will not help.

    Attributes:
        reason: Rejection reason as reported by the backend (e.g. ``BadInputsUTxO``).
    """

    def __init__(self, reason: str, *, detail: str = "") -> None:
        message = f"transaction rejected: {reason}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, code="transaction-rejected")
        self.reason = reason
        self.detail = detail


class ConfirmationTimedOut(TxForgeError):
    """No confirmation was seen before the deadline; the outcome is unknown."""

    def __init__(self, tx_hash: str) -> None:
        super().__init__(
            f"no confirmation observed for {tx_hash} before the deadline (outcome unknown)",
            code="confirmation-timed-out",
        )
        self.tx_hash = tx_hash
