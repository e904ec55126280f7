"""TxForgeError — base exception class for all txforge errors."""

from __future__ import annotations


class TxForgeError(Exception):
    """Base error for all transaction pipeline operations.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code string.
    """

    def __init__(self, message: str, *, code: str = "txforge-error") -> None:
        super().__init__(message)
        self.message = message
        self.code = code
