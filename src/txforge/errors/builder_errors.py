"""Transaction construction errors — intents, balancing, evaluation, signing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from txforge.errors.forge_errors import TxForgeError

if TYPE_CHECKING:
    from txforge.ledger.primitives import ExecutionUnits
    from txforge.ledger.value import Value


class InvalidIntent(TxForgeError):
    """An intent is malformed or conflicts with an earlier one."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code="invalid-intent")


class EmptyDraft(TxForgeError):
    """The intent list has nothing to spend, produce, certify or withdraw."""

    def __init__(
        self, message: str = "draft has no spend, output, certificate or withdrawal intents"
    ) -> None:
        super().__init__(message, code="empty-draft")


class InsufficientFunds(TxForgeError):
    """The candidate set was exhausted before every deficit was covered.

    Attributes:
        deficit: The value still missing when selection gave up.
    """

    def __init__(self, deficit: Value, message: str | None = None) -> None:
        super().__init__(message or f"insufficient funds, missing {deficit}", code="insufficient-funds")
        self.deficit = deficit


class BalancingDidNotConverge(TxForgeError):
    """Fee, selection and execution units kept moving for too many iterations."""

    def __init__(self, iterations: int) -> None:
        super().__init__(
            f"balancing did not reach a fixed point after {iterations} iterations",
            code="balancing-did-not-converge",
        )
        self.iterations = iterations


class TransactionTooLarge(TxForgeError):
    """The balanced transaction exceeds the protocol size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(
            f"transaction size ({size}) exceeds the max limit ({limit})",
            code="transaction-too-large",
        )
        self.size = size
        self.limit = limit


class ExecutionUnitsTooLarge(TxForgeError):
    """Summed script budgets exceed the per-transaction limit."""

    def __init__(self, units: ExecutionUnits, limit: ExecutionUnits) -> None:
        super().__init__(
            f"execution units {units} exceed the max limit {limit}",
            code="execution-units-too-large",
        )
        self.units = units
        self.limit = limit


class ScriptEvaluationError(TxForgeError):
    """A script failed (or could not be costed) during evaluation.

    Attributes:
        index: The redeemer the failure belongs to (``"spend:0"`` style), or
            ``None`` when the evaluator could not attribute it.
        reason: The evaluator's explanation, passed through untouched.
    """

    def __init__(self, index: str | None, reason: str) -> None:
        where = index if index is not None else "transaction"
        super().__init__(f"script evaluation failed for {where}: {reason}", code="script-evaluation-failed")
        self.index = index
        self.reason = reason


class MissingSigningKey(TxForgeError):
    """No signing key in the keyring matches a required signer."""

    def __init__(self, key_hash: bytes) -> None:
        super().__init__(f"no signing key for key hash {key_hash.hex()}", code="missing-signing-key")
        self.key_hash = key_hash
