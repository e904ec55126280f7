"""Script-evaluation adapter — asks a backend to cost a draft's redeemers."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from txforge.errors.builder_errors import ScriptEvaluationError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from txforge.chain.backend import ChainBackend
    from txforge.ledger.primitives import ExecutionUnits, RedeemerKey
    from txforge.ledger.transaction import Transaction

logger = logging.getLogger(__name__)


class ScriptEvaluator:
    """Costs redeemers through a :class:`ChainBackend`.

    Failures are never retried: a script error means the draft is invalid.
    Transport faults propagate as :class:`TransportError`.
    """

    def __init__(self, backend: ChainBackend, *, margin_percent: int = 0) -> None:
        """Initialize the evaluator.

        Args:
            backend: Backend exposing ``evaluate_transaction``.
            margin_percent: Safety margin added to every returned budget.
        """
        self._backend = backend
        self._margin = margin_percent

    async def evaluate(
        self,
        draft_tx: Transaction,
        redeemer_keys: Sequence[RedeemerKey],
    ) -> dict[RedeemerKey, ExecutionUnits]:
        """Return execution units for each of ``redeemer_keys``.

        Raises:
            ScriptEvaluationError: If a script fails or a redeemer is not costed.
        """
        results = await self._backend.evaluate_transaction(draft_tx.to_cbor())
        units: dict[RedeemerKey, ExecutionUnits] = {}
        for key in redeemer_keys:
            if key not in results:
                raise ScriptEvaluationError(str(key), "no execution units returned")
            units[key] = results[key].with_margin(self._margin)
        logger.debug("Evaluated %d redeemers for %s", len(units), draft_tx.tx_id)
        return units
