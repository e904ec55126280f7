"""Coin selection — choose candidate UTxOs covering a deficit.

Selection is deterministic: the same deficit and candidate set always pick
the same UTxOs, in the same order.
"""

from __future__ import annotations

import abc
import logging
from typing import TYPE_CHECKING

from txforge.errors.builder_errors import InsufficientFunds

if TYPE_CHECKING:
    from collections.abc import Sequence

    from txforge.ledger.primitives import UTxO
    from txforge.ledger.value import AssetId, Value

logger = logging.getLogger(__name__)


class CoinSelector(abc.ABC):
    """Strategy interface for covering a deficit from candidates."""

    @abc.abstractmethod
    def select(self, deficit: Value, candidates: Sequence[UTxO]) -> list[UTxO]:
        """Return UTxOs from ``candidates`` whose sum covers ``deficit``.

        Only the positive components of ``deficit`` need covering.

        Raises:
            InsufficientFunds: If the candidates cannot cover the deficit.
        """


def _outstanding(deficit: Value) -> list[tuple[AssetId, int]]:
    return [(asset, qty) for asset, qty in deficit.items() if qty > 0]


class LargestDeficitFirst(CoinSelector):
    """Greedy selection driven by the largest outstanding deficit.

    Repeatedly takes the asset with the largest missing quantity (ties: base
    asset first, then asset id) and picks the candidate holding the most of
    it (ties: lowest output reference).
    """

    def select(self, deficit: Value, candidates: Sequence[UTxO]) -> list[UTxO]:
        remaining = deficit.positive_part()
        available = list(candidates)
        chosen: list[UTxO] = []

        while outstanding := _outstanding(remaining):
            asset, _ = min(outstanding, key=lambda item: (-item[1], not item[0].is_base, item[0]))
            holders = [u for u in available if u.value[asset] > 0]
            if not holders:
                raise InsufficientFunds(remaining)
            pick = min(holders, key=lambda u: (-u.value[asset], u.ref))
            available.remove(pick)
            chosen.append(pick)
            remaining = (remaining - pick.value).positive_part()
            logger.debug("Selected %s for %s", pick.ref, asset)

        return chosen
