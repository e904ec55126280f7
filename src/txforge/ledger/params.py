"""Protocol parameters and network presets.

Parameters are plain immutable values passed explicitly to the balancer
and fee estimator; nothing in the package reads them from global state.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from fractions import Fraction
from typing import Any, Self

from txforge.ledger.primitives import ExecutionUnits


class NetworkId(enum.StrEnum):
    """Supported networks."""

    MAINNET = "mainnet"
    PREVIEW = "preview"

    @property
    def magic(self) -> int:
        """Network magic used by the node handshake."""
        return 764824073 if self is NetworkId.MAINNET else 2

    @property
    def address_network_id(self) -> int:
        """Network id nibble used in address headers."""
        return 1 if self is NetworkId.MAINNET else 0


@dataclass(frozen=True)
class ProtocolParameters:
    """The subset of ledger parameters the builder depends on.

    Attributes:
        min_fee_a: Fee per serialized byte.
        min_fee_b: Constant fee per transaction.
        max_tx_size: Upper bound on the serialized transaction size.
        max_tx_ex_units: Upper bound on summed script budgets.
        coins_per_utxo_byte: Min-ADA price of one output byte.
        price_mem: Fee per memory unit (exact rational).
        price_steps: Fee per CPU step (exact rational).
        collateral_percentage: Collateral required, as a percentage of the fee.
        max_collateral_inputs: Upper bound on collateral inputs.
        max_value_size: Upper bound on a serialized output value.
        cost_model_views: Pre-encoded language views for the script data hash.
        key_deposit: Lovelace locked by a stake registration and refunded on
            deregistration.
    """

    min_fee_a: int = 44
    min_fee_b: int = 155381
    max_tx_size: int = 16384
    max_tx_ex_units: ExecutionUnits = field(
        default_factory=lambda: ExecutionUnits(14_000_000, 10_000_000_000)
    )
    coins_per_utxo_byte: int = 4310
    price_mem: Fraction = Fraction(577, 10000)
    price_steps: Fraction = Fraction(721, 10000000)
    collateral_percentage: int = 150
    max_collateral_inputs: int = 3
    max_value_size: int = 5000
    cost_model_views: bytes = b"\xa0"
    key_deposit: int = 2_000_000

    def execution_fee(self, units: ExecutionUnits) -> int:
        """Fee for a script budget: ``ceil(price_mem * mem + price_steps * steps)``."""
        cost = self.price_mem * units.mem + self.price_steps * units.steps
        return -((-cost.numerator) // cost.denominator)

    def max_tx_fee(self) -> int:
        """Fee of the largest possible transaction."""
        return (
            self.min_fee_a * self.max_tx_size
            + self.min_fee_b
            + self.execution_fee(self.max_tx_ex_units)
        )

    def updated(self, **changes: Any) -> Self:
        """Copy with some fields replaced."""
        return replace(self, **changes)


MAINNET = ProtocolParameters()
PREVIEW = ProtocolParameters()

PRESETS: dict[NetworkId, ProtocolParameters] = {
    NetworkId.MAINNET: MAINNET,
    NetworkId.PREVIEW: PREVIEW,
}


def parse_price(text: str) -> Fraction:
    """Parse ``"577/10000"`` (or a decimal string) into an exact fraction."""
    return Fraction(text.strip())
