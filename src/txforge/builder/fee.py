"""Fee and min-ADA rules.

Both are pure functions of a serialized transaction (or output) and the
protocol parameters; the balancer evaluates them on every iteration.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from txforge.ledger.primitives import ExecutionUnits
from txforge.ledger.transaction import Transaction, VKeyWitness, WitnessSet

if TYPE_CHECKING:
    from collections.abc import Iterable

    from txforge.ledger.params import ProtocolParameters
    from txforge.ledger.transaction import TransactionOutput

# Sizes of a real witness; placeholders must serialize to the same length
VKEY_SIZE = 32
SIGNATURE_SIZE = 64


def placeholder_witnesses(signatories: Iterable[bytes]) -> tuple[VKeyWitness, ...]:
    """One zero-filled witness per signatory, sized like a real one."""
    return tuple(
        VKeyWitness(bytes(VKEY_SIZE), bytes(SIGNATURE_SIZE)) for _ in sorted(set(signatories))
    )


def total_execution_units(witness_set: WitnessSet) -> ExecutionUnits:
    total = ExecutionUnits()
    for redeemer in witness_set.redeemers:
        total = total + redeemer.ex_units
    return total


def min_fee(tx: Transaction, params: ProtocolParameters) -> int:
    """``min_fee_a * size + min_fee_b + ceil(price_mem * mem + price_steps * steps)``."""
    units = total_execution_units(tx.witness_set)
    return params.min_fee_a * tx.size + params.min_fee_b + params.execution_fee(units)


def min_ada(output: TransactionOutput, params: ProtocolParameters) -> int:
    """Minimum base-asset quantity ``output`` must carry."""
    return output.min_ada(params)
