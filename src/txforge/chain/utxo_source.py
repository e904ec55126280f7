"""In-memory UTxO source."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from txforge.ledger.address import Address
    from txforge.ledger.primitives import TxIn, UTxO


class StaticUtxoSource:
    """A fixed candidate set, filtered by address on request."""

    def __init__(self, utxos: Iterable[UTxO] = ()) -> None:
        self._utxos: dict[TxIn, UTxO] = {u.ref: u for u in utxos}

    def add(self, utxo: UTxO) -> None:
        self._utxos[utxo.ref] = utxo

    def spend(self, refs: Iterable[TxIn]) -> None:
        """Forget outputs consumed by a submitted transaction."""
        for ref in refs:
            self._utxos.pop(ref, None)

    def __len__(self) -> int:
        return len(self._utxos)

    async def candidates_for(self, addresses: Sequence[Address]) -> list[UTxO]:
        wanted = set(addresses)
        return sorted(
            (u for u in self._utxos.values() if u.address in wanted),
            key=lambda u: u.ref,
        )
