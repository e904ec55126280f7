"""Multi-asset values — exact integer arithmetic over asset ids.

A :class:`Value` maps :class:`AssetId` to an integer quantity. The base
asset (lovelace) is always present, other zero entries are dropped so two
values that net to the same amounts compare equal.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Self


@dataclass(frozen=True, order=True)
class AssetId:
    """A (policy id, asset name) pair; the base asset has an empty policy id."""

    policy_id: bytes
    name: bytes = b""

    @property
    def is_base(self) -> bool:
        """Check if this is the base asset."""
        return not self.policy_id

    @classmethod
    def from_unit(cls, unit: str) -> AssetId:
        """Parse a ``policy||name`` hex unit string (``lovelace`` for the base asset)."""
        if unit == "lovelace":
            return BASE_ASSET
        raw = bytes.fromhex(unit)
        if len(raw) < 28:
            msg = f"Invalid asset unit: {unit}"
            raise ValueError(msg)
        return cls(raw[:28], raw[28:])

    def to_unit(self) -> str:
        """Inverse of :meth:`from_unit`."""
        if self.is_base:
            return "lovelace"
        return (self.policy_id + self.name).hex()

    def __str__(self) -> str:
        return self.to_unit()


BASE_ASSET = AssetId(b"")


class Value(Mapping[AssetId, int]):
    """Immutable multi-asset amount.

    Supports ``+``, ``-`` and negation. Results may hold negative components
    (deficits); use :meth:`is_non_negative` before treating one as spendable.
    """

    __slots__ = ("_amounts",)

    def __init__(self, amounts: Mapping[AssetId, int] | None = None, *, coin: int = 0) -> None:
        merged: dict[AssetId, int] = {BASE_ASSET: coin}
        for asset, quantity in (amounts or {}).items():
            if not isinstance(quantity, int) or isinstance(quantity, bool):
                msg = f"Quantity for {asset} must be an int, got {type(quantity).__name__}"
                raise TypeError(msg)
            merged[asset] = merged.get(asset, 0) + quantity
        self._amounts = {
            asset: merged[asset]
            for asset in sorted(merged)
            if asset.is_base or merged[asset] != 0
        }

    @classmethod
    def lovelace(cls, coin: int) -> Self:
        """A value holding only the base asset."""
        return cls(coin=coin)

    @classmethod
    def zero(cls) -> Self:
        """The empty value."""
        return cls()

    @classmethod
    def sum(cls, values: Iterable[Value]) -> Value:
        """Add up a sequence of values."""
        total = cls()
        for value in values:
            total = total + value
        return total

    # -- Mapping protocol ----------------------------------------------------

    def __getitem__(self, asset: AssetId) -> int:
        return self._amounts.get(asset, 0)

    def __iter__(self) -> Iterator[AssetId]:
        return iter(self._amounts)

    def __len__(self) -> int:
        return len(self._amounts)

    def __contains__(self, asset: object) -> bool:
        return asset in self._amounts

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Value):
            return self._amounts == other._amounts
        return NotImplemented

    def __hash__(self) -> int:
        return hash(tuple(self._amounts.items()))

    def __repr__(self) -> str:
        return f"Value({self})"

    def __str__(self) -> str:
        parts = [f"{asset}={quantity}" for asset, quantity in self._amounts.items()]
        return ", ".join(parts)

    # -- Arithmetic ----------------------------------------------------------

    def __add__(self, other: Value) -> Value:
        merged = dict(self._amounts)
        for asset, quantity in other.items():
            merged[asset] = merged.get(asset, 0) + quantity
        return Value(merged)

    def __sub__(self, other: Value) -> Value:
        return self + (-other)

    def __neg__(self) -> Value:
        return Value({asset: -quantity for asset, quantity in self._amounts.items()})

    # -- Queries -------------------------------------------------------------

    @property
    def coin(self) -> int:
        """Quantity of the base asset."""
        return self._amounts[BASE_ASSET]

    @property
    def tokens(self) -> dict[AssetId, int]:
        """Non-base assets only."""
        return {asset: q for asset, q in self._amounts.items() if not asset.is_base}

    @property
    def has_tokens(self) -> bool:
        """Whether any non-base asset is present."""
        return len(self._amounts) > 1

    def is_non_negative(self) -> bool:
        """Every component is ≥ 0."""
        return all(quantity >= 0 for quantity in self._amounts.values())

    def covers(self, other: Value) -> bool:
        """Component-wise ``self >= other``."""
        return (self - other).is_non_negative()

    def positive_part(self) -> Value:
        """Drop every component that is ≤ 0."""
        return Value({a: q for a, q in self._amounts.items() if q > 0})

    def with_coin(self, coin: int) -> Value:
        """Copy with the base quantity replaced."""
        amounts = dict(self._amounts)
        amounts[BASE_ASSET] = coin
        return Value(amounts)

    def multiasset(self) -> dict[bytes, dict[bytes, int]]:
        """Tokens grouped by policy id, in ledger (bytewise) order."""
        grouped: dict[bytes, dict[bytes, int]] = {}
        for asset, quantity in self.tokens.items():
            grouped.setdefault(asset.policy_id, {})[asset.name] = quantity
        return grouped

    @classmethod
    def from_multiasset(cls, coin: int, multiasset: Mapping[bytes, Mapping[bytes, int]]) -> Value:
        """Build a value from a ``{policy: {name: qty}}`` map."""
        return cls(
            {
                AssetId(policy, name): quantity
                for policy, assets in multiasset.items()
                for name, quantity in assets.items()
            },
            coin=coin,
        )
