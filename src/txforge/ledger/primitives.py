"""Ledger primitives — output references, UTxOs, scripts, datums, budgets."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import TYPE_CHECKING

from txforge.utils.crypto import KEY_HASH_SIZE, TX_HASH_SIZE, blake2b_224, blake2b_256

if TYPE_CHECKING:
    from txforge.ledger.address import Address
    from txforge.ledger.value import Value


# ---------------------------------------------------------------------------
# Output reference
# ---------------------------------------------------------------------------


@dataclass(frozen=True, order=True)
class TxIn:
    """Reference to a transaction output: (transaction id, output index).

    Ordering matches the ledger's input ordering (bytewise id, then index),
    which also fixes spend redeemer indices.
    """

    tx_id: bytes
    index: int

    def __post_init__(self) -> None:
        if len(self.tx_id) != TX_HASH_SIZE:
            msg = f"Invalid transaction id length: {len(self.tx_id)}"
            raise ValueError(msg)
        if self.index < 0:
            msg = f"Invalid output index: {self.index}"
            raise ValueError(msg)

    @classmethod
    def from_str(cls, ref: str) -> TxIn:
        """Parse ``<tx id hex>#<index>``."""
        tx_id, _, index = ref.partition("#")
        if not index:
            msg = f"Invalid output reference: {ref}"
            raise ValueError(msg)
        return cls(bytes.fromhex(tx_id), int(index))

    def __str__(self) -> str:
        return f"{self.tx_id.hex()}#{self.index}"


# ---------------------------------------------------------------------------
# Execution budgets and validity
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ExecutionUnits:
    """Script execution budget (memory, CPU steps)."""

    mem: int = 0
    steps: int = 0

    def __add__(self, other: ExecutionUnits) -> ExecutionUnits:
        return ExecutionUnits(self.mem + other.mem, self.steps + other.steps)

    def exceeds(self, limit: ExecutionUnits) -> bool:
        """True if either component is above ``limit``."""
        return self.mem > limit.mem or self.steps > limit.steps

    def with_margin(self, percent: int) -> ExecutionUnits:
        """Scale up both components by ``percent`` (integer, rounded down)."""
        return ExecutionUnits(
            self.mem * (100 + percent) // 100,
            self.steps * (100 + percent) // 100,
        )

    def __str__(self) -> str:
        return f"(mem={self.mem}, steps={self.steps})"


@dataclass(frozen=True)
class ValidityInterval:
    """Slot bounds; ``lower`` is inclusive, ``upper`` exclusive (the ledger TTL)."""

    lower: int | None = None
    upper: int | None = None


class RedeemerTag(enum.IntEnum):
    """Redeemer purposes, numbered as in the ledger CDDL."""

    SPEND = 0
    MINT = 1
    CERT = 2
    REWARD = 3

    @property
    def label(self) -> str:
        """Evaluator-facing purpose name."""
        return _TAG_LABELS[self]

    @classmethod
    def from_label(cls, label: str) -> RedeemerTag:
        """Parse an evaluator purpose name (``spend``, ``mint``, ...)."""
        for tag, name in _TAG_LABELS.items():
            if name == label:
                return tag
        msg = f"Unknown redeemer purpose: {label}"
        raise ValueError(msg)


_TAG_LABELS = {
    RedeemerTag.SPEND: "spend",
    RedeemerTag.MINT: "mint",
    RedeemerTag.CERT: "publish",
    RedeemerTag.REWARD: "withdraw",
}


@dataclass(frozen=True, order=True)
class RedeemerKey:
    """(purpose, index) pair identifying one redeemer."""

    tag: RedeemerTag
    index: int

    @classmethod
    def parse(cls, key: str) -> RedeemerKey:
        """Parse ``spend:0`` style keys."""
        label, _, index = key.partition(":")
        if label == "certificate":
            label = "publish"
        elif label == "withdrawal":
            label = "withdraw"
        return cls(RedeemerTag.from_label(label), int(index))

    def __str__(self) -> str:
        return f"{self.tag.label}:{self.index}"


# ---------------------------------------------------------------------------
# Scripts and datums
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PlutusScript:
    """A serialized Plutus script attached to the witness set."""

    version: int
    cbor: bytes

    def __post_init__(self) -> None:
        if self.version not in (1, 2, 3):
            msg = f"Unsupported Plutus version: {self.version}"
            raise ValueError(msg)

    @property
    def script_hash(self) -> bytes:
        """BLAKE2b-224 over the language tag followed by the script bytes."""
        return blake2b_224(bytes([self.version]) + self.cbor)


@dataclass(frozen=True)
class ReferenceScript:
    """A script already on chain, used through a reference input."""

    utxo_ref: TxIn
    script_hash: bytes

    def __post_init__(self) -> None:
        if len(self.script_hash) != KEY_HASH_SIZE:
            msg = f"Invalid script hash length: {len(self.script_hash)}"
            raise ValueError(msg)


Script = PlutusScript | ReferenceScript


@dataclass(frozen=True)
class InlineDatum:
    """A pre-serialized datum stored in the output itself."""

    cbor: bytes

    @property
    def datum_hash(self) -> bytes:
        return blake2b_256(self.cbor)


@dataclass(frozen=True)
class DatumHash:
    """A datum referenced by hash only."""

    hash: bytes

    def __post_init__(self) -> None:
        if len(self.hash) != TX_HASH_SIZE:
            msg = f"Invalid datum hash length: {len(self.hash)}"
            raise ValueError(msg)


Datum = InlineDatum | DatumHash


# ---------------------------------------------------------------------------
# UTxO
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UTxO:
    """An unspent output as reported by a UTxO source (read-only evidence)."""

    ref: TxIn
    address: Address
    value: Value
    datum: Datum | None = None
    script_hash: bytes | None = None

    def __post_init__(self) -> None:
        if not self.value.is_non_negative():
            msg = f"UTxO {self.ref} has a negative quantity"
            raise ValueError(msg)
