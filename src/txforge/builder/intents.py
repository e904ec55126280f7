"""Intents — declarative statements of what a transaction must do.

``Intent`` is a closed union; the balancer matches on it exhaustively.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from txforge.ledger.address import Address
from txforge.ledger.certificates import StakeCredential
from txforge.ledger.primitives import (
    Datum,
    ExecutionUnits,
    PlutusScript,
    ReferenceScript,
    UTxO,
    ValidityInterval,
)
from txforge.ledger.value import AssetId, Value
from txforge.utils.crypto import blake2b_256


@dataclass(frozen=True)
class SpendInput:
    """Consume a specific UTxO.

    A redeemer marks the input as script-locked.
    """

    utxo: UTxO
    redeemer: bytes | None = None


@dataclass(frozen=True)
class ProduceOutput:
    """Create an output at ``address``."""

    address: Address
    value: Value
    datum: Datum | None = None


@dataclass(frozen=True)
class Mint:
    """Mint (positive) or burn (negative) one asset."""

    policy_id: bytes
    asset_name: bytes
    amount: int
    redeemer: bytes | None = None

    @property
    def asset(self) -> AssetId:
        return AssetId(self.policy_id, self.asset_name)


@dataclass(frozen=True)
class RequireSigner:
    """Add a 28-byte key hash to the required signers."""

    key_hash: bytes


@dataclass(frozen=True)
class SetValidityInterval:
    """Constrain the slots in which the transaction is valid."""

    lower: int | None = None
    upper: int | None = None


@dataclass(frozen=True)
class InvokeScript:
    """Make a script available and give a default redeemer and budget.

    The redeemer applies to every spend, mint, certificate or withdrawal
    governed by the script that does not carry its own. The budget is used until the evaluator answers.
    """

    script: PlutusScript | ReferenceScript
    redeemer: bytes | None = None
    budget: ExecutionUnits | None = None

    @property
    def script_hash(self) -> bytes:
        return self.script.script_hash


@dataclass(frozen=True)
class RegisterStake:
    """Register a reward account; the balancer adds the key deposit.

    Script credentials may carry a redeemer; the ledger does not yet run
    the script for registrations.
    """

    credential: StakeCredential
    redeemer: bytes | None = None


@dataclass(frozen=True)
class DeregisterStake:
    """Close a reward account and take back its deposit.

    Script credentials need a redeemer, here or on the script's
    :class:`InvokeScript`.
    """

    credential: StakeCredential
    redeemer: bytes | None = None


@dataclass(frozen=True)
class DelegateStake:
    """Delegate a registered credential to the pool ``pool_id``."""

    credential: StakeCredential
    pool_id: bytes
    redeemer: bytes | None = None


@dataclass(frozen=True)
class WithdrawRewards:
    """Withdraw ``amount`` lovelace from a reward account into the transaction."""

    credential: StakeCredential
    amount: int
    redeemer: bytes | None = None


@dataclass(frozen=True)
class AttachDatum:
    """Put a serialized datum in the witness set.

    Needed to spend script outputs that only carry a datum hash.
    """

    cbor: bytes

    @property
    def datum_hash(self) -> bytes:
        return blake2b_256(self.cbor)


@dataclass(frozen=True)
class SetChangeDatum:
    """Attach ``datum`` to the change output."""

    datum: Datum


@dataclass(frozen=True)
class SetCollateralReturn:
    """Send unused collateral back to ``address`` if scripts fail.

    Without this no collateral return output is created, keeping the
    transaction smaller.
    """

    address: Address


@dataclass(frozen=True)
class PadFee:
    """Pay ``lovelace`` on top of the computed minimum fee."""

    lovelace: int


Intent = (
    SpendInput
    | ProduceOutput
    | Mint
    | RequireSigner
    | SetValidityInterval
    | InvokeScript
    | RegisterStake
    | DeregisterStake
    | DelegateStake
    | WithdrawRewards
    | AttachDatum
    | SetChangeDatum
    | SetCollateralReturn
    | PadFee
)

# Intents that add a certificate, in the order they end up in the body
StakeAction = RegisterStake | DeregisterStake | DelegateStake


@dataclass(frozen=True)
class IntentSet:
    """A finished, immutable batch of intents in insertion order.

    The settings intents are also folded into ``validity``, ``change_datum``,
    ``collateral_return`` and ``fee_padding``.
    """

    intents: tuple[Intent, ...] = ()
    validity: ValidityInterval = field(default_factory=ValidityInterval)
    change_datum: Datum | None = None
    collateral_return: Address | None = None
    fee_padding: int = 0

    def __iter__(self) -> Iterator[Intent]:
        return iter(self.intents)

    def __len__(self) -> int:
        return len(self.intents)

    @property
    def spends(self) -> tuple[SpendInput, ...]:
        return tuple(i for i in self.intents if isinstance(i, SpendInput))

    @property
    def outputs(self) -> tuple[ProduceOutput, ...]:
        return tuple(i for i in self.intents if isinstance(i, ProduceOutput))

    @property
    def mints(self) -> tuple[Mint, ...]:
        return tuple(i for i in self.intents if isinstance(i, Mint))

    @property
    def signers(self) -> tuple[bytes, ...]:
        return tuple(i.key_hash for i in self.intents if isinstance(i, RequireSigner))

    @property
    def scripts(self) -> tuple[InvokeScript, ...]:
        return tuple(i for i in self.intents if isinstance(i, InvokeScript))

    @property
    def stake_actions(self) -> tuple[StakeAction, ...]:
        return tuple(i for i in self.intents if isinstance(i, StakeAction))

    @property
    def withdrawals(self) -> tuple[WithdrawRewards, ...]:
        return tuple(i for i in self.intents if isinstance(i, WithdrawRewards))

    @property
    def datums(self) -> tuple[bytes, ...]:
        return tuple(i.cbor for i in self.intents if isinstance(i, AttachDatum))
