"""Intent accumulator — ordered, validated collection of intents.

Pure data collection: no network access, no keys. ``finish()`` freezes the
list into an :class:`IntentSet` for the balancer.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Self, TypeVar

from txforge.builder.intents import (
    AttachDatum,
    DelegateStake,
    DeregisterStake,
    IntentSet,
    InvokeScript,
    Mint,
    PadFee,
    ProduceOutput,
    RegisterStake,
    RequireSigner,
    SetChangeDatum,
    SetCollateralReturn,
    SetValidityInterval,
    SpendInput,
    WithdrawRewards,
)
from txforge.errors.builder_errors import EmptyDraft, InvalidIntent
from txforge.ledger import codec
from txforge.ledger.primitives import InlineDatum, ValidityInterval
from txforge.utils.crypto import KEY_HASH_SIZE

if TYPE_CHECKING:
    from txforge.builder.intents import Intent
    from txforge.ledger.address import Address
    from txforge.ledger.certificates import StakeCredential
    from txforge.ledger.primitives import (
        Datum,
        ExecutionUnits,
        PlutusScript,
        ReferenceScript,
        TxIn,
        UTxO,
    )
    from txforge.ledger.value import Value

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

# At least one of these makes a draft worth balancing
_SUBSTANTIVE = (
    SpendInput,
    ProduceOutput,
    RegisterStake,
    DeregisterStake,
    DelegateStake,
    WithdrawRewards,
)


def _normalize_data(data: bytes | None, what: str) -> bytes | None:
    if data is None:
        return None
    try:
        return codec.normalize(data)
    except ValueError as exc:
        msg = f"{what} is not valid CBOR: {exc}"
        raise InvalidIntent(msg) from exc


def _claim(seen: set[StakeCredential], credential: StakeCredential, action: str) -> None:
    if credential in seen:
        msg = f"stake credential {credential} is {action} twice"
        raise InvalidIntent(msg)
    seen.add(credential)


def _settle(current: _T | None, new: _T, what: str) -> _T:
    """Accept a setting once; repeating the same value is allowed."""
    if current is not None and current != new:
        msg = f"conflicting {what}: {current} and {new}"
        raise InvalidIntent(msg)
    return new


class TransactionBuilder:
    """Collects intents in order and rejects inconsistent ones.

    Usage::

        builder = TransactionBuilder()
        builder.spend(utxo).pay_to(address, Value.lovelace(2_000_000))
        intents = builder.finish()
    """

    def __init__(self) -> None:
        self._intents: list[Intent] = []
        self._inputs: set[TxIn] = set()
        self._scripts: set[bytes] = set()
        self._validity = ValidityInterval()
        self._registered: set[StakeCredential] = set()
        self._deregistered: set[StakeCredential] = set()
        self._delegated: set[StakeCredential] = set()
        self._withdrawn: set[StakeCredential] = set()
        self._datums: set[bytes] = set()
        self._change_datum: Datum | None = None
        self._collateral_return: Address | None = None
        self._fee_padding: int | None = None

    def __len__(self) -> int:
        return len(self._intents)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def add(self, intent: Intent) -> Self:
        """Validate ``intent`` against earlier ones and append it.

        Raises:
            InvalidIntent: If the intent is malformed or conflicts.
        """
        match intent:
            case SpendInput(utxo=utxo, redeemer=redeemer):
                if utxo.ref in self._inputs:
                    msg = f"input {utxo.ref} is spent twice"
                    raise InvalidIntent(msg)
                intent = SpendInput(utxo, _normalize_data(redeemer, "spend redeemer"))
                self._inputs.add(utxo.ref)
            case ProduceOutput(value=value, datum=datum):
                if not value.is_non_negative():
                    msg = f"output value has a negative component: {value}"
                    raise InvalidIntent(msg)
                if isinstance(datum, InlineDatum):
                    _normalize_data(datum.cbor, "inline datum")
            case Mint(policy_id=policy_id, amount=amount, redeemer=redeemer):
                if len(policy_id) != KEY_HASH_SIZE:
                    msg = f"invalid policy id length: {len(policy_id)}"
                    raise InvalidIntent(msg)
                if amount == 0:
                    msg = "mint amount must be non-zero"
                    raise InvalidIntent(msg)
                intent = Mint(
                    policy_id,
                    intent.asset_name,
                    amount,
                    _normalize_data(redeemer, "mint redeemer"),
                )
            case RequireSigner(key_hash=key_hash):
                if len(key_hash) != KEY_HASH_SIZE:
                    msg = f"invalid signer key hash length: {len(key_hash)}"
                    raise InvalidIntent(msg)
            case SetValidityInterval(lower=lower, upper=upper):
                self._validity = self._merge_validity(lower, upper)
            case InvokeScript(script=script, redeemer=redeemer, budget=budget):
                if script.script_hash in self._scripts:
                    msg = f"script {script.script_hash.hex()} is attached twice"
                    raise InvalidIntent(msg)
                self._scripts.add(script.script_hash)
                intent = InvokeScript(script, _normalize_data(redeemer, "script redeemer"), budget)
            case RegisterStake(credential=credential, redeemer=redeemer):
                intent = RegisterStake(
                    credential, _normalize_data(redeemer, "certificate redeemer")
                )
                _claim(self._registered, credential, "registered")
            case DeregisterStake(credential=credential, redeemer=redeemer):
                intent = DeregisterStake(
                    credential, _normalize_data(redeemer, "certificate redeemer")
                )
                _claim(self._deregistered, credential, "deregistered")
            case DelegateStake(credential=credential, pool_id=pool_id, redeemer=redeemer):
                if len(pool_id) != KEY_HASH_SIZE:
                    msg = f"invalid pool id length: {len(pool_id)}"
                    raise InvalidIntent(msg)
                intent = DelegateStake(
                    credential, pool_id, _normalize_data(redeemer, "certificate redeemer")
                )
                _claim(self._delegated, credential, "delegated")
            case WithdrawRewards(credential=credential, amount=amount, redeemer=redeemer):
                if amount <= 0:
                    msg = f"withdrawal amount must be positive, got {amount}"
                    raise InvalidIntent(msg)
                intent = WithdrawRewards(
                    credential, amount, _normalize_data(redeemer, "withdrawal redeemer")
                )
                _claim(self._withdrawn, credential, "withdrawn from")
            case AttachDatum(cbor=cbor):
                intent = AttachDatum(_normalize_data(cbor, "datum"))
                if intent.datum_hash in self._datums:
                    msg = f"datum {intent.datum_hash.hex()} is attached twice"
                    raise InvalidIntent(msg)
                self._datums.add(intent.datum_hash)
            case SetChangeDatum(datum=datum):
                if isinstance(datum, InlineDatum):
                    datum = InlineDatum(_normalize_data(datum.cbor, "change datum"))
                self._change_datum = _settle(self._change_datum, datum, "change datum")
                intent = SetChangeDatum(datum)
            case SetCollateralReturn(address=address):
                if address.is_reward:
                    msg = f"collateral cannot return to reward address {address}"
                    raise InvalidIntent(msg)
                self._collateral_return = _settle(
                    self._collateral_return, address, "collateral return address"
                )
            case PadFee(lovelace=lovelace):
                if lovelace < 0:
                    msg = f"fee padding must be non-negative, got {lovelace}"
                    raise InvalidIntent(msg)
                self._fee_padding = _settle(self._fee_padding, lovelace, "fee padding")
            case _:
                msg = f"unknown intent type: {type(intent).__name__}"
                raise InvalidIntent(msg)

        self._intents.append(intent)
        logger.debug("Added intent %s", type(intent).__name__)
        return self

    def finish(self) -> IntentSet:
        """Freeze the collected intents.

        Raises:
            EmptyDraft: If nothing is spent, produced, certified or withdrawn.
        """
        if not any(isinstance(i, _SUBSTANTIVE) for i in self._intents):
            raise EmptyDraft
        return IntentSet(
            tuple(self._intents),
            self._validity,
            change_datum=self._change_datum,
            collateral_return=self._collateral_return,
            fee_padding=self._fee_padding or 0,
        )

    # ------------------------------------------------------------------
    # Fluent helpers
    # ------------------------------------------------------------------

    def spend(self, utxo: UTxO, redeemer: bytes | None = None) -> Self:
        return self.add(SpendInput(utxo, redeemer))

    def pay_to(self, address: Address, value: Value, datum: Datum | None = None) -> Self:
        return self.add(ProduceOutput(address, value, datum))

    def mint(
        self,
        policy_id: bytes,
        asset_name: bytes,
        amount: int,
        redeemer: bytes | None = None,
    ) -> Self:
        return self.add(Mint(policy_id, asset_name, amount, redeemer))

    def require_signer(self, key_hash: bytes) -> Self:
        return self.add(RequireSigner(key_hash))

    def valid_between(self, lower: int | None = None, upper: int | None = None) -> Self:
        return self.add(SetValidityInterval(lower, upper))

    def attach_script(
        self,
        script: PlutusScript | ReferenceScript,
        redeemer: bytes | None = None,
        budget: ExecutionUnits | None = None,
    ) -> Self:
        return self.add(InvokeScript(script, redeemer, budget))

    def register_stake(self, credential: StakeCredential, redeemer: bytes | None = None) -> Self:
        return self.add(RegisterStake(credential, redeemer))

    def deregister_stake(
        self, credential: StakeCredential, redeemer: bytes | None = None
    ) -> Self:
        return self.add(DeregisterStake(credential, redeemer))

    def delegate_stake(
        self,
        credential: StakeCredential,
        pool_id: bytes,
        redeemer: bytes | None = None,
    ) -> Self:
        return self.add(DelegateStake(credential, pool_id, redeemer))

    def withdraw(
        self,
        credential: StakeCredential,
        amount: int,
        redeemer: bytes | None = None,
    ) -> Self:
        return self.add(WithdrawRewards(credential, amount, redeemer))

    def attach_datum(self, cbor: bytes) -> Self:
        return self.add(AttachDatum(cbor))

    def change_datum(self, datum: Datum) -> Self:
        return self.add(SetChangeDatum(datum))

    def collateral_return_to(self, address: Address) -> Self:
        return self.add(SetCollateralReturn(address))

    def pad_fee(self, lovelace: int) -> Self:
        return self.add(PadFee(lovelace))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _merge_validity(self, lower: int | None, upper: int | None) -> ValidityInterval:
        """Combine a new interval with the bounds set so far."""
        current = self._validity
        if lower is not None and current.lower is not None and lower != current.lower:
            msg = f"conflicting lower validity bounds: {current.lower} and {lower}"
            raise InvalidIntent(msg)
        if upper is not None and current.upper is not None and upper != current.upper:
            msg = f"conflicting upper validity bounds: {current.upper} and {upper}"
            raise InvalidIntent(msg)
        merged = ValidityInterval(
            lower if lower is not None else current.lower,
            upper if upper is not None else current.upper,
        )
        if merged.lower is not None and merged.upper is not None and merged.lower >= merged.upper:
            msg = f"empty validity interval: [{merged.lower}, {merged.upper})"
            raise InvalidIntent(msg)
        if (merged.lower is not None and merged.lower < 0) or (merged.upper is not None and merged.upper < 0):
            msg = "validity bounds must be non-negative slots"
            raise InvalidIntent(msg)
        return merged
