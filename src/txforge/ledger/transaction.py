"""Transaction serialisation — Conway-era CBOR bodies, witnesses, transactions.

Provides the ledger's compact binary encoding for:
- TransactionOutput (post-Alonzo map form)
- TransactionBody (only present fields, ascending keys; stake certificates,
  withdrawals and collateral return included)
- WitnessSet (vkey witnesses, Plutus scripts, datums, array-form redeemers)
- Transaction / SignedTransaction with ``to_cbor`` / ``from_cbor`` / ``tx_hash``

Every transaction produced by this package round-trips byte-for-byte.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Self

from cbor2 import CBORTag

from txforge.ledger import codec
from txforge.ledger.address import Address
from txforge.ledger.certificates import certificate_from_primitive
from txforge.ledger.primitives import (
    DatumHash,
    ExecutionUnits,
    InlineDatum,
    PlutusScript,
    RedeemerKey,
    RedeemerTag,
    TxIn,
    ValidityInterval,
)
from txforge.ledger.value import Value
from txforge.utils.crypto import blake2b_256

if TYPE_CHECKING:
    from txforge.ledger.certificates import Certificate
    from txforge.ledger.primitives import Datum
    from txforge.ledger.params import ProtocolParameters

# Constant overhead the ledger adds to an output's size for min-ADA purposes
MIN_ADA_OVERHEAD = 160

# Body map keys
_INPUTS, _OUTPUTS, _FEE, _TTL, _CERTIFICATES, _WITHDRAWALS = 0, 1, 2, 3, 4, 5
_VALIDITY_START, _MINT, _SCRIPT_DATA_HASH = 8, 9, 11
_COLLATERAL, _REQUIRED_SIGNERS = 13, 14
_COLLATERAL_RETURN, _TOTAL_COLLATERAL, _REFERENCE_INPUTS = 16, 17, 18

# Witness set map keys
_VKEY_WITNESSES, _DATUMS, _REDEEMERS = 0, 4, 5
_SCRIPT_KEYS = {1: 3, 2: 6, 3: 7}  # Plutus version -> witness key

_EMPTY_LANGUAGE_VIEWS = b"\xa0"


# ---------------------------------------------------------------------------
# Field codecs
# ---------------------------------------------------------------------------


def encode_value(value: Value) -> Any:
    """``coin`` or ``[coin, multiasset]``."""
    if not value.has_tokens:
        return value.coin
    return [value.coin, value.multiasset()]


def decode_value(item: Any) -> Value:
    """Inverse of :func:`encode_value`."""
    if isinstance(item, int):
        return Value.lovelace(item)
    coin, multiasset = item
    return Value.from_multiasset(coin, multiasset)


def _encode_inputs(inputs: tuple[TxIn, ...]) -> list[list[Any]]:
    return [[i.tx_id, i.index] for i in inputs]


def _as_list(item: Any) -> list[Any]:
    """Unwrap an optional tag-258 set into a list."""
    if isinstance(item, CBORTag):
        item = item.value
    if isinstance(item, (set, frozenset)):
        return sorted(item)
    return list(item)


def _decode_inputs(item: Any) -> tuple[TxIn, ...]:
    return tuple(TxIn(bytes(tx_id), index) for tx_id, index in _as_list(item))


# ---------------------------------------------------------------------------
# TransactionOutput
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionOutput:
    """A transaction output.

    Attributes:
        address: Destination address.
        value: Amount carried; every component must be non-negative.
        datum: Optional inline datum or datum hash.
    """

    address: Address
    value: Value
    datum: Datum | None = None

    def __post_init__(self) -> None:
        if not self.value.is_non_negative():
            msg = "Output value has a negative quantity"
            raise ValueError(msg)

    def to_primitive(self) -> dict[int, Any]:
        out: dict[int, Any] = {0: self.address.raw, 1: encode_value(self.value)}
        if isinstance(self.datum, DatumHash):
            out[2] = [0, self.datum.hash]
        elif isinstance(self.datum, InlineDatum):
            out[2] = [1, CBORTag(codec.CBOR_IN_CBOR_TAG, self.datum.cbor)]
        return out

    @classmethod
    def from_primitive(cls, item: Any) -> TransactionOutput:
        datum: Datum | None = None
        if isinstance(item, list):  # legacy [address, value, datum_hash?]
            if len(item) > 2:
                datum = DatumHash(item[2])
            return cls(Address(item[0]), decode_value(item[1]), datum)
        if 2 in item:
            kind, payload = item[2]
            datum = DatumHash(payload) if kind == 0 else InlineDatum(payload.value)
        return cls(Address(item[0]), decode_value(item[1]), datum)

    def to_cbor(self) -> bytes:
        return codec.dumps(self.to_primitive())

    def min_ada(self, params: ProtocolParameters) -> int:
        """Minimum base-asset quantity this output must carry."""
        return (MIN_ADA_OVERHEAD + len(self.to_cbor())) * params.coins_per_utxo_byte


# ---------------------------------------------------------------------------
# TransactionBody
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TransactionBody:
    """An ordered, fully resolved transaction body."""

    inputs: tuple[TxIn, ...]
    outputs: tuple[TransactionOutput, ...]
    fee: int
    validity: ValidityInterval = field(default_factory=ValidityInterval)
    mint: Value = field(default_factory=Value.zero)
    script_data_hash: bytes | None = None
    collateral: tuple[TxIn, ...] = ()
    required_signers: tuple[bytes, ...] = ()
    reference_inputs: tuple[TxIn, ...] = ()
    certificates: tuple[Certificate, ...] = ()
    # (reward account bytes, amount), sorted by account
    withdrawals: tuple[tuple[bytes, int], ...] = ()
    collateral_return: TransactionOutput | None = None
    total_collateral: int | None = None

    def to_primitive(self) -> dict[int, Any]:
        body: dict[int, Any] = {
            _INPUTS: _encode_inputs(self.inputs),
            _OUTPUTS: [o.to_primitive() for o in self.outputs],
            _FEE: self.fee,
        }
        if self.validity.upper is not None:
            body[_TTL] = self.validity.upper
        if self.certificates:
            body[_CERTIFICATES] = [c.to_primitive() for c in self.certificates]
        if self.withdrawals:
            body[_WITHDRAWALS] = dict(self.withdrawals)
        if self.validity.lower is not None:
            body[_VALIDITY_START] = self.validity.lower
        if self.mint.has_tokens:
            body[_MINT] = self.mint.multiasset()
        if self.script_data_hash is not None:
            body[_SCRIPT_DATA_HASH] = self.script_data_hash
        if self.collateral:
            body[_COLLATERAL] = _encode_inputs(self.collateral)
        if self.required_signers:
            body[_REQUIRED_SIGNERS] = list(self.required_signers)
        if self.collateral_return is not None:
            body[_COLLATERAL_RETURN] = self.collateral_return.to_primitive()
        if self.total_collateral is not None:
            body[_TOTAL_COLLATERAL] = self.total_collateral
        if self.reference_inputs:
            body[_REFERENCE_INPUTS] = _encode_inputs(self.reference_inputs)
        return body

    @classmethod
    def from_primitive(cls, item: dict[int, Any]) -> TransactionBody:
        signers = _as_list(item.get(_REQUIRED_SIGNERS, []))
        collateral_return = item.get(_COLLATERAL_RETURN)
        return cls(
            inputs=_decode_inputs(item[_INPUTS]),
            outputs=tuple(TransactionOutput.from_primitive(o) for o in item[_OUTPUTS]),
            fee=item[_FEE],
            validity=ValidityInterval(item.get(_VALIDITY_START), item.get(_TTL)),
            mint=Value.from_multiasset(0, item.get(_MINT, {})),
            script_data_hash=item.get(_SCRIPT_DATA_HASH),
            collateral=_decode_inputs(item.get(_COLLATERAL, [])),
            required_signers=tuple(bytes(s) for s in signers),
            reference_inputs=_decode_inputs(item.get(_REFERENCE_INPUTS, [])),
            certificates=tuple(
                certificate_from_primitive(c) for c in _as_list(item.get(_CERTIFICATES, []))
            ),
            withdrawals=tuple(
                sorted((bytes(account), amount) for account, amount in item.get(_WITHDRAWALS, {}).items())
            ),
            collateral_return=(
                TransactionOutput.from_primitive(collateral_return)
                if collateral_return is not None
                else None
            ),
            total_collateral=item.get(_TOTAL_COLLATERAL),
        )

    @property
    def withdrawn(self) -> int:
        """Lovelace withdrawn from reward accounts."""
        return sum(amount for _, amount in self.withdrawals)

    def to_cbor(self) -> bytes:
        return codec.dumps(self.to_primitive())

    @property
    def hash(self) -> bytes:
        """Transaction id: BLAKE2b-256 of the serialized body."""
        return blake2b_256(self.to_cbor())


# ---------------------------------------------------------------------------
# Witnesses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VKeyWitness:
    """An Ed25519 verification key and its signature over the transaction id."""

    vkey: bytes
    signature: bytes


@dataclass(frozen=True)
class Redeemer:
    """A script argument with its execution budget.

    ``data`` is pre-serialized Plutus data and is embedded verbatim.
    """

    tag: RedeemerTag
    index: int
    data: bytes
    ex_units: ExecutionUnits = field(default_factory=ExecutionUnits)

    @property
    def key(self) -> RedeemerKey:
        return RedeemerKey(self.tag, self.index)

    def to_primitive(self) -> list[Any]:
        return [
            int(self.tag),
            self.index,
            codec.RawCBOR(self.data),
            [self.ex_units.mem, self.ex_units.steps],
        ]


def encode_redeemers(redeemers: tuple[Redeemer, ...]) -> bytes:
    """Serialized redeemer array, as covered by the script data hash."""
    return codec.dumps([r.to_primitive() for r in redeemers])


def _decode_redeemers(item: Any) -> tuple[Redeemer, ...]:
    if isinstance(item, dict):  # Conway map form {[tag, index]: [data, units]}
        rows = [[k[0], k[1], v[0], v[1]] for k, v in item.items()]
    else:
        rows = item
    return tuple(
        Redeemer(RedeemerTag(tag), index, codec.reencode(data), ExecutionUnits(units[0], units[1]))
        for tag, index, data, units in rows
    )


@dataclass(frozen=True)
class WitnessSet:
    """Signatures, attached scripts, datums and redeemers.

    ``datums`` are pre-serialized Plutus data, embedded verbatim like
    redeemer data.
    """

    vkey_witnesses: tuple[VKeyWitness, ...] = ()
    scripts: tuple[PlutusScript, ...] = ()
    redeemers: tuple[Redeemer, ...] = ()
    datums: tuple[bytes, ...] = ()

    def to_primitive(self) -> dict[int, Any]:
        entries: dict[int, Any] = {}
        if self.vkey_witnesses:
            entries[_VKEY_WITNESSES] = [[w.vkey, w.signature] for w in self.vkey_witnesses]
        if self.datums:
            entries[_DATUMS] = [codec.RawCBOR(d) for d in self.datums]
        if self.redeemers:
            entries[_REDEEMERS] = [r.to_primitive() for r in self.redeemers]
        for version, key in _SCRIPT_KEYS.items():
            scripts = [s.cbor for s in self.scripts if s.version == version]
            if scripts:
                entries[key] = scripts
        return {key: entries[key] for key in sorted(entries)}

    @classmethod
    def from_primitive(cls, item: dict[int, Any]) -> WitnessSet:
        vkeys = _as_list(item.get(_VKEY_WITNESSES, []))
        scripts: list[PlutusScript] = []
        for version, key in _SCRIPT_KEYS.items():
            scripts.extend(PlutusScript(version, bytes(s)) for s in _as_list(item.get(key, [])))
        return cls(
            vkey_witnesses=tuple(VKeyWitness(bytes(v), bytes(s)) for v, s in vkeys),
            scripts=tuple(scripts),
            redeemers=_decode_redeemers(item.get(_REDEEMERS, [])),
            datums=tuple(codec.reencode(d) for d in _as_list(item.get(_DATUMS, []))),
        )


# ---------------------------------------------------------------------------
# Transaction
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Transaction:
    """A complete transaction: body, witnesses, validity flag, no metadata."""

    body: TransactionBody
    witness_set: WitnessSet = field(default_factory=WitnessSet)
    is_valid: bool = True

    def to_primitive(self) -> list[Any]:
        return [self.body.to_primitive(), self.witness_set.to_primitive(), self.is_valid, None]

    def to_cbor(self) -> bytes:
        """Serialize to the ledger's binary encoding."""
        return codec.dumps(self.to_primitive())

    def to_hex(self) -> str:
        return self.to_cbor().hex()

    @classmethod
    def from_cbor(cls, data: bytes) -> Self:
        """Parse a serialized transaction.

        Raises:
            ValueError: If the bytes are not a well-formed transaction.
        """
        item = codec.loads(data)
        if not isinstance(item, list) or len(item) not in (3, 4):
            msg = "Not a transaction: expected a 3 or 4 element array"
            raise ValueError(msg)
        body, witness_set = item[0], item[1]
        is_valid = item[2] if len(item) == 4 else True
        return cls(
            body=TransactionBody.from_primitive(body),
            witness_set=WitnessSet.from_primitive(witness_set),
            is_valid=is_valid,
        )

    @classmethod
    def from_hex(cls, hex_str: str) -> Self:
        return cls.from_cbor(bytes.fromhex(hex_str))

    @property
    def tx_hash(self) -> bytes:
        return self.body.hash

    @property
    def tx_id(self) -> str:
        """Transaction id as hex."""
        return self.tx_hash.hex()

    @property
    def size(self) -> int:
        """Serialized size in bytes."""
        return len(self.to_cbor())


def script_data_hash(
    redeemers: tuple[Redeemer, ...],
    params: ProtocolParameters,
    datums: tuple[bytes, ...] = (),
) -> bytes | None:
    """Hash binding redeemers, witness datums and cost models into the body.

    None when there are neither redeemers nor datums. Datums without
    redeemers are hashed with an empty language view map.
    """
    if not redeemers and not datums:
        return None
    preimage = encode_redeemers(redeemers)
    if datums:
        preimage += codec.dumps([codec.RawCBOR(d) for d in datums])
    preimage += params.cost_model_views if redeemers else _EMPTY_LANGUAGE_VIEWS
    return blake2b_256(preimage)
