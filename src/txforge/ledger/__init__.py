"""Ledger — values, addresses, protocol parameters and the transaction codec."""

from txforge.ledger.address import Address
from txforge.ledger.certificates import (
    StakeCredential,
    StakeDelegation,
    StakeDeregistration,
    StakeRegistration,
)
from txforge.ledger.params import MAINNET, PREVIEW, NetworkId, ProtocolParameters
from txforge.ledger.primitives import (
    DatumHash,
    ExecutionUnits,
    InlineDatum,
    PlutusScript,
    RedeemerKey,
    RedeemerTag,
    ReferenceScript,
    TxIn,
    UTxO,
    ValidityInterval,
)
from txforge.ledger.transaction import (
    Redeemer,
    Transaction,
    TransactionBody,
    TransactionOutput,
    VKeyWitness,
    WitnessSet,
)
from txforge.ledger.value import BASE_ASSET, AssetId, Value

__all__ = [
    "BASE_ASSET",
    "MAINNET",
    "PREVIEW",
    "Address",
    "AssetId",
    "DatumHash",
    "ExecutionUnits",
    "InlineDatum",
    "NetworkId",
    "PlutusScript",
    "ProtocolParameters",
    "Redeemer",
    "RedeemerKey",
    "RedeemerTag",
    "ReferenceScript",
    "StakeCredential",
    "StakeDelegation",
    "StakeDeregistration",
    "StakeRegistration",
    "Transaction",
    "TransactionBody",
    "TransactionOutput",
    "TxIn",
    "UTxO",
    "VKeyWitness",
    "ValidityInterval",
    "Value",
    "WitnessSet",
]
