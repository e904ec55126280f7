"""JSON-RPC data models — requests, responses, error codes, value decoding.

Matches the Ogmios v6 JSON-RPC 2.0 contract:
- ``submitTransaction`` → ``{"transaction": {"id": ...}}``
- ``evaluateTransaction`` → ``[{"validator": ..., "budget": {"memory", "cpu"}}]``
- ``queryTransaction`` → ``{"status": ..., "blockHeight": ...}``
- ``queryLedgerState/utxo`` → ``[{"transaction", "index", "address", "value", ...}]``
"""

from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from typing import Any

from txforge.ledger.address import Address
from txforge.ledger.primitives import DatumHash, ExecutionUnits, InlineDatum, RedeemerKey, TxIn, UTxO
from txforge.ledger.value import AssetId, Value

# ---------------------------------------------------------------------------
# Methods and error codes
# ---------------------------------------------------------------------------


class Method(enum.StrEnum):
    SUBMIT_TRANSACTION = "submitTransaction"
    EVALUATE_TRANSACTION = "evaluateTransaction"
    QUERY_TRANSACTION = "queryTransaction"
    QUERY_UTXO = "queryLedgerState/utxo"


DESERIALIZATION_ERROR = -32602
SCRIPT_EXECUTION_FAILURE = 3010

# Evaluation errors that are not about a particular script
EVALUATION_CONTEXT_ERRORS = frozenset({3000, 3001, 3002, 3003, 3004, 3005})

# Ledger rejection codes, named as the ledger names them
REJECTION_REASONS: dict[int, str] = {
    DESERIALIZATION_ERROR: "DeserialisationFailure",
    3005: "EraMismatch",
    3010: "ScriptExecutionFailure",
    3011: "InvalidRedeemerPointers",
    3012: "ValidationFailure",
    3013: "UnsuitableOutputReference",
    3100: "InvalidSignatories",
    3101: "MissingSignatories",
    3102: "MissingScripts",
    3103: "FailingNativeScript",
    3104: "ExtraneousScripts",
    3109: "MissingRedeemers",
    3110: "ExtraneousRedeemers",
    3111: "MissingDatums",
    3112: "ExtraneousDatums",
    3113: "ScriptIntegrityHashMismatch",
    3114: "OrphanScriptInputs",
    3115: "MissingCostModels",
    3116: "MalformedScripts",
    3117: "UnknownOutputReference",
    3118: "OutsideOfValidityInterval",
    3119: "TransactionTooLarge",
    3120: "ValueTooLarge",
    3121: "EmptyInputSet",
    3122: "FeeTooSmall",
    3123: "ValueNotConserved",
    3124: "NetworkMismatch",
    3125: "InsufficientlyFundedOutputs",
    3127: "MintingOrBurningAda",
    3128: "InsufficientCollateral",
    3129: "CollateralLockedByScript",
    3130: "UnforeseeableSlot",
    3131: "TooManyCollateralInputs",
    3132: "MissingCollateralInputs",
    3133: "NonAdaCollateral",
    3134: "ExecutionUnitsTooLarge",
    3135: "TotalCollateralMismatch",
    3136: "SpendsMismatch",
}


def rejection_reason(code: int) -> str:
    """Ledger-style name for an error code (``Code<n>`` when unknown)."""
    return REJECTION_REASONS.get(code, f"Code{code}")


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


@dataclass
class RpcRequest:
    """A JSON-RPC 2.0 request with a client-generated correlation id."""

    method: str
    params: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def to_dict(self) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "method": self.method, "params": self.params, "id": self.id}


@dataclass
class RpcError:
    """The ``error`` member of a failed response."""

    code: int = 0
    message: str = ""
    data: Any = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RpcError:
        return cls(
            code=int(data.get("code", 0)),
            message=str(data.get("message", "")),
            data=data.get("data"),
        )


@dataclass
class RpcResponse:
    """A JSON-RPC 2.0 response; exactly one of ``result`` and ``error`` is meaningful."""

    id: str | None = None
    result: Any = None
    error: RpcError | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RpcResponse:
        error = data.get("error")
        return cls(
            id=data.get("id"),
            result=data.get("result"),
            error=RpcError.from_dict(error) if isinstance(error, dict) else None,
        )


# ---------------------------------------------------------------------------
# Result decoding
# ---------------------------------------------------------------------------


def parse_validator(validator: Any) -> RedeemerKey:
    """Accept both ``"spend:0"`` and ``{"purpose": "spend", "index": 0}``."""
    if isinstance(validator, str):
        return RedeemerKey.parse(validator)
    return RedeemerKey.parse(f"{validator['purpose']}:{validator['index']}")


def parse_evaluation(result: list[dict[str, Any]]) -> dict[RedeemerKey, ExecutionUnits]:
    """Decode an ``evaluateTransaction`` result."""
    return {
        parse_validator(item["validator"]): ExecutionUnits(
            int(item["budget"]["memory"]),
            int(item["budget"]["cpu"]),
        )
        for item in result
    }


def first_script_failure(data: Any) -> tuple[str | None, str]:
    """Pick the first ``(validator, reason)`` pair out of a 3010 error payload."""
    if isinstance(data, list) and data:
        entry = data[0]
        validator = entry.get("validator")
        key = str(parse_validator(validator)) if validator is not None else None
        error = entry.get("error", {})
        reason = error.get("message", str(error)) if isinstance(error, dict) else str(error)
        return key, reason
    return None, str(data)


def parse_value(data: dict[str, dict[str, int]]) -> Value:
    """Decode ``{"ada": {"lovelace": n}, "<policy>": {"<name>": qty}}``."""
    coin = int(data.get("ada", {}).get("lovelace", 0))
    tokens = {
        AssetId(bytes.fromhex(policy), bytes.fromhex(name)): int(quantity)
        for policy, assets in data.items()
        if policy != "ada"
        for name, quantity in assets.items()
    }
    return Value(tokens, coin=coin)


def parse_utxo(data: dict[str, Any]) -> UTxO:
    """Decode one ``queryLedgerState/utxo`` entry."""
    datum = None
    if data.get("datum"):
        datum = InlineDatum(bytes.fromhex(data["datum"]))
    elif data.get("datumHash"):
        datum = DatumHash(bytes.fromhex(data["datumHash"]))
    return UTxO(
        ref=TxIn(bytes.fromhex(data["transaction"]["id"]), int(data["index"])),
        address=Address.from_bech32(data["address"]),
        value=parse_value(data["value"]),
        datum=datum,
    )
