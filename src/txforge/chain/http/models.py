"""REST response decoding — evaluation results, UTxO listings, rejection names.

Matches the Blockfrost v0 JSON shapes:
- ``POST /utils/txs/evaluate`` → ``{"result": {"EvaluationResult": {"spend:0": {...}}}}``
- ``GET /addresses/{address}/utxos`` → ``[{"tx_hash", "output_index", "amount", ...}]``
"""

from __future__ import annotations

import re
from typing import Any

from txforge.ledger.address import Address
from txforge.ledger.primitives import DatumHash, ExecutionUnits, InlineDatum, RedeemerKey, TxIn, UTxO
from txforge.ledger.value import AssetId, Value

# Ledger failure names that can appear in a submit error message, most specific first
KNOWN_REJECTIONS: tuple[str, ...] = (
    "BadInputsUTxO",
    "ValueNotConservedUTxO",
    "FeeTooSmallUTxO",
    "OutsideValidityIntervalUTxO",
    "ExpiredUTxO",
    "MaxTxSizeUTxO",
    "OutputTooSmallUTxO",
    "InsufficientCollateral",
    "CollateralContainsNonADA",
    "NoCollateralInputs",
    "ExUnitsTooBigUTxO",
    "WrongNetwork",
    "MissingVKeyWitnessesUTXOW",
    "MissingScriptWitnessesUTXOW",
    "MissingRedeemers",
    "ExtraRedeemers",
    "PPViewHashesDontMatch",
    "ScriptWitnessNotValidatingUTXOW",
)

DEFAULT_REJECTION = "BadRequest"

_WORD = re.compile(r"[A-Za-z]+")


def rejection_from_message(message: str) -> str:
    """Pick the ledger failure name out of a free-form error message."""
    words = set(_WORD.findall(message))
    for name in KNOWN_REJECTIONS:
        if name in words:
            return name
    return DEFAULT_REJECTION


def parse_evaluation(data: dict[str, Any]) -> dict[RedeemerKey, ExecutionUnits]:
    """Decode the ``EvaluationResult`` member of an evaluation response."""
    return {
        RedeemerKey.parse(key): ExecutionUnits(int(budget["memory"]), int(budget["steps"]))
        for key, budget in data.items()
    }


def first_failure(data: Any) -> tuple[str | None, str]:
    """Pick the first ``(redeemer, reason)`` out of an ``EvaluationFailure`` member."""
    failures = data.get("ScriptFailures") if isinstance(data, dict) else None
    if isinstance(failures, dict) and failures:
        key, reasons = next(iter(failures.items()))
        reason = reasons[0] if isinstance(reasons, list) and reasons else reasons
        return str(RedeemerKey.parse(key)), str(reason)
    return None, str(data)


def parse_amount(amount: list[dict[str, str]]) -> Value:
    """Decode ``[{"unit": "lovelace", "quantity": "..."}, ...]``."""
    coin = 0
    tokens: dict[AssetId, int] = {}
    for entry in amount:
        asset = AssetId.from_unit(entry["unit"])
        if asset.is_base:
            coin += int(entry["quantity"])
        else:
            tokens[asset] = tokens.get(asset, 0) + int(entry["quantity"])
    return Value(tokens, coin=coin)


def parse_utxo(data: dict[str, Any]) -> UTxO:
    datum = None
    if data.get("inline_datum"):
        datum = InlineDatum(bytes.fromhex(data["inline_datum"]))
    elif data.get("data_hash"):
        datum = DatumHash(bytes.fromhex(data["data_hash"]))
    script_hash = data.get("reference_script_hash")
    return UTxO(
        ref=TxIn(bytes.fromhex(data["tx_hash"]), int(data["output_index"])),
        address=Address.from_bech32(data["address"]),
        value=parse_amount(data["amount"]),
        datum=datum,
        script_hash=bytes.fromhex(script_hash) if script_hash else None,
    )
