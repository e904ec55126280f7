"""Builder — intent collection, coin selection, balancing and script costing."""

from txforge.builder.accumulator import TransactionBuilder
from txforge.builder.balancer import BalancedDraft, Balancer
from txforge.builder.evaluation import ScriptEvaluator
from txforge.builder.intents import (
    AttachDatum,
    DelegateStake,
    DeregisterStake,
    Intent,
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
from txforge.builder.selection import CoinSelector, LargestDeficitFirst

__all__ = [
    "AttachDatum",
    "BalancedDraft",
    "Balancer",
    "CoinSelector",
    "DelegateStake",
    "DeregisterStake",
    "Intent",
    "IntentSet",
    "InvokeScript",
    "LargestDeficitFirst",
    "Mint",
    "PadFee",
    "ProduceOutput",
    "RegisterStake",
    "RequireSigner",
    "ScriptEvaluator",
    "SetChangeDatum",
    "SetCollateralReturn",
    "SetValidityInterval",
    "SpendInput",
    "TransactionBuilder",
    "WithdrawRewards",
]
