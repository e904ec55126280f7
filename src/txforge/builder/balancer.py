"""Resolution and balancing engine.

Turns an :class:`IntentSet` plus a candidate UTxO set into a balanced,
unsigned transaction. Fee, coin selection, change and script budgets all
depend on each other, so the engine iterates until the tuple

    (inputs, collateral, fee, execution units)

stops changing. Each iteration:

1. computes the deficit ``outputs + burns + fee + deposits - inputs -
   mints - withdrawals - refunds``;
2. selects candidates for any positive component;
3. places the leftover in a change output, or folds dust into the fee;
4. picks collateral when the draft carries redeemers, returning the
   excess when a collateral return address is set;
5. re-estimates the fee with placeholder witnesses for every signatory;
6. asks the evaluator for execution units when redeemers exist.

Every iteration builds a fresh :class:`TransactionBody`; nothing already
built is mutated. All of them are kept on the result for inspection.
"""

from __future__ import annotations

import logging
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Protocol

from txforge.builder.fee import min_fee, placeholder_witnesses
from txforge.builder.intents import (
    DelegateStake,
    DeregisterStake,
    IntentSet,
    InvokeScript,
    Mint,
    ProduceOutput,
    RegisterStake,
    RequireSigner,
    SpendInput,
)
from txforge.builder.selection import CoinSelector, LargestDeficitFirst
from txforge.errors.builder_errors import (
    BalancingDidNotConverge,
    ExecutionUnitsTooLarge,
    InsufficientFunds,
    InvalidIntent,
    TransactionTooLarge,
)
from txforge.ledger.certificates import StakeDelegation, StakeDeregistration, StakeRegistration
from txforge.ledger.primitives import (
    DatumHash,
    ExecutionUnits,
    PlutusScript,
    RedeemerKey,
    RedeemerTag,
    ReferenceScript,
    TxIn,
)
from txforge.ledger.transaction import (
    Redeemer,
    Transaction,
    TransactionBody,
    TransactionOutput,
    WitnessSet,
    script_data_hash,
)
from txforge.ledger.value import AssetId, Value
from txforge.utils.crypto import blake2b_256

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    from txforge.ledger.address import Address
    from txforge.ledger.certificates import Certificate, StakeCredential
    from txforge.ledger.params import ProtocolParameters
    from txforge.ledger.primitives import UTxO
    from txforge.metrics.collector import PipelineMetrics

logger = logging.getLogger(__name__)

DEFAULT_MAX_ITERATIONS = 10


class Evaluator(Protocol):
    """Anything that can cost a draft's redeemers."""

    async def evaluate(
        self,
        draft_tx: Transaction,
        redeemer_keys: Sequence[RedeemerKey],
    ) -> dict[RedeemerKey, ExecutionUnits]: ...


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalancedDraft:
    """A balanced, unsigned transaction and the evidence behind it.

    Attributes:
        transaction: The draft, with scripts and redeemers but no signatures.
        intents: The intents the draft was built from.
        change_address: Where leftover value goes.
        inputs: Every UTxO spent, in ledger order.
        selected: The subset of ``inputs`` chosen by coin selection.
        collateral: Collateral UTxOs (empty without redeemers).
        signatories: Key hashes that must sign, sorted.
        required_fee: The minimum fee of the final draft; ``body.fee`` is
            larger when a dust leftover was folded into it.
        iterations: Iterations taken to reach the fixed point.
        history: The body produced by every iteration, last one final.
    """

    transaction: Transaction
    intents: IntentSet
    change_address: Address
    inputs: tuple[UTxO, ...]
    selected: tuple[UTxO, ...]
    collateral: tuple[UTxO, ...]
    signatories: tuple[bytes, ...]
    required_fee: int
    iterations: int
    history: tuple[TransactionBody, ...] = field(default=(), compare=False, repr=False)

    @property
    def body(self) -> TransactionBody:
        return self.transaction.body

    @property
    def fee(self) -> int:
        return self.transaction.body.fee

    @property
    def tx_hash(self) -> bytes:
        return self.transaction.tx_hash

    @property
    def change(self) -> TransactionOutput | None:
        """The change output, if one was created."""
        explicit = len(self.intents.outputs)
        outputs = self.transaction.body.outputs
        return outputs[explicit] if len(outputs) > explicit else None

    @property
    def execution_units(self) -> ExecutionUnits:
        total = ExecutionUnits()
        for redeemer in self.transaction.witness_set.redeemers:
            total = total + redeemer.ex_units
        return total


# ---------------------------------------------------------------------------
# Intent resolution
# ---------------------------------------------------------------------------

# A redeemer's owner: the input it unlocks, the policy it mints under, the
# position of its certificate or the reward account it withdraws from
_Owner = tuple[RedeemerTag, TxIn | bytes | int]


@dataclass(frozen=True)
class _Resolved:
    """Everything derived once from the intents, before iterating."""

    fixed_inputs: tuple[UTxO, ...]
    outputs: tuple[TransactionOutput, ...]
    mint: Value
    signers: tuple[bytes, ...]
    scripts: tuple[PlutusScript, ...]
    reference_inputs: tuple[TxIn, ...]
    redeemer_data: dict[_Owner, bytes]
    budgets: dict[_Owner, ExecutionUnits]
    certificates: tuple[Certificate, ...] = ()
    withdrawals: tuple[tuple[bytes, int], ...] = ()
    datums: tuple[bytes, ...] = ()
    deposits: int = 0
    refunds: int = 0
    stake_signers: tuple[bytes, ...] = ()

    @property
    def has_redeemers(self) -> bool:
        return bool(self.redeemer_data)

    @property
    def withdrawn(self) -> int:
        return sum(amount for _, amount in self.withdrawals)

    def redeemer_keys(self, input_refs: Sequence[TxIn]) -> dict[_Owner, RedeemerKey]:
        """Ledger indices for every redeemer.

        Spends index the sorted inputs, mints the sorted policy ids,
        certificates their body position and withdrawals the sorted
        reward accounts.
        """
        targets: list[tuple[RedeemerTag, Sequence[TxIn | bytes | int]]] = [
            (RedeemerTag.SPEND, input_refs),
            (RedeemerTag.MINT, sorted(self.mint.multiasset())),
            (RedeemerTag.CERT, range(len(self.certificates))),
            (RedeemerTag.REWARD, [account for account, _ in self.withdrawals]),
        ]
        keys: dict[_Owner, RedeemerKey] = {}
        for tag, owners in targets:
            for index, target in enumerate(owners):
                if (tag, target) in self.redeemer_data:
                    keys[tag, target] = RedeemerKey(tag, index)
        return keys

    def redeemers(
        self,
        input_refs: Sequence[TxIn],
        units: dict[_Owner, ExecutionUnits],
    ) -> tuple[Redeemer, ...]:
        out = [
            Redeemer(key.tag, key.index, self.redeemer_data[owner], units[owner])
            for owner, key in self.redeemer_keys(input_refs).items()
        ]
        return tuple(sorted(out, key=lambda r: r.key))


def _resolve(
    intents: IntentSet,
    params: ProtocolParameters,
    network_id: int,
    *,
    has_evaluator: bool,
) -> _Resolved:
    fixed_inputs: list[UTxO] = []
    outputs: list[TransactionOutput] = []
    mint_amounts: dict[AssetId, int] = {}
    signers: set[bytes] = set()
    invoked: dict[bytes, InvokeScript] = {}
    explicit_spend: dict[TxIn, bytes | None] = {}
    explicit_mint: dict[bytes, bytes] = {}

    for intent in intents:
        match intent:
            case SpendInput(utxo=utxo, redeemer=redeemer):
                fixed_inputs.append(utxo)
                explicit_spend[utxo.ref] = redeemer
            case ProduceOutput(address=address, value=value, datum=datum):
                output = TransactionOutput(address, value, datum)
                required = output.min_ada(params)
                if value.coin < required:
                    msg = f"output to {address} carries {value.coin}, below its minimum of {required}"
                    raise InvalidIntent(msg)
                outputs.append(output)
            case Mint(policy_id=policy_id, redeemer=redeemer):
                mint_amounts[intent.asset] = mint_amounts.get(intent.asset, 0) + intent.amount
                if redeemer is not None:
                    if explicit_mint.get(policy_id, redeemer) != redeemer:
                        msg = f"conflicting redeemers for policy {policy_id.hex()}"
                        raise InvalidIntent(msg)
                    explicit_mint[policy_id] = redeemer
            case RequireSigner(key_hash=key_hash):
                signers.add(key_hash)
            case InvokeScript():
                invoked[intent.script_hash] = intent
            case _:
                # stake, datum and settings intents are read off the set below
                pass

    mint = Value(mint_amounts)
    attached = {blake2b_256(d) for d in intents.datums}

    redeemer_data: dict[_Owner, bytes] = {}
    budgets: dict[_Owner, ExecutionUnits] = {}

    def redeem(owner: _Owner, redeemer: bytes, script: InvokeScript | None) -> None:
        redeemer_data[owner] = redeemer
        budgets[owner] = _placeholder_budget(owner, script, has_evaluator=has_evaluator)

    for utxo in fixed_inputs:
        script_hash = utxo.address.payment_script_hash
        script = invoked.get(script_hash) if script_hash is not None else None
        redeemer = explicit_spend[utxo.ref]
        if redeemer is None and script is not None:
            redeemer = script.redeemer
        if redeemer is None:
            if script_hash is not None:
                msg = f"script-locked input {utxo.ref} has no redeemer"
                raise InvalidIntent(msg)
            continue
        if isinstance(utxo.datum, DatumHash) and utxo.datum.hash not in attached:
            msg = f"datum {utxo.datum.hash.hex()} for input {utxo.ref} is not attached"
            raise InvalidIntent(msg)
        redeem((RedeemerTag.SPEND, utxo.ref), redeemer, script)

    for policy_id in mint.multiasset():
        script = invoked.get(policy_id)
        redeemer = explicit_mint.get(policy_id)
        if redeemer is None and script is not None:
            redeemer = script.redeemer
        if redeemer is None:
            msg = f"minting under policy {policy_id.hex()} requires a redeemer"
            raise InvalidIntent(msg)
        redeem((RedeemerTag.MINT, policy_id), redeemer, script)

    stake_signers: set[bytes] = set()

    def authorize(
        owner: _Owner,
        credential: StakeCredential,
        explicit: bytes | None,
        *,
        required: bool,
    ) -> None:
        if not credential.is_script:
            if explicit is not None:
                msg = f"key credential {credential} cannot take a redeemer"
                raise InvalidIntent(msg)
            stake_signers.add(credential.hash)
            return
        script = invoked.get(credential.hash)
        redeemer = explicit if explicit is not None else (script.redeemer if script else None)
        if redeemer is None:
            if required:
                msg = f"script credential {credential} needs a redeemer"
                raise InvalidIntent(msg)
            return
        redeem(owner, redeemer, script)

    certificates: list[Certificate] = []
    deposits = refunds = 0
    for index, action in enumerate(intents.stake_actions):
        owner = (RedeemerTag.CERT, index)
        match action:
            case RegisterStake(credential=credential):
                certificates.append(StakeRegistration(credential, params.key_deposit))
                deposits += params.key_deposit
                authorize(owner, credential, action.redeemer, required=False)
            case DeregisterStake(credential=credential):
                certificates.append(StakeDeregistration(credential, params.key_deposit))
                refunds += params.key_deposit
                authorize(owner, credential, action.redeemer, required=True)
            case DelegateStake(credential=credential, pool_id=pool_id):
                certificates.append(StakeDelegation(credential, pool_id))
                authorize(owner, credential, action.redeemer, required=False)

    withdrawals: list[tuple[bytes, int]] = []
    for withdrawal in intents.withdrawals:
        account = withdrawal.credential.reward_account(network_id).raw
        withdrawals.append((account, withdrawal.amount))
        authorize(
            (RedeemerTag.REWARD, account),
            withdrawal.credential,
            withdrawal.redeemer,
            required=True,
        )

    scripts = tuple(i.script for i in invoked.values() if isinstance(i.script, PlutusScript))
    reference_inputs = tuple(
        sorted({i.script.utxo_ref for i in invoked.values() if isinstance(i.script, ReferenceScript)})
    )

    return _Resolved(
        fixed_inputs=tuple(fixed_inputs),
        outputs=tuple(outputs),
        mint=mint,
        signers=tuple(sorted(signers)),
        scripts=scripts,
        reference_inputs=reference_inputs,
        redeemer_data=redeemer_data,
        budgets=budgets,
        certificates=tuple(certificates),
        withdrawals=tuple(sorted(withdrawals)),
        datums=intents.datums,
        deposits=deposits,
        refunds=refunds,
        stake_signers=tuple(sorted(stake_signers)),
    )


def _placeholder_budget(owner: _Owner, script: InvokeScript | None, *, has_evaluator: bool) -> ExecutionUnits:
    if script is not None and script.budget is not None:
        return script.budget
    if not has_evaluator:
        tag, target = owner
        name = target.hex() if isinstance(target, bytes) else str(target)
        msg = f"{tag.name.lower()} redeemer for {name} has no budget and no evaluator is configured"
        raise InvalidIntent(msg)
    return ExecutionUnits()


# ---------------------------------------------------------------------------
# Balancer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class _LoopState:
    """The tuple whose stability ends the loop."""

    inputs: tuple[TxIn, ...]
    collateral: tuple[TxIn, ...]
    fee: int
    units: tuple[tuple[RedeemerKey, ExecutionUnits], ...]


def _key_locked(utxo: UTxO) -> bool:
    return utxo.address.payment_key_hash is not None


class Balancer:
    """Iterates fee, selection, change and script budgets to a fixed point.

    Usage::

        balancer = Balancer(params, evaluator=ScriptEvaluator(backend))
        draft = await balancer.balance(intents, candidates, change_address)
    """

    def __init__(
        self,
        params: ProtocolParameters,
        *,
        evaluator: Evaluator | None = None,
        selector: CoinSelector | None = None,
        max_iterations: int = DEFAULT_MAX_ITERATIONS,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """Initialize the balancer.

        Args:
            params: Protocol parameters used for every fee and min-ADA rule.
            evaluator: Script evaluator; required for redeemers without a budget.
            selector: Coin selection strategy (default :class:`LargestDeficitFirst`).
            max_iterations: Iterations allowed before giving up.
            metrics: Optional metrics sink.
        """
        self._params = params
        self._evaluator = evaluator
        self._selector = selector or LargestDeficitFirst()
        self._max_iterations = max_iterations
        self._metrics = metrics

    @property
    def params(self) -> ProtocolParameters:
        return self._params

    async def balance(
        self,
        intents: IntentSet,
        candidates: Iterable[UTxO],
        change_address: Address,
    ) -> BalancedDraft:
        """Balance ``intents`` using ``candidates`` for any shortfall.

        Raises:
            InvalidIntent: If an intent cannot be honoured.
            InsufficientFunds: If the candidates cannot cover the deficit.
            BalancingDidNotConverge: If no fixed point is reached in time.
            TransactionTooLarge: If the result exceeds ``max_tx_size``.
            ExecutionUnitsTooLarge: If summed budgets exceed the limit.
            ScriptEvaluationError: If the evaluator rejects a script.
        """
        return await self._run(intents, tuple(candidates), change_address)

    async def rebalance(self, draft: BalancedDraft, candidates: Iterable[UTxO]) -> BalancedDraft:
        """Run the loop again, seeded with ``draft``'s selection, fee and budgets.

        Balancing an already balanced draft returns the same transaction.
        """
        units = {r.key: r.ex_units for r in draft.transaction.witness_set.redeemers}
        seed = _LoopState(
            inputs=tuple(u.ref for u in draft.inputs),
            collateral=tuple(u.ref for u in draft.collateral),
            fee=draft.required_fee,
            units=tuple(sorted(units.items())),
        )
        return await self._run(
            draft.intents,
            tuple(candidates),
            draft.change_address,
            seed=seed,
            seed_selected=draft.selected,
            seed_units=units,
        )

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    async def _run(
        self,
        intents: IntentSet,
        candidates: tuple[UTxO, ...],
        change_address: Address,
        *,
        seed: _LoopState | None = None,
        seed_selected: tuple[UTxO, ...] = (),
        seed_units: dict[RedeemerKey, ExecutionUnits] | None = None,
    ) -> BalancedDraft:
        resolved = _resolve(
            intents,
            self._params,
            change_address.network_id,
            has_evaluator=self._evaluator is not None,
        )
        fixed_refs = {u.ref for u in resolved.fixed_inputs}
        fixed_total = Value.sum(u.value for u in resolved.fixed_inputs)
        outputs_total = Value.sum(o.value for o in resolved.outputs)
        credits = Value.lovelace(resolved.withdrawn + resolved.refunds)

        selected: list[UTxO] = list(seed_selected)
        fee = seed.fee if seed is not None else 0
        units: dict[_Owner, ExecutionUnits] = dict(resolved.budgets)
        if seed is not None and seed_units:
            seed_refs = sorted(fixed_refs | {u.ref for u in seed_selected})
            for owner, key in resolved.redeemer_keys(seed_refs).items():
                if key in seed_units:
                    units[owner] = seed_units[key]

        previous = seed
        history: list[TransactionBody] = []

        def change_output(value: Value) -> TransactionOutput:
            return TransactionOutput(change_address, value, intents.change_datum)

        with self._track_balance():
            for iteration in range(1, self._max_iterations + 1):
                # 1-2. deficit and selection
                required = outputs_total - resolved.mint + Value.lovelace(fee + resolved.deposits)
                provided = fixed_total + credits + Value.sum(u.value for u in selected)
                deficit = required - provided
                if not resolved.fixed_inputs and not selected:
                    # the ledger rejects a transaction without inputs
                    deficit = deficit.with_coin(max(deficit.coin, 1))
                if any(qty > 0 for qty in deficit.values()):
                    selected += self._select(deficit, candidates, fixed_refs, selected)

                # 3. change, topping up base asset when a token change is short
                leftover = fixed_total + credits + Value.sum(u.value for u in selected) - required
                while leftover.has_tokens:
                    shortfall = change_output(leftover).min_ada(self._params) - leftover.coin
                    if shortfall <= 0:
                        break
                    selected += self._select(Value.lovelace(shortfall), candidates, fixed_refs, selected)
                    leftover = fixed_total + credits + Value.sum(u.value for u in selected) - required

                inputs = sorted([*resolved.fixed_inputs, *selected], key=lambda u: u.ref)
                input_refs = [u.ref for u in inputs]

                # 4. collateral
                collateral: tuple[UTxO, ...] = ()
                collateral_return: TransactionOutput | None = None
                total_collateral: int | None = None
                if resolved.has_redeemers:
                    collateral = (self._pick_collateral(fee, candidates, resolved.fixed_inputs),)
                    if intents.collateral_return is not None:
                        collateral_return = self._collateral_return(
                            fee, collateral, intents.collateral_return
                        )
                        if collateral_return is not None:
                            total_collateral = self._collateral_required(fee)

                signatories = self._signatories(resolved, inputs, collateral)
                redeemers = resolved.redeemers(input_refs, units)

                template = Transaction(
                    TransactionBody(
                        inputs=tuple(input_refs),
                        outputs=resolved.outputs,
                        fee=fee,
                        validity=intents.validity,
                        mint=resolved.mint,
                        script_data_hash=script_data_hash(redeemers, self._params, resolved.datums),
                        collateral=tuple(sorted(u.ref for u in collateral)),
                        required_signers=resolved.signers,
                        reference_inputs=resolved.reference_inputs,
                        certificates=resolved.certificates,
                        withdrawals=resolved.withdrawals,
                        collateral_return=collateral_return,
                        total_collateral=total_collateral,
                    ),
                    WitnessSet(scripts=resolved.scripts, redeemers=redeemers, datums=resolved.datums),
                )
                with_change = _with_body(
                    template,
                    outputs=(*resolved.outputs, change_output(leftover)),
                )

                if leftover.has_tokens:
                    tx = with_change
                elif leftover.coin > 0:
                    fee_with_change = self._estimate_fee(with_change, signatories) + intents.fee_padding
                    change_after_fee = change_output(
                        Value.lovelace(max(leftover.coin + fee - fee_with_change, 0))
                    )
                    if change_after_fee.value.coin >= change_after_fee.min_ada(self._params):
                        tx = with_change
                    else:
                        logger.debug("Folding %d dust into the fee", leftover.coin)
                        tx = _with_body(template, fee=fee + leftover.coin)
                else:
                    tx = template

                # 5. fee with placeholder signatures, plus any requested padding
                new_fee = self._estimate_fee(tx, signatories) + intents.fee_padding

                # 6. execution units
                keys = resolved.redeemer_keys(input_refs)
                if keys and self._evaluator is not None:
                    evaluated = await self._evaluator.evaluate(tx, sorted(keys.values()))
                    units = {owner: evaluated[key] for owner, key in keys.items()}

                history.append(tx.body)
                state = _LoopState(
                    inputs=tuple(input_refs),
                    collateral=tuple(sorted(u.ref for u in collateral)),
                    fee=new_fee,
                    units=tuple(sorted((keys[o], u) for o, u in units.items() if o in keys)),
                )
                logger.debug(
                    "Iteration %d: %d inputs, fee %d -> %d",
                    iteration,
                    len(input_refs),
                    fee,
                    new_fee,
                )

                if state == previous:
                    draft = BalancedDraft(
                        transaction=tx,
                        intents=intents,
                        change_address=change_address,
                        inputs=tuple(inputs),
                        selected=tuple(sorted(selected, key=lambda u: u.ref)),
                        collateral=collateral,
                        signatories=signatories,
                        required_fee=new_fee,
                        iterations=iteration,
                        history=tuple(history),
                    )
                    self._check_limits(draft)
                    if self._metrics is not None:
                        self._metrics.observe_iterations(iteration)
                    logger.info(
                        "Balanced %s in %d iterations (fee %d)", tx.tx_id, iteration, tx.body.fee
                    )
                    return draft

                previous = state
                fee = new_fee

        raise BalancingDidNotConverge(self._max_iterations)

    # ------------------------------------------------------------------
    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _track_balance(self) -> AbstractContextManager[None]:
        if self._metrics is not None:
            return self._metrics.track_balance()
        return nullcontext()

    def _select(
        self,
        deficit: Value,
        candidates: Sequence[UTxO],
        fixed_refs: set[TxIn],
        selected: Sequence[UTxO],
    ) -> list[UTxO]:
        taken = fixed_refs | {u.ref for u in selected}
        pool = [u for u in candidates if u.ref not in taken and _key_locked(u)]
        return self._selector.select(deficit, pool)

    def _collateral_required(self, fee: int) -> int:
        return -((-fee * self._params.collateral_percentage) // 100)

    def _collateral_return(
        self,
        fee: int,
        collateral: Sequence[UTxO],
        address: Address,
    ) -> TransactionOutput | None:
        """Output giving back collateral beyond what the ledger may take.

        None when the excess would sit below the minimum output value.
        """
        excess = Value.sum(u.value for u in collateral).coin - self._collateral_required(fee)
        output = TransactionOutput(address, Value.lovelace(max(excess, 0)))
        if output.value.coin < output.min_ada(self._params):
            logger.debug("Collateral excess %d is too small to return", excess)
            return None
        return output

    def _pick_collateral(
        self,
        fee: int,
        candidates: Sequence[UTxO],
        fixed_inputs: Sequence[UTxO],
    ) -> UTxO:
        """Smallest key-locked, base-asset-only UTxO covering the collateral."""
        required = self._collateral_required(fee)
        seen: set[TxIn] = set()
        eligible: list[UTxO] = []
        for utxo in (*fixed_inputs, *candidates):
            if utxo.ref in seen:
                continue
            seen.add(utxo.ref)
            if _key_locked(utxo) and not utxo.value.has_tokens and utxo.value.coin >= required:
                eligible.append(utxo)
        if not eligible:
            raise InsufficientFunds(
                Value.lovelace(required),
                f"no key-locked, base-asset-only UTxO covers the collateral of {required}",
            )
        return min(eligible, key=lambda u: (u.value.coin, u.ref))

    @staticmethod
    def _signatories(
        resolved: _Resolved,
        inputs: Sequence[UTxO],
        collateral: Sequence[UTxO],
    ) -> tuple[bytes, ...]:
        hashes = set(resolved.signers) | set(resolved.stake_signers)
        for utxo in (*inputs, *collateral):
            key_hash = utxo.address.payment_key_hash
            if key_hash is not None:
                hashes.add(key_hash)
        return tuple(sorted(hashes))

    def _estimate_fee(self, tx: Transaction, signatories: Sequence[bytes]) -> int:
        witnessed = Transaction(
            tx.body,
            replace(tx.witness_set, vkey_witnesses=placeholder_witnesses(signatories)),
            tx.is_valid,
        )
        return min_fee(witnessed, self._params)

    def _check_limits(self, draft: BalancedDraft) -> None:
        witnessed = Transaction(
            draft.body,
            replace(
                draft.transaction.witness_set,
                vkey_witnesses=placeholder_witnesses(draft.signatories),
            ),
        )
        if witnessed.size > self._params.max_tx_size:
            raise TransactionTooLarge(witnessed.size, self._params.max_tx_size)
        if draft.execution_units.exceeds(self._params.max_tx_ex_units):
            raise ExecutionUnitsTooLarge(draft.execution_units, self._params.max_tx_ex_units)


def _with_body(tx: Transaction, **changes: object) -> Transaction:
    """Copy of ``tx`` with some body fields replaced."""
    return replace(tx, body=replace(tx.body, **changes))
