"""Tests for the resolution and balancing engine — builder/balancer.py."""

from __future__ import annotations

from dataclasses import replace

import pytest

from txforge.builder.accumulator import TransactionBuilder
from txforge.builder.balancer import Balancer
from txforge.builder.fee import min_fee, placeholder_witnesses
from txforge.errors.builder_errors import (
    BalancingDidNotConverge,
    ExecutionUnitsTooLarge,
    InsufficientFunds,
    InvalidIntent,
    ScriptEvaluationError,
    TransactionTooLarge,
)
from txforge.ledger.address import Address
from txforge.ledger.certificates import (
    StakeCredential,
    StakeDelegation,
    StakeDeregistration,
    StakeRegistration,
)
from txforge.ledger.primitives import (
    DatumHash,
    ExecutionUnits,
    InlineDatum,
    PlutusScript,
    RedeemerKey,
    RedeemerTag,
    TxIn,
    UTxO,
)
from txforge.ledger.transaction import Transaction, WitnessSet, script_data_hash
from txforge.ledger.value import AssetId, Value
from txforge.metrics.collector import PipelineMetrics
from txforge.utils.crypto import blake2b_256

ADA = 1_000_000

_SCRIPT = PlutusScript(2, bytes.fromhex("4e4d01000033222220051200120011"))
_UNITS = ExecutionUnits(1_000, 1_000_000)


class FakeEvaluator:
    """Returns fixed units for every requested redeemer and records the calls."""

    def __init__(self, units: ExecutionUnits = _UNITS, error: Exception | None = None) -> None:
        self.units = units
        self.error = error
        self.calls: list[list[RedeemerKey]] = []

    async def evaluate(self, draft_tx, redeemer_keys):
        self.calls.append(list(redeemer_keys))
        if self.error is not None:
            raise self.error
        return {key: self.units for key in redeemer_keys}


def _assert_balanced(draft) -> None:
    consumed = Value.sum(u.value for u in draft.inputs) + draft.body.mint
    produced = Value.sum(o.value for o in draft.body.outputs) + Value.lovelace(draft.fee)
    assert consumed == produced


def _assert_min_ada(draft, params) -> None:
    for output in draft.body.outputs:
        assert output.value.coin >= output.min_ada(params)


def _expected_fee(draft, params) -> int:
    witnessed = Transaction(
        draft.body,
        WitnessSet(
            vkey_witnesses=placeholder_witnesses(draft.signatories),
            scripts=draft.transaction.witness_set.scripts,
            redeemers=draft.transaction.witness_set.redeemers,
        ),
    )
    return min_fee(witnessed, params)


# ---------------------------------------------------------------------------
# Simple payments
# ---------------------------------------------------------------------------


class TestSimplePayment:
    async def test_spend_with_change(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [coin], owner_address)

        assert draft.inputs == (coin,)
        assert len(draft.body.outputs) == 2
        assert draft.fee == _expected_fee(draft, params)
        assert draft.fee == draft.required_fee
        change = draft.change
        assert change is not None
        assert change.address == owner_address
        assert change.value == Value.lovelace(10 * ADA - 4 * ADA - draft.fee)
        _assert_balanced(draft)

    async def test_fee_formula(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [coin], owner_address)

        witnessed = Transaction(draft.body, WitnessSet(vkey_witnesses=placeholder_witnesses(draft.signatories)))
        assert draft.fee == params.min_fee_a * witnessed.size + params.min_fee_b

    async def test_insufficient_funds(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("five", Value.lovelace(5 * ADA), owner_address)
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(100 * ADA)).finish()

        with pytest.raises(InsufficientFunds):
            await Balancer(params).balance(intents, [coin], owner_address)

    async def test_selects_from_candidates(self, params, make_utxo, owner_address, recipient) -> None:
        coins = [make_utxo(f"c{i}", Value.lovelace(3 * ADA), owner_address) for i in range(5)]
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(7 * ADA)).finish()

        draft = await Balancer(params).balance(intents, coins, owner_address)

        assert len(draft.inputs) == 3
        assert draft.selected == draft.inputs
        assert [u.ref for u in draft.inputs] == sorted(u.ref for u in draft.inputs)
        _assert_balanced(draft)
        _assert_min_ada(draft, params)

    async def test_fee_pulls_in_another_input(self, params, make_utxo, owner_address, recipient) -> None:
        exact = make_utxo("exact", Value.lovelace(4 * ADA), owner_address)
        spare = make_utxo("spare", Value.lovelace(2 * ADA), owner_address)
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [exact, spare], owner_address)

        assert set(draft.inputs) == {exact, spare}
        _assert_balanced(draft)

    async def test_no_duplicate_inputs(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(3 * ADA), owner_address)
        other = make_utxo("d", Value.lovelace(3 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [coin, other], owner_address)

        refs = [u.ref for u in draft.inputs]
        assert len(refs) == len(set(refs))
        assert draft.selected == (other,)

    async def test_script_locked_candidates_not_selected(
        self, params, make_utxo, owner_address, recipient
    ) -> None:
        locked = make_utxo("locked", Value.lovelace(50 * ADA), Address.for_script(bytes(28), network_id=0))
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        with pytest.raises(InsufficientFunds):
            await Balancer(params).balance(intents, [locked], owner_address)

    async def test_output_below_min_ada(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(1_000)).finish()

        with pytest.raises(InvalidIntent, match="below its minimum"):
            await Balancer(params).balance(intents, [coin], owner_address)

    async def test_signatories_from_inputs_and_intents(
        self, params, make_utxo, owner_address, recipient, other_key
    ) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .pay_to(recipient, Value.lovelace(2 * ADA))
            .require_signer(other_key.key_hash)
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert set(draft.signatories) == {owner_address.payment_key_hash, other_key.key_hash}
        assert draft.body.required_signers == (other_key.key_hash,)
        assert draft.fee == _expected_fee(draft, params)

    async def test_validity_interval_carried(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .pay_to(recipient, Value.lovelace(2 * ADA))
            .valid_between(100, 500)
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.body.validity.lower == 100
        assert draft.body.validity.upper == 500


# ---------------------------------------------------------------------------
# Change handling
# ---------------------------------------------------------------------------


class TestChange:
    async def test_dust_folded_into_fee(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(1_200_000), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(1 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.change is None
        assert len(draft.body.outputs) == 1
        assert draft.fee == 200_000
        assert draft.fee > draft.required_fee
        _assert_balanced(draft)

    async def test_exact_spend_has_no_change(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()
        probe = await Balancer(params).balance(intents, [], owner_address)

        # What remains after the fee is far below the change minimum
        exact = Value.lovelace(10 * ADA - probe.required_fee)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, exact).finish()
        draft = await Balancer(params).balance(intents, [], owner_address)

        _assert_balanced(draft)
        assert draft.change is None

    async def test_token_change(self, params, make_utxo, owner_address, recipient) -> None:
        token = AssetId(bytes(range(28)), b"tok")
        coin = make_utxo("c", Value({token: 100}, coin=5 * ADA), owner_address)
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(2 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [coin], owner_address)

        change = draft.change
        assert change is not None
        assert change.value[token] == 100
        _assert_balanced(draft)
        _assert_min_ada(draft, params)

    async def test_token_change_tops_up_base_asset(
        self, params, make_utxo, owner_address, recipient
    ) -> None:
        token = AssetId(bytes(range(28)), b"tok")
        tokens = make_utxo("t", Value({token: 100}, coin=2 * ADA), owner_address)
        coin = make_utxo("c", Value.lovelace(1_500_000), owner_address)
        intents = TransactionBuilder().pay_to(recipient, Value({token: 40}, coin=1_200_000)).finish()

        draft = await Balancer(params).balance(intents, [tokens, coin], owner_address)

        assert set(draft.inputs) == {tokens, coin}
        change = draft.change
        assert change is not None
        assert change.value[token] == 60
        _assert_balanced(draft)
        _assert_min_ada(draft, params)

    async def test_paying_tokens(self, params, make_utxo, owner_address, recipient) -> None:
        token = AssetId(bytes(range(28)), b"tok")
        tokens = make_utxo("t", Value({token: 10}, coin=2 * ADA), owner_address)
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().pay_to(recipient, Value({token: 10}, coin=2 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [coin, tokens], owner_address)

        assert tokens in draft.inputs
        assert draft.body.outputs[0].value[token] == 10
        _assert_balanced(draft)


# ---------------------------------------------------------------------------
# Fixed point
# ---------------------------------------------------------------------------


class TestFixedPoint:
    async def test_rebalance_is_identity(self, params, make_utxo, owner_address, recipient) -> None:
        coins = [make_utxo(f"c{i}", Value.lovelace((i + 2) * ADA), owner_address) for i in range(6)]
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(9 * ADA)).finish()
        balancer = Balancer(params)
        draft = await balancer.balance(intents, coins, owner_address)

        again = await balancer.rebalance(draft, coins)

        assert again.transaction == draft.transaction
        assert again.iterations == 1

    async def test_rebalance_dust_draft(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(1_200_000), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(1 * ADA)).finish()
        balancer = Balancer(params)
        draft = await balancer.balance(intents, [], owner_address)

        again = await balancer.rebalance(draft, [])

        assert again.transaction == draft.transaction

    async def test_deterministic(self, params, make_utxo, owner_address, recipient) -> None:
        coins = [make_utxo(f"c{i}", Value.lovelace((i % 4 + 1) * ADA), owner_address) for i in range(12)]
        intents = TransactionBuilder().pay_to(recipient, Value.lovelace(11 * ADA)).finish()

        first = await Balancer(params).balance(intents, coins, owner_address)
        second = await Balancer(params).balance(intents, list(reversed(coins)), owner_address)

        assert first == second
        assert first.inputs == second.inputs
        assert first.change == second.change

    async def test_history_kept(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert len(draft.history) == draft.iterations
        assert draft.history[-1] == draft.body
        assert draft.history[0].fee == 0

    async def test_iteration_bound(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        with pytest.raises(BalancingDidNotConverge) as exc_info:
            await Balancer(params, max_iterations=1).balance(intents, [], owner_address)
        assert exc_info.value.iterations == 1

    async def test_metrics_recorded(self, params, make_utxo, owner_address, recipient) -> None:
        metrics = PipelineMetrics()
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        draft = await Balancer(params, metrics=metrics).balance(intents, [], owner_address)

        registry = metrics.registry
        assert registry.get_sample_value("txforge_balancing_iterations_count") == 1
        assert registry.get_sample_value("txforge_balancing_iterations_sum") == draft.iterations
        assert registry.get_sample_value("txforge_balance_duration_seconds_count") == 1


# ---------------------------------------------------------------------------
# Limits
# ---------------------------------------------------------------------------


class TestLimits:
    async def test_transaction_too_large(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).pay_to(recipient, Value.lovelace(4 * ADA)).finish()

        with pytest.raises(TransactionTooLarge) as exc_info:
            await Balancer(params.updated(max_tx_size=100)).balance(intents, [], owner_address)
        assert exc_info.value.limit == 100

    async def test_execution_units_too_large(self, params, make_utxo, owner_address) -> None:
        script_address = Address.for_script(_SCRIPT.script_hash, network_id=0)
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )
        evaluator = FakeEvaluator(ExecutionUnits(params.max_tx_ex_units.mem + 1, 1))

        with pytest.raises(ExecutionUnitsTooLarge):
            await Balancer(params, evaluator=evaluator).balance(intents, [collateral], owner_address)


# ---------------------------------------------------------------------------
# Scripts
# ---------------------------------------------------------------------------


class TestScripts:
    @pytest.fixture
    def script_address(self) -> Address:
        return Address.for_script(_SCRIPT.script_hash, network_id=0)

    async def test_spend_script_input(self, params, make_utxo, owner_address, script_address) -> None:
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )
        evaluator = FakeEvaluator()

        draft = await Balancer(params, evaluator=evaluator).balance(intents, [collateral], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.key == RedeemerKey(RedeemerTag.SPEND, 0)
        assert redeemer.ex_units == _UNITS
        assert draft.transaction.witness_set.scripts == (_SCRIPT,)
        assert draft.body.script_data_hash == script_data_hash((redeemer,), params)
        assert draft.collateral == (collateral,)
        assert draft.body.collateral == (collateral.ref,)
        assert draft.signatories == (owner_address.payment_key_hash,)
        assert draft.fee == _expected_fee(draft, params)
        assert evaluator.calls
        _assert_balanced(draft)

    async def test_redeemer_index_follows_sorted_inputs(
        self, params, make_utxo, owner_address, script_address
    ) -> None:
        locked = UTxO(TxIn(b"\xff" * 32, 0), script_address, Value.lovelace(10 * ADA))
        low = UTxO(TxIn(b"\x00" * 32, 0), owner_address, Value.lovelace(5 * ADA))
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .spend(low)
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.index == 1
        assert draft.collateral == (low,)

    async def test_script_redeemer_default(self, params, make_utxo, owner_address, script_address) -> None:
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked)
            .attach_script(_SCRIPT, redeemer=b"\x01", budget=ExecutionUnits(500, 500_000))
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        draft = await Balancer(params).balance(intents, [collateral], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.data == b"\x01"
        assert redeemer.ex_units == ExecutionUnits(500, 500_000)
        assert draft.fee == _expected_fee(draft, params)

    async def test_missing_redeemer(self, params, make_utxo, owner_address, script_address) -> None:
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        intents = TransactionBuilder().spend(locked).pay_to(owner_address, Value.lovelace(2 * ADA)).finish()

        with pytest.raises(InvalidIntent, match="has no redeemer"):
            await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [], owner_address)

    async def test_no_budget_without_evaluator(
        self, params, make_utxo, owner_address, script_address
    ) -> None:
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        with pytest.raises(InvalidIntent, match="no evaluator"):
            await Balancer(params).balance(intents, [], owner_address)

    async def test_evaluation_error_propagates(
        self, params, make_utxo, owner_address, script_address
    ) -> None:
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )
        evaluator = FakeEvaluator(error=ScriptEvaluationError("spend:0", "validator crashed"))

        with pytest.raises(ScriptEvaluationError, match="validator crashed"):
            await Balancer(params, evaluator=evaluator).balance(intents, [collateral], owner_address)
        assert len(evaluator.calls) == 1

    async def test_no_collateral_available(
        self, params, make_utxo, owner_address, script_address
    ) -> None:
        token = AssetId(bytes(28), b"t")
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        tokens_only = make_utxo("tokens", Value({token: 1}, coin=5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        with pytest.raises(InsufficientFunds, match="collateral"):
            await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [tokens_only], owner_address)

    async def test_mint_under_script_policy(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        asset = AssetId(_SCRIPT.script_hash, b"nft")
        intents = (
            TransactionBuilder()
            .mint(asset.policy_id, asset.name, 1, b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value({asset: 1}, coin=2 * ADA))
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [coin], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.key == RedeemerKey(RedeemerTag.MINT, 0)
        assert draft.body.mint == Value({asset: 1})
        assert draft.collateral == (coin,)
        _assert_balanced(draft)
        _assert_min_ada(draft, params)

    async def test_mint_without_redeemer(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("c", Value.lovelace(10 * ADA), owner_address)
        asset = AssetId(bytes(28), b"t")
        intents = (
            TransactionBuilder()
            .mint(asset.policy_id, asset.name, 1)
            .pay_to(owner_address, Value({asset: 1}, coin=2 * ADA))
            .finish()
        )

        with pytest.raises(InvalidIntent, match="requires a redeemer"):
            await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [coin], owner_address)

    async def test_burn(self, params, make_utxo, owner_address) -> None:
        asset = AssetId(_SCRIPT.script_hash, b"nft")
        holder = make_utxo("h", Value({asset: 3}, coin=5 * ADA), owner_address)
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(holder)
            .mint(asset.policy_id, asset.name, -3, b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            intents, [collateral], owner_address
        )

        assert draft.body.mint == Value({asset: -3})
        assert draft.collateral == (collateral,)
        assert all(not o.value.has_tokens for o in draft.body.outputs)
        _assert_balanced(draft)



# ---------------------------------------------------------------------------
# Certificates and withdrawals
# ---------------------------------------------------------------------------

_STAKE_KEY = StakeCredential(bytes(range(150, 178)))
_STAKE_SCRIPT = StakeCredential.from_script(_SCRIPT.script_hash)
_POOL = bytes(range(200, 228))


def _assert_balanced_with_stake(draft) -> None:
    certificates = draft.body.certificates
    deposits = sum(c.deposit for c in certificates if isinstance(c, StakeRegistration))
    refunds = sum(c.deposit for c in certificates if isinstance(c, StakeDeregistration))
    consumed = (
        Value.sum(u.value for u in draft.inputs)
        + draft.body.mint
        + Value.lovelace(draft.body.withdrawn + refunds)
    )
    produced = Value.sum(o.value for o in draft.body.outputs) + Value.lovelace(draft.fee + deposits)
    assert consumed == produced


def _witnessed_fee(draft, params) -> int:
    witness_set = replace(
        draft.transaction.witness_set,
        vkey_witnesses=placeholder_witnesses(draft.signatories),
    )
    return min_fee(Transaction(draft.body, witness_set), params)


class TestStakeActions:
    async def test_registration_pays_deposit(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().register_stake(_STAKE_KEY).finish()

        draft = await Balancer(params).balance(intents, [coin], owner_address)

        assert draft.body.certificates == (StakeRegistration(_STAKE_KEY, params.key_deposit),)
        assert draft.inputs == (coin,)
        assert draft.change.value == Value.lovelace(10 * ADA - params.key_deposit - draft.fee)
        assert _STAKE_KEY.hash in draft.signatories
        assert draft.fee == _witnessed_fee(draft, params)
        _assert_balanced_with_stake(draft)

    async def test_deregistration_refunds_deposit(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("three", Value.lovelace(3 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).deregister_stake(_STAKE_KEY).finish()

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.body.certificates == (StakeDeregistration(_STAKE_KEY, params.key_deposit),)
        assert draft.change.value == Value.lovelace(3 * ADA + params.key_deposit - draft.fee)
        _assert_balanced_with_stake(draft)

    async def test_delegation_has_no_deposit(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .register_stake(_STAKE_KEY)
            .delegate_stake(_STAKE_KEY, _POOL)
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.body.certificates == (
            StakeRegistration(_STAKE_KEY, params.key_deposit),
            StakeDelegation(_STAKE_KEY, _POOL),
        )
        assert draft.change.value == Value.lovelace(10 * ADA - params.key_deposit - draft.fee)
        _assert_balanced_with_stake(draft)

    async def test_withdrawal_funds_payment(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("two", Value.lovelace(2 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .withdraw(_STAKE_KEY, 5 * ADA)
            .pay_to(recipient, Value.lovelace(4 * ADA))
            .finish()
        )

        draft = await Balancer(params).balance(intents, [coin], owner_address)

        account = _STAKE_KEY.reward_account(owner_address.network_id)
        assert draft.body.withdrawals == ((account.raw, 5 * ADA),)
        assert draft.inputs == (coin,)
        assert draft.change.value == Value.lovelace(2 * ADA + 5 * ADA - 4 * ADA - draft.fee)
        assert _STAKE_KEY.hash in draft.signatories
        assert draft.fee == _witnessed_fee(draft, params)
        _assert_balanced_with_stake(draft)

    async def test_rebalance_with_withdrawal_is_identity(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("two", Value.lovelace(2 * ADA), owner_address)
        intents = TransactionBuilder().withdraw(_STAKE_KEY, 3 * ADA).finish()
        balancer = Balancer(params)

        draft = await balancer.balance(intents, [coin], owner_address)
        again = await balancer.rebalance(draft, [coin])

        assert again.transaction == draft.transaction

    async def test_key_credential_rejects_redeemer(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).register_stake(_STAKE_KEY, redeemer=b"\x00").finish()

        with pytest.raises(InvalidIntent, match="cannot take a redeemer"):
            await Balancer(params).balance(intents, [], owner_address)

    async def test_script_withdrawal_redeemer(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .withdraw(_STAKE_SCRIPT, ADA)
            .attach_script(_SCRIPT, redeemer=b"\x00")
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [coin], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.key == RedeemerKey(RedeemerTag.REWARD, 0)
        assert redeemer.data == b"\x00"
        assert draft.body.script_data_hash == script_data_hash((redeemer,), params)
        assert draft.collateral == (coin,)
        assert _SCRIPT.script_hash not in draft.signatories
        _assert_balanced_with_stake(draft)

    async def test_script_deregistration_needs_redeemer(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).deregister_stake(_STAKE_SCRIPT).finish()

        with pytest.raises(InvalidIntent, match="needs a redeemer"):
            await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [], owner_address)

    async def test_script_registration_without_redeemer(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = TransactionBuilder().spend(coin).register_stake(_STAKE_SCRIPT).finish()

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.transaction.witness_set.redeemers == ()
        assert draft.collateral == ()
        _assert_balanced_with_stake(draft)

    async def test_certificate_redeemer_index(self, params, make_utxo, owner_address) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .register_stake(_STAKE_KEY)
            .deregister_stake(_STAKE_SCRIPT, redeemer=b"\x01")
            .attach_script(_SCRIPT)
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [], owner_address)

        (redeemer,) = draft.transaction.witness_set.redeemers
        assert redeemer.key == RedeemerKey(RedeemerTag.CERT, 1)
        assert redeemer.data == b"\x01"
        _assert_balanced_with_stake(draft)


# ---------------------------------------------------------------------------
# Collateral return
# ---------------------------------------------------------------------------


class TestCollateralReturn:
    @pytest.fixture
    def locked(self, make_utxo) -> UTxO:
        return make_utxo("locked", Value.lovelace(10 * ADA), Address.for_script(_SCRIPT.script_hash, network_id=0))

    def _intents(self, locked, owner_address, return_to=None):
        builder = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
        )
        if return_to is not None:
            builder.collateral_return_to(return_to)
        return builder.finish()

    async def test_no_return_by_default(self, params, make_utxo, owner_address, locked) -> None:
        collateral = make_utxo("collateral", Value.lovelace(20 * ADA), owner_address)

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            self._intents(locked, owner_address), [collateral], owner_address
        )

        assert draft.body.collateral_return is None
        assert draft.body.total_collateral is None

    async def test_excess_returned(self, params, make_utxo, owner_address, recipient, locked) -> None:
        collateral = make_utxo("collateral", Value.lovelace(20 * ADA), owner_address)

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            self._intents(locked, owner_address, return_to=recipient), [collateral], owner_address
        )

        required = -((-draft.required_fee * params.collateral_percentage) // 100)
        assert draft.collateral == (collateral,)
        assert draft.body.total_collateral == required
        assert draft.body.collateral_return.address == recipient
        assert draft.body.collateral_return.value == Value.lovelace(20 * ADA - required)
        assert draft.fee == _witnessed_fee(draft, params)
        _assert_balanced(draft)

    async def test_small_excess_not_returned(self, params, make_utxo, owner_address, locked) -> None:
        collateral = make_utxo("collateral", Value.lovelace(ADA), owner_address)

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            self._intents(locked, owner_address, return_to=owner_address), [collateral], owner_address
        )

        assert draft.collateral == (collateral,)
        assert draft.body.collateral_return is None
        assert draft.body.total_collateral is None


# ---------------------------------------------------------------------------
# Witness datums, change datum and fee padding
# ---------------------------------------------------------------------------

_DATUM = b"\x18\x2a"


class TestDatums:
    @pytest.fixture
    def hash_locked(self, make_utxo) -> UTxO:
        script_address = Address.for_script(_SCRIPT.script_hash, network_id=0)
        utxo = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        return replace(utxo, datum=DatumHash(blake2b_256(_DATUM)))

    async def test_datum_must_be_attached(self, params, make_utxo, owner_address, hash_locked) -> None:
        intents = (
            TransactionBuilder()
            .spend(hash_locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        with pytest.raises(InvalidIntent, match="is not attached"):
            await Balancer(params, evaluator=FakeEvaluator()).balance(intents, [], owner_address)

    async def test_attached_datum_witnessed(self, params, make_utxo, owner_address, hash_locked) -> None:
        collateral = make_utxo("collateral", Value.lovelace(5 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(hash_locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .attach_datum(_DATUM)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            intents, [collateral], owner_address
        )

        redeemers = draft.transaction.witness_set.redeemers
        assert draft.transaction.witness_set.datums == (_DATUM,)
        assert draft.body.script_data_hash == script_data_hash(redeemers, params, (_DATUM,))
        assert draft.body.script_data_hash != script_data_hash(redeemers, params)
        assert draft.fee == _witnessed_fee(draft, params)
        _assert_balanced(draft)

    async def test_datum_without_scripts(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .attach_datum(_DATUM)
            .pay_to(recipient, Value.lovelace(2 * ADA), DatumHash(blake2b_256(_DATUM)))
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.body.script_data_hash == script_data_hash((), params, (_DATUM,))
        assert draft.collateral == ()

    async def test_change_datum(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .pay_to(recipient, Value.lovelace(4 * ADA))
            .change_datum(InlineDatum(_DATUM))
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.change.datum == InlineDatum(_DATUM)
        assert draft.change.value == Value.lovelace(6 * ADA - draft.fee)
        assert draft.fee == _witnessed_fee(draft, params)


class TestFeePadding:
    async def test_padding_added_to_fee(self, params, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("ten", Value.lovelace(10 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .pay_to(recipient, Value.lovelace(4 * ADA))
            .pad_fee(50_000)
            .finish()
        )

        draft = await Balancer(params).balance(intents, [], owner_address)

        assert draft.fee == _witnessed_fee(draft, params) + 50_000
        assert draft.required_fee == draft.fee
        _assert_balanced(draft)

    async def test_padding_grows_collateral(self, params, make_utxo, owner_address) -> None:
        script_address = Address.for_script(_SCRIPT.script_hash, network_id=0)
        locked = make_utxo("locked", Value.lovelace(10 * ADA), script_address)
        collateral = make_utxo("collateral", Value.lovelace(20 * ADA), owner_address)
        intents = (
            TransactionBuilder()
            .spend(locked, redeemer=b"\x00")
            .attach_script(_SCRIPT)
            .pay_to(owner_address, Value.lovelace(2 * ADA))
            .pad_fee(ADA)
            .collateral_return_to(owner_address)
            .finish()
        )

        draft = await Balancer(params, evaluator=FakeEvaluator()).balance(
            intents, [collateral], owner_address
        )

        assert draft.body.total_collateral == -((-draft.required_fee * params.collateral_percentage) // 100)
        assert draft.body.total_collateral > ADA
