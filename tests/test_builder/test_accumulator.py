"""Tests for the intent accumulator — builder/accumulator.py."""

from __future__ import annotations

import cbor2
import pytest

from txforge.builder.accumulator import TransactionBuilder
from txforge.builder.intents import (
    AttachDatum,
    InvokeScript,
    Mint,
    ProduceOutput,
    RegisterStake,
    SpendInput,
    WithdrawRewards,
)
from txforge.errors.builder_errors import EmptyDraft, InvalidIntent
from txforge.ledger.certificates import StakeCredential
from txforge.ledger.primitives import DatumHash, InlineDatum, PlutusScript, ValidityInterval
from txforge.ledger.value import Value

_SCRIPT = PlutusScript(2, b"\x4e\x4d\x01\x00\x00")
_POLICY = bytes(28)


class TestAdd:
    def test_preserves_order(self, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        builder = TransactionBuilder()
        builder.pay_to(recipient, Value.lovelace(1_000_000)).spend(coin)
        intents = builder.finish()
        assert [type(i) for i in intents] == [ProduceOutput, SpendInput]
        assert len(builder) == 2

    def test_duplicate_input(self, make_utxo, owner_address) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        builder = TransactionBuilder().spend(coin)
        with pytest.raises(InvalidIntent, match="spent twice"):
            builder.spend(coin)

    def test_failed_add_leaves_builder_unchanged(self, make_utxo, owner_address) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        builder = TransactionBuilder().spend(coin)
        with pytest.raises(InvalidIntent):
            builder.spend(coin)
        assert len(builder) == 1

    def test_negative_output(self, recipient) -> None:
        with pytest.raises(InvalidIntent, match="negative"):
            TransactionBuilder().add(ProduceOutput(recipient, Value.lovelace(-1)))

    def test_mint_zero(self) -> None:
        with pytest.raises(InvalidIntent, match="non-zero"):
            TransactionBuilder().mint(_POLICY, b"t", 0, b"\x00")

    def test_mint_bad_policy(self) -> None:
        with pytest.raises(InvalidIntent, match="policy id"):
            TransactionBuilder().mint(b"\x01", b"t", 1, b"\x00")

    def test_signer_length(self) -> None:
        with pytest.raises(InvalidIntent, match="key hash"):
            TransactionBuilder().require_signer(b"\x01" * 27)

    def test_script_attached_twice(self) -> None:
        builder = TransactionBuilder().attach_script(_SCRIPT)
        with pytest.raises(InvalidIntent, match="attached twice"):
            builder.attach_script(_SCRIPT)

    def test_redeemer_must_be_cbor(self, make_utxo, owner_address) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        with pytest.raises(InvalidIntent, match="not valid CBOR"):
            TransactionBuilder().spend(coin, redeemer=b"\x82\x01")

    def test_redeemer_normalized(self, make_utxo, owner_address) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        builder = TransactionBuilder().spend(coin, redeemer=b"\x9f\x01\xff")
        builder.pay_to(owner_address, Value.lovelace(1_000_000))
        (spend,) = builder.finish().spends
        assert spend.redeemer == cbor2.dumps([1])

    def test_script_and_mint_redeemers_normalized(self, recipient) -> None:
        builder = TransactionBuilder()
        builder.attach_script(_SCRIPT, redeemer=b"\x9f\xff").mint(_POLICY, b"t", 1, b"\x9f\xff")
        intents = builder.pay_to(recipient, Value.lovelace(1_000_000)).finish()
        assert intents.scripts[0].redeemer == b"\x80"
        assert intents.mints[0].redeemer == b"\x80"

    def test_unknown_intent(self) -> None:
        with pytest.raises(InvalidIntent, match="unknown intent"):
            TransactionBuilder().add("spend everything")  # type: ignore[arg-type]


class TestValidity:
    def test_bounds_merge(self, recipient) -> None:
        builder = TransactionBuilder().valid_between(lower=10).valid_between(upper=20)
        intents = builder.pay_to(recipient, Value.lovelace(1_000_000)).finish()
        assert intents.validity == ValidityInterval(10, 20)

    def test_same_bound_twice_is_fine(self) -> None:
        TransactionBuilder().valid_between(10, 20).valid_between(10, 20)

    def test_conflicting_lower(self) -> None:
        builder = TransactionBuilder().valid_between(lower=10)
        with pytest.raises(InvalidIntent, match="conflicting lower"):
            builder.valid_between(lower=11)

    def test_conflicting_upper(self) -> None:
        builder = TransactionBuilder().valid_between(upper=10)
        with pytest.raises(InvalidIntent, match="conflicting upper"):
            builder.valid_between(upper=11)

    def test_empty_interval(self) -> None:
        with pytest.raises(InvalidIntent, match="empty validity interval"):
            TransactionBuilder().valid_between(20, 20)

    def test_empty_after_merge(self) -> None:
        builder = TransactionBuilder().valid_between(upper=5)
        with pytest.raises(InvalidIntent, match="empty validity interval"):
            builder.valid_between(lower=9)

    def test_negative_slot(self) -> None:
        with pytest.raises(InvalidIntent, match="non-negative"):
            TransactionBuilder().valid_between(lower=-1)


class TestFinish:
    def test_empty(self) -> None:
        with pytest.raises(EmptyDraft):
            TransactionBuilder().finish()

    def test_signers_only_is_empty(self) -> None:
        with pytest.raises(EmptyDraft):
            TransactionBuilder().require_signer(bytes(28)).finish()

    def test_frozen_snapshot(self, recipient) -> None:
        builder = TransactionBuilder().pay_to(recipient, Value.lovelace(1_000_000))
        first = builder.finish()
        builder.pay_to(recipient, Value.lovelace(2_000_000))
        assert len(first) == 1
        assert len(builder.finish()) == 2

    def test_accessors(self, make_utxo, owner_address, recipient) -> None:
        coin = make_utxo("a", Value.lovelace(5_000_000), owner_address)
        intents = (
            TransactionBuilder()
            .spend(coin)
            .pay_to(recipient, Value.lovelace(1_000_000))
            .mint(_POLICY, b"t", 5, b"\x00")
            .require_signer(bytes(28))
            .attach_script(_SCRIPT)
            .finish()
        )
        assert intents.spends == (SpendInput(coin),)
        assert intents.mints == (Mint(_POLICY, b"t", 5, b"\x00"),)
        assert intents.signers == (bytes(28),)
        assert intents.scripts == (InvokeScript(_SCRIPT),)

    def test_withdrawal_alone_is_enough(self) -> None:
        credential = StakeCredential(bytes(28))
        intents = TransactionBuilder().withdraw(credential, 1_000_000).finish()
        assert intents.withdrawals == (WithdrawRewards(credential, 1_000_000),)


class TestStakeIntents:
    _CREDENTIAL = StakeCredential(bytes(range(28)))

    def test_registered_twice(self) -> None:
        builder = TransactionBuilder().register_stake(self._CREDENTIAL)
        with pytest.raises(InvalidIntent, match="registered twice"):
            builder.register_stake(self._CREDENTIAL)
        assert len(builder) == 1

    def test_register_then_delegate(self) -> None:
        intents = (
            TransactionBuilder()
            .register_stake(self._CREDENTIAL)
            .delegate_stake(self._CREDENTIAL, bytes(28))
            .finish()
        )
        assert [type(i).__name__ for i in intents.stake_actions] == ["RegisterStake", "DelegateStake"]

    def test_bad_pool_id(self) -> None:
        with pytest.raises(InvalidIntent, match="invalid pool id length"):
            TransactionBuilder().delegate_stake(self._CREDENTIAL, bytes(27))

    def test_withdrawal_must_be_positive(self) -> None:
        with pytest.raises(InvalidIntent, match="must be positive"):
            TransactionBuilder().withdraw(self._CREDENTIAL, 0)

    def test_withdrawn_twice(self) -> None:
        builder = TransactionBuilder().withdraw(self._CREDENTIAL, 5)
        with pytest.raises(InvalidIntent, match="withdrawn from twice"):
            builder.withdraw(self._CREDENTIAL, 5)

    def test_certificate_redeemer_normalized(self) -> None:
        indefinite = b"\x9f\x01\xff"
        intents = TransactionBuilder().register_stake(self._CREDENTIAL, indefinite).finish()
        assert intents.stake_actions == (RegisterStake(self._CREDENTIAL, cbor2.dumps([1])),)


class TestSettings:
    def test_datum_attached_twice(self) -> None:
        builder = TransactionBuilder().attach_datum(b"\x18\x2a")
        with pytest.raises(InvalidIntent, match="attached twice"):
            builder.attach_datum(b"\x18\x2a")

    def test_datum_must_be_cbor(self) -> None:
        with pytest.raises(InvalidIntent, match="not valid CBOR"):
            TransactionBuilder().attach_datum(b"\x82\x01")

    def test_settings_folded_into_set(self, recipient) -> None:
        datum = InlineDatum(b"\x18\x2a")
        intents = (
            TransactionBuilder()
            .pay_to(recipient, Value.lovelace(1_000_000))
            .attach_datum(b"\x18\x2a")
            .change_datum(datum)
            .collateral_return_to(recipient)
            .pad_fee(10_000)
            .finish()
        )
        assert intents.change_datum == datum
        assert intents.collateral_return == recipient
        assert intents.fee_padding == 10_000
        assert intents.datums == (b"\x18\x2a",)
        assert AttachDatum(b"\x18\x2a") in intents

    def test_conflicting_change_datum(self) -> None:
        builder = TransactionBuilder().change_datum(DatumHash(bytes(32)))
        builder.change_datum(DatumHash(bytes(32)))
        with pytest.raises(InvalidIntent, match="conflicting change datum"):
            builder.change_datum(DatumHash(b"\x01" * 32))

    def test_negative_padding(self) -> None:
        with pytest.raises(InvalidIntent, match="non-negative"):
            TransactionBuilder().pad_fee(-1)

    def test_conflicting_padding(self) -> None:
        builder = TransactionBuilder().pad_fee(1)
        with pytest.raises(InvalidIntent, match="conflicting fee padding"):
            builder.pad_fee(2)

    def test_collateral_return_to_reward_address(self) -> None:
        reward = StakeCredential(bytes(28)).reward_account(0)
        with pytest.raises(InvalidIntent, match="reward address"):
            TransactionBuilder().collateral_return_to(reward)
