"""Shared test fixtures for the txforge test suite."""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

import pytest

from txforge.ledger.address import Address
from txforge.ledger.params import ProtocolParameters
from txforge.ledger.primitives import TxIn, UTxO
from txforge.signing.keys import Keyring, PaymentSigningKey

if TYPE_CHECKING:
    from collections.abc import Callable

    from txforge.ledger.value import Value


def _tx_id(label: str) -> bytes:
    return hashlib.sha256(label.encode()).digest()


@pytest.fixture
def make_utxo() -> Callable[..., UTxO]:
    """Factory for UTxOs with deterministic, label-derived transaction ids."""

    def factory(label: str, value: Value, address: Address, index: int = 0) -> UTxO:
        return UTxO(TxIn(_tx_id(label), index), address, value)

    return factory


@pytest.fixture
def params() -> ProtocolParameters:
    """Default (mainnet-shaped) protocol parameters."""
    return ProtocolParameters()


@pytest.fixture
def owner_key() -> PaymentSigningKey:
    return PaymentSigningKey(bytes(range(32)))


@pytest.fixture
def other_key() -> PaymentSigningKey:
    return PaymentSigningKey(bytes(range(32, 64)))


@pytest.fixture
def keyring(owner_key: PaymentSigningKey) -> Keyring:
    return Keyring([owner_key])


@pytest.fixture
def owner_address(owner_key: PaymentSigningKey) -> Address:
    """Preview enterprise address of ``owner_key``; also the change address."""
    return Address.from_key_hashes(owner_key.key_hash, network_id=0)


@pytest.fixture
def recipient() -> Address:
    return Address.from_key_hashes(bytes(range(100, 128)), network_id=0)
