"""Stake credentials, reward accounts and Conway stake certificates.

Certificate encodings (Conway CDDL):

- ``[2, credential, pool_keyhash]`` stake delegation
- ``[7, credential, deposit]`` stake registration
- ``[8, credential, refund]`` stake deregistration

A credential is ``[0, key_hash]`` or ``[1, script_hash]``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from txforge.ledger.address import Address
from txforge.utils.crypto import KEY_HASH_SIZE

_DELEGATION, _REGISTRATION, _DEREGISTRATION = 2, 7, 8

# Reward address headers before the network nibble
_KEY_REWARD_HEADER = 0xE0
_SCRIPT_REWARD_HEADER = 0xF0


@dataclass(frozen=True, order=True)
class StakeCredential:
    """A stake key hash or stake script hash."""

    hash: bytes
    is_script: bool = False

    def __post_init__(self) -> None:
        if len(self.hash) != KEY_HASH_SIZE:
            msg = f"Invalid stake credential length: {len(self.hash)}"
            raise ValueError(msg)

    @classmethod
    def from_script(cls, script_hash: bytes) -> StakeCredential:
        return cls(script_hash, is_script=True)

    def to_primitive(self) -> list[Any]:
        return [1 if self.is_script else 0, self.hash]

    @classmethod
    def from_primitive(cls, item: Any) -> StakeCredential:
        kind, payload = item
        return cls(bytes(payload), is_script=kind == 1)

    def reward_account(self, network_id: int) -> Address:
        """The reward address of this credential on ``network_id``."""
        header = _SCRIPT_REWARD_HEADER if self.is_script else _KEY_REWARD_HEADER
        return Address(bytes([header | network_id]) + self.hash)

    def __str__(self) -> str:
        kind = "script" if self.is_script else "key"
        return f"{kind}:{self.hash.hex()}"


@dataclass(frozen=True)
class StakeRegistration:
    """Register a reward account, locking ``deposit`` lovelace."""

    credential: StakeCredential
    deposit: int

    def to_primitive(self) -> list[Any]:
        return [_REGISTRATION, self.credential.to_primitive(), self.deposit]


@dataclass(frozen=True)
class StakeDeregistration:
    """Close a reward account, refunding ``deposit`` lovelace."""

    credential: StakeCredential
    deposit: int

    def to_primitive(self) -> list[Any]:
        return [_DEREGISTRATION, self.credential.to_primitive(), self.deposit]


@dataclass(frozen=True)
class StakeDelegation:
    """Delegate a registered credential's stake to a pool."""

    credential: StakeCredential
    pool_id: bytes

    def __post_init__(self) -> None:
        if len(self.pool_id) != KEY_HASH_SIZE:
            msg = f"Invalid pool id length: {len(self.pool_id)}"
            raise ValueError(msg)

    def to_primitive(self) -> list[Any]:
        return [_DELEGATION, self.credential.to_primitive(), self.pool_id]


Certificate = StakeRegistration | StakeDeregistration | StakeDelegation


def certificate_from_primitive(item: Any) -> Certificate:
    """Decode one certificate.

    Raises:
        ValueError: For certificate kinds this package does not build.
    """
    kind = item[0]
    credential = StakeCredential.from_primitive(item[1])
    if kind == _REGISTRATION:
        return StakeRegistration(credential, item[2])
    if kind == _DEREGISTRATION:
        return StakeDeregistration(credential, item[2])
    if kind == _DELEGATION:
        return StakeDelegation(credential, bytes(item[2]))
    msg = f"Unsupported certificate kind: {kind}"
    raise ValueError(msg)
