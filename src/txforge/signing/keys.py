"""Ed25519 payment keys — generation, SLIP-0010 derivation, key hashing.

Implements:
- Ed25519 signing keys on top of python-ecdsa's ``Ed25519`` curve
- SLIP-0010 hardened child derivation from a seed
- Key-hash indexed keyring used by the signer
"""

from __future__ import annotations

import hashlib
import hmac
import struct
from dataclasses import dataclass
from typing import TYPE_CHECKING, Self

from ecdsa import BadSignatureError, Ed25519, SigningKey, VerifyingKey

from txforge.utils.crypto import blake2b_224

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from txforge.config.settings import WalletConfig

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SEED_SIZE = 32

# SLIP-0010 master HMAC key for the ed25519 curve
_MASTER_HMAC_KEY = b"ed25519 seed"

_HARDENED = 0x80000000

# m / purpose' / coin_type' / account' / role' / index'
DEFAULT_DERIVATION_PATH = "m/1852'/1815'/0'/0'/0'"


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VerificationKey:
    """A 32-byte Ed25519 public key."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != 32:
            msg = f"Invalid verification key length: {len(self.raw)}"
            raise ValueError(msg)

    @property
    def key_hash(self) -> bytes:
        """BLAKE2b-224 of the key: the credential used in addresses and signers."""
        return blake2b_224(self.raw)

    def verify(self, signature: bytes, message: bytes) -> bool:
        """Check an Ed25519 signature over ``message``."""
        vk = VerifyingKey.from_string(self.raw, curve=Ed25519)
        try:
            return vk.verify(signature, message)
        except (BadSignatureError, ValueError):
            return False


class PaymentSigningKey:
    """An Ed25519 signing key held as its 32-byte seed."""

    __slots__ = ("_sk",)

    def __init__(self, seed: bytes) -> None:
        if len(seed) != SEED_SIZE:
            msg = f"Invalid signing key seed length: {len(seed)}"
            raise ValueError(msg)
        self._sk = SigningKey.from_string(seed, curve=Ed25519)

    @classmethod
    def generate(cls) -> Self:
        """Create a key from fresh randomness."""
        return cls(SigningKey.generate(curve=Ed25519).to_string())

    @classmethod
    def from_seed(cls, seed: bytes, path: str = DEFAULT_DERIVATION_PATH) -> Self:
        """Derive a key from a wallet seed along a hardened SLIP-0010 path."""
        key, _ = derive_key(seed, path)
        return cls(key)

    @classmethod
    def from_hex(cls, hex_str: str) -> Self:
        """Load a raw hex-encoded 32-byte seed."""
        return cls(bytes.fromhex(hex_str))

    @property
    def verification_key(self) -> VerificationKey:
        return VerificationKey(self._sk.get_verifying_key().to_string())

    @property
    def key_hash(self) -> bytes:
        return self.verification_key.key_hash

    def sign(self, message: bytes) -> bytes:
        """Deterministic 64-byte Ed25519 signature."""
        return self._sk.sign(message)

    def __repr__(self) -> str:
        return f"PaymentSigningKey(key_hash={self.key_hash.hex()})"


# ---------------------------------------------------------------------------
# SLIP-0010 derivation
# ---------------------------------------------------------------------------


def parse_path(path: str) -> list[int]:
    """Parse ``m/1852'/1815'/0'`` into hardened child indices.

    Raises:
        ValueError: On malformed paths or non-hardened segments.
    """
    parts = path.strip().split("/")
    if not parts or parts[0] != "m":
        msg = f"Derivation path must start with 'm': {path}"
        raise ValueError(msg)
    indices: list[int] = []
    for part in parts[1:]:
        if not part.endswith(("'", "h", "H")):
            msg = f"ed25519 derivation supports hardened segments only: {part}"
            raise ValueError(msg)
        index = int(part[:-1])
        if not 0 <= index < _HARDENED:
            msg = f"Derivation index out of range: {part}"
            raise ValueError(msg)
        indices.append(index | _HARDENED)
    return indices


def derive_key(seed: bytes, path: str = DEFAULT_DERIVATION_PATH) -> tuple[bytes, bytes]:
    """Derive ``(private key, chain code)`` for ``path`` from ``seed``."""
    digest = hmac.new(_MASTER_HMAC_KEY, seed, hashlib.sha512).digest()
    key, chain_code = digest[:32], digest[32:]
    for index in parse_path(path):
        data = b"\x00" + key + struct.pack(">I", index)
        digest = hmac.new(chain_code, data, hashlib.sha512).digest()
        key, chain_code = digest[:32], digest[32:]
    return key, chain_code


# ---------------------------------------------------------------------------
# Keyring
# ---------------------------------------------------------------------------


class Keyring:
    """Signing keys indexed by key hash."""

    def __init__(self, keys: Iterable[PaymentSigningKey] = ()) -> None:
        self._keys: dict[bytes, PaymentSigningKey] = {}
        for key in keys:
            self.add(key)

    def add(self, key: PaymentSigningKey) -> None:
        self._keys[key.key_hash] = key

    def get(self, key_hash: bytes) -> PaymentSigningKey | None:
        return self._keys.get(key_hash)

    def __contains__(self, key_hash: object) -> bool:
        return key_hash in self._keys

    def __iter__(self) -> Iterator[PaymentSigningKey]:
        return iter(self._keys.values())

    def __len__(self) -> int:
        return len(self._keys)

    @classmethod
    def from_config(cls, config: WalletConfig) -> Self:
        """Build a keyring from a wallet seed and/or raw key seeds."""
        keys = [PaymentSigningKey.from_hex(k) for k in config.signing_keys]
        if config.seed_hex:
            keys.append(PaymentSigningKey.from_seed(bytes.fromhex(config.seed_hex), config.derivation_path))
        return cls(keys)
