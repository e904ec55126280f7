"""Address encoding — Bech32, header parsing, payment credentials.

Shelley-style addresses are a header byte followed by one or two 28-byte
credentials. The header's high nibble is the address type, the low nibble
the network id:

- types 0-3: base address (payment + stake credential)
- types 4-5: pointer address
- types 6-7: enterprise address (payment credential only)
- types 14-15: reward address (stake credential only)

Odd types (and 15) carry a script hash as their first credential.
"""

from __future__ import annotations

from dataclasses import dataclass

from txforge.utils.crypto import KEY_HASH_SIZE, blake2b_224

# ---------------------------------------------------------------------------
# Bech32 (BIP-173) without the 90 character limit
# ---------------------------------------------------------------------------

_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
_GENERATOR = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)


def _polymod(values: list[int]) -> int:
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= _GENERATOR[i] if (top >> i) & 1 else 0
    return chk


def _hrp_expand(hrp: str) -> list[int]:
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def _convert_bits(data: bytes | list[int], from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    acc = 0
    bits = 0
    result: list[int] = []
    maxv = (1 << to_bits) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            msg = "Invalid data for bit conversion"
            raise ValueError(msg)
        acc = (acc << from_bits) | value
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & maxv)
    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & maxv)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & maxv):
        msg = "Invalid padding in bech32 data"
        raise ValueError(msg)
    return result


def bech32_encode(hrp: str, payload: bytes) -> str:
    """Encode raw bytes under a human-readable prefix."""
    data = _convert_bits(payload, 8, 5, pad=True)
    polymod = _polymod(_hrp_expand(hrp) + data + [0] * 6) ^ 1
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(_CHARSET[d] for d in data + checksum)


def bech32_decode(text: str) -> tuple[str, bytes]:
    """Decode a bech32 string into ``(hrp, payload)``.

    Raises:
        ValueError: On mixed case, bad characters or a checksum mismatch.
    """
    if text.lower() != text and text.upper() != text:
        msg = "Mixed-case bech32 string"
        raise ValueError(msg)
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text):
        msg = "Invalid bech32 separator position"
        raise ValueError(msg)
    hrp = text[:pos]
    try:
        data = [_CHARSET.index(c) for c in text[pos + 1 :]]
    except ValueError as exc:
        msg = "Invalid bech32 character"
        raise ValueError(msg) from exc
    if _polymod(_hrp_expand(hrp) + data) != 1:
        msg = "Bech32 checksum mismatch"
        raise ValueError(msg)
    return hrp, bytes(_convert_bits(data[:-6], 5, 8, pad=False))


# ---------------------------------------------------------------------------
# Address
# ---------------------------------------------------------------------------

_PAYMENT_TYPES = range(0, 8)
_REWARD_TYPES = (14, 15)


@dataclass(frozen=True)
class Address:
    """A Shelley-era address held as its raw bytes."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) < 1 + KEY_HASH_SIZE:
            msg = f"Address too short: {len(self.raw)} bytes"
            raise ValueError(msg)
        if self.address_type not in _PAYMENT_TYPES and self.address_type not in _REWARD_TYPES:
            msg = f"Unsupported address type: {self.address_type}"
            raise ValueError(msg)

    @property
    def address_type(self) -> int:
        """High nibble of the header byte."""
        return self.raw[0] >> 4

    @property
    def network_id(self) -> int:
        """Low nibble of the header byte (1 = mainnet, 0 = testnets)."""
        return self.raw[0] & 0x0F

    @property
    def is_reward(self) -> bool:
        """Whether this is a reward (stake) address."""
        return self.address_type in _REWARD_TYPES

    @property
    def is_script(self) -> bool:
        """Whether the first credential is a script hash."""
        return bool(self.address_type & 1)

    @property
    def payment_key_hash(self) -> bytes | None:
        """The payment verification-key hash, or None for script/reward addresses."""
        if self.address_type in _REWARD_TYPES or self.is_script:
            return None
        return self.raw[1 : 1 + KEY_HASH_SIZE]

    @property
    def payment_script_hash(self) -> bytes | None:
        """The payment script hash, or None for key/reward addresses."""
        if self.address_type in _REWARD_TYPES or not self.is_script:
            return None
        return self.raw[1 : 1 + KEY_HASH_SIZE]

    @property
    def hrp(self) -> str:
        """Bech32 prefix for this address."""
        prefix = "stake" if self.address_type in _REWARD_TYPES else "addr"
        return prefix if self.network_id == 1 else f"{prefix}_test"

    @classmethod
    def from_bech32(cls, text: str) -> Address:
        """Parse an ``addr``/``addr_test``/``stake`` bech32 string."""
        _, payload = bech32_decode(text)
        return cls(payload)

    def to_bech32(self) -> str:
        """Encode to bech32."""
        return bech32_encode(self.hrp, self.raw)

    @classmethod
    def from_key_hashes(
        cls,
        payment_key_hash: bytes,
        stake_key_hash: bytes | None = None,
        *,
        network_id: int = 1,
    ) -> Address:
        """Build a base (or, without stake hash, enterprise) key address."""
        if stake_key_hash is None:
            return cls(bytes([0x60 | network_id]) + payment_key_hash)
        return cls(bytes([0x00 | network_id]) + payment_key_hash + stake_key_hash)

    @classmethod
    def for_script(cls, script_hash: bytes, *, network_id: int = 1) -> Address:
        """Build an enterprise address locked by a script."""
        return cls(bytes([0x70 | network_id]) + script_hash)

    @classmethod
    def from_verification_key(cls, vkey: bytes, *, network_id: int = 1) -> Address:
        """Enterprise address for a raw 32-byte Ed25519 verification key."""
        return cls.from_key_hashes(blake2b_224(vkey), network_id=network_id)

    def __str__(self) -> str:
        return self.to_bech32()
