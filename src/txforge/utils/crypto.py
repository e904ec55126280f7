"""Cryptographic helpers — ledger hashing."""

from __future__ import annotations

import hashlib

TX_HASH_SIZE = 32
KEY_HASH_SIZE = 28


def blake2b_256(data: bytes) -> bytes:
    """BLAKE2b with a 32-byte digest (transaction ids, data hashes)."""
    return hashlib.blake2b(data, digest_size=TX_HASH_SIZE).digest()


def blake2b_224(data: bytes) -> bytes:
    """BLAKE2b with a 28-byte digest (key and script hashes)."""
    return hashlib.blake2b(data, digest_size=KEY_HASH_SIZE).digest()
