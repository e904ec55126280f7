"""Signing — Ed25519 keys, derivation and transaction witnesses."""

from txforge.signing.keys import Keyring, PaymentSigningKey, VerificationKey, derive_key
from txforge.signing.signer import SignedTransaction, sign, sign_transaction

__all__ = [
    "Keyring",
    "PaymentSigningKey",
    "SignedTransaction",
    "VerificationKey",
    "derive_key",
    "sign",
    "sign_transaction",
]
