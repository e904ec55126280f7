"""Transaction signing — one vkey witness per required signatory.

Signing happens once, after balancing is final. Signatures cover the
transaction id (BLAKE2b-256 of the body), so the body is never touched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from txforge.errors.builder_errors import MissingSigningKey
from txforge.ledger.transaction import Transaction, VKeyWitness
from txforge.signing.keys import VerificationKey

if TYPE_CHECKING:
    from txforge.builder.balancer import BalancedDraft
    from txforge.ledger.transaction import WitnessSet
    from txforge.signing.keys import Keyring

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignedTransaction(Transaction):
    """A transaction carrying its vkey witnesses."""

    def verify_signatures(self) -> bool:
        """Check every vkey witness against the transaction id."""
        message = self.tx_hash
        return all(
            VerificationKey(w.vkey).verify(w.signature, message)
            for w in self.witness_set.vkey_witnesses
        )

    @property
    def signers(self) -> tuple[bytes, ...]:
        """Key hashes of the keys that signed."""
        return tuple(VerificationKey(w.vkey).key_hash for w in self.witness_set.vkey_witnesses)


def sign(draft: BalancedDraft, keyring: Keyring) -> WitnessSet:
    """Produce the final witness set for ``draft``.

    Raises:
        MissingSigningKey: If a signatory has no key in ``keyring``.
    """
    message = draft.tx_hash
    witnesses: list[VKeyWitness] = []
    for key_hash in draft.signatories:
        key = keyring.get(key_hash)
        if key is None:
            raise MissingSigningKey(key_hash)
        witnesses.append(VKeyWitness(key.verification_key.raw, key.sign(message)))
    logger.debug("Signed %s with %d keys", message.hex(), len(witnesses))
    return replace(draft.transaction.witness_set, vkey_witnesses=tuple(witnesses))


def sign_transaction(draft: BalancedDraft, keyring: Keyring) -> SignedTransaction:
    """Sign ``draft`` and attach the witnesses."""
    witness_set = sign(draft, keyring)
    return SignedTransaction(draft.body, witness_set, draft.transaction.is_valid)
