"""CBOR glue — cbor2 encode/decode with verbatim embedding of pre-serialized items."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import cbor2

# Tag used by the ledger for CBOR-in-CBOR (inline datums, script refs)
CBOR_IN_CBOR_TAG = 24


@dataclass(frozen=True)
class RawCBOR:
    """An already-encoded CBOR item, written to the output byte-for-byte."""

    cbor: bytes


def _encode_default(encoder: cbor2.CBOREncoder, value: Any) -> None:
    if isinstance(value, RawCBOR):
        encoder.write(value.cbor)
        return
    msg = f"Cannot CBOR-encode {type(value).__name__}"
    raise cbor2.CBOREncodeTypeError(msg)


def dumps(obj: Any) -> bytes:
    """Encode a primitive tree, splicing :class:`RawCBOR` items in verbatim."""
    return cbor2.dumps(obj, default=_encode_default)


def loads(data: bytes) -> Any:
    """Decode CBOR bytes into a primitive tree.

    Raises:
        ValueError: If the bytes are not well-formed CBOR.
    """
    try:
        return cbor2.loads(data)
    except cbor2.CBORDecodeError as exc:
        msg = f"Malformed CBOR: {exc}"
        raise ValueError(msg) from exc


def normalize(data: bytes) -> bytes:
    """Re-encode an attachment with definite lengths.

    Attachments are decoded back into primitives when a transaction is parsed,
    so they are normalized once on the way in to keep the encoding stable.
    """
    return dumps(loads(data))


def reencode(item: Any) -> bytes:
    """Encode a decoded sub-item back to bytes."""
    return dumps(item)
