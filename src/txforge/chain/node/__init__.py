"""Node — framed CBOR protocol over a unix socket or TCP."""

from txforge.chain.node.client import NodeBackend

__all__ = ["NodeBackend"]
