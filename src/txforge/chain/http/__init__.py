"""HTTP backend — Blockfrost-compatible REST transport."""

from txforge.chain.http.service import HttpBackend

__all__ = ["HttpBackend"]
