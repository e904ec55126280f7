"""Chain backends — node socket, JSON-RPC websocket and HTTP transports."""

from txforge.chain.backend import ChainBackend, ConfirmationStatus, TxStatus, UtxoSource
from txforge.chain.factory import create_backend
from txforge.chain.utxo_source import StaticUtxoSource

__all__ = [
    "ChainBackend",
    "ConfirmationStatus",
    "StaticUtxoSource",
    "TxStatus",
    "UtxoSource",
    "create_backend",
]
