"""Ogmios — JSON-RPC 2.0 over a persistent websocket."""

from txforge.chain.ogmios.client import OgmiosBackend
from txforge.chain.ogmios.models import RpcError, RpcRequest, RpcResponse

__all__ = ["OgmiosBackend", "RpcError", "RpcRequest", "RpcResponse"]
