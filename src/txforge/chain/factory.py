"""Backend selection from configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from txforge.chain.http.service import HttpBackend
from txforge.chain.node.client import NodeBackend
from txforge.chain.ogmios.client import OgmiosBackend
from txforge.config.settings import BackendKind

if TYPE_CHECKING:
    from txforge.chain.backend import ChainBackend
    from txforge.config.settings import AppConfig


def create_backend(config: AppConfig) -> ChainBackend:
    """Build the backend named by ``config.backend``.

    The returned backend is not connected yet.
    """
    match config.backend:
        case BackendKind.NODE:
            return NodeBackend(config.node)
        case BackendKind.OGMIOS:
            return OgmiosBackend(config.ogmios)
        case BackendKind.HTTP:
            return HttpBackend(config.http)
    msg = f"Unsupported backend: {config.backend}"
    raise ValueError(msg)
