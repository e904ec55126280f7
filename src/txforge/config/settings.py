"""Application settings loaded from environment variables and config files.

Configuration is loaded from (highest priority first):
1. Environment variables (prefix: ``TXFORGE_``, nested via ``__``)
2. YAML config file (``TXFORGE_CONFIG_PATH`` env var or :meth:`AppConfig.from_yaml`)
3. Defaults defined here
"""

from __future__ import annotations

import enum
from pathlib import Path
from typing import Any, Self

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from txforge.ledger.params import PRESETS, NetworkId, ProtocolParameters, parse_price
from txforge.ledger.primitives import ExecutionUnits

# ---------------------------------------------------------------------------
# Enums for validated choices
# ---------------------------------------------------------------------------


class BackendKind(enum.StrEnum):
    """Supported chain backends."""

    NODE = "node"
    OGMIOS = "ogmios"
    HTTP = "http"


# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class ProtocolParamsConfig(BaseSettings):
    """Protocol parameter overrides.

    Unset fields fall back to the network preset.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_PROTOCOL__",
        case_sensitive=False,
    )

    min_fee_a: int | None = None
    min_fee_b: int | None = None
    max_tx_size: int | None = None
    max_tx_ex_mem: int | None = None
    max_tx_ex_steps: int | None = None
    coins_per_utxo_byte: int | None = None
    price_mem: str | None = Field(default=None, description="Exact price, e.g. '577/10000'")
    price_steps: str | None = Field(default=None, description="Exact price, e.g. '721/10000000'")
    collateral_percentage: int | None = None
    max_collateral_inputs: int | None = None
    max_value_size: int | None = None
    key_deposit: int | None = None

    def to_parameters(self, base: ProtocolParameters | None = None) -> ProtocolParameters:
        """Overlay the explicitly set fields on ``base`` (defaults if None)."""
        base = base or ProtocolParameters()
        changes: dict[str, Any] = {}
        for name in (
            "min_fee_a",
            "min_fee_b",
            "max_tx_size",
            "coins_per_utxo_byte",
            "collateral_percentage",
            "max_collateral_inputs",
            "max_value_size",
            "key_deposit",
        ):
            value = getattr(self, name)
            if value is not None:
                changes[name] = value
        if self.price_mem is not None:
            changes["price_mem"] = parse_price(self.price_mem)
        if self.price_steps is not None:
            changes["price_steps"] = parse_price(self.price_steps)
        if self.max_tx_ex_mem is not None or self.max_tx_ex_steps is not None:
            limit = base.max_tx_ex_units
            changes["max_tx_ex_units"] = ExecutionUnits(
                self.max_tx_ex_mem if self.max_tx_ex_mem is not None else limit.mem,
                self.max_tx_ex_steps if self.max_tx_ex_steps is not None else limit.steps,
            )
        return base.updated(**changes)


class BuilderConfig(BaseSettings):
    """Balancing loop settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_BUILDER__",
        case_sensitive=False,
    )

    max_iterations: int = Field(default=10, ge=1)
    exec_unit_margin_percent: int = Field(default=0, ge=0)


class NodeConfig(BaseSettings):
    """Node socket backend settings.

    A non-empty ``socket_path`` selects a unix socket, otherwise TCP.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_NODE__",
        case_sensitive=False,
    )

    socket_path: str = ""
    host: str = "127.0.0.1"
    port: int = 3001
    timeout: float = 30.0


class OgmiosConfig(BaseSettings):
    """JSON-RPC websocket backend settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_OGMIOS__",
        case_sensitive=False,
    )

    url: str = "ws://localhost:1337"
    request_timeout: float = 30.0


class HttpBackendConfig(BaseSettings):
    """Blockfrost-compatible REST backend settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_HTTP__",
        case_sensitive=False,
    )

    url: str = "https://cardano-preview.blockfrost.io/api/v0"
    project_id: str = ""
    timeout: float = 30.0


class SubmissionConfig(BaseSettings):
    """Submission retry and confirmation polling settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_SUBMISSION__",
        case_sensitive=False,
    )

    max_retries: int = Field(default=5, ge=0)
    backoff_seconds: float = Field(default=1.0, ge=0)
    max_backoff_seconds: float = Field(default=30.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    confirmation_timeout_seconds: float = Field(default=600.0, gt=0)


class WalletConfig(BaseSettings):
    """Signing material and change destination."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_WALLET__",
        case_sensitive=False,
    )

    seed_hex: str = ""
    derivation_path: str = "m/1852'/1815'/0'/0'/0'"
    signing_keys: list[str] = Field(default_factory=list, description="Raw 32-byte hex seeds")
    change_address: str = ""


class MetricsConfig(BaseSettings):
    """Prometheus metrics settings."""

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_METRICS__",
        case_sensitive=False,
    )

    enabled: bool = True


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------


def _load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file and return its contents as a dict.

    Returns an empty dict if the file doesn't exist or is empty.
    """
    p = Path(path)
    if not p.exists():
        return {}
    text = p.read_text(encoding="utf-8")
    data = yaml.safe_load(text)
    return data if isinstance(data, dict) else {}


class AppConfig(BaseSettings):
    """Top-level configuration.

    Loads settings from environment variables (``TXFORGE_`` prefix),
    an optional YAML file, and built-in defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="TXFORGE_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    network: NetworkId = NetworkId.PREVIEW
    backend: BackendKind = BackendKind.OGMIOS
    config_path: str = ""

    protocol: ProtocolParamsConfig = Field(default_factory=ProtocolParamsConfig)
    builder: BuilderConfig = Field(default_factory=BuilderConfig)
    node: NodeConfig = Field(default_factory=NodeConfig)
    ogmios: OgmiosConfig = Field(default_factory=OgmiosConfig)
    http: HttpBackendConfig = Field(default_factory=HttpBackendConfig)
    submission: SubmissionConfig = Field(default_factory=SubmissionConfig)
    wallet: WalletConfig = Field(default_factory=WalletConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)

    @model_validator(mode="before")
    @classmethod
    def _merge_yaml(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Merge YAML config file contents under the env var overrides."""
        config_path = values.get("config_path", "")
        if not config_path:
            return values
        yaml_data = _load_yaml(config_path)
        # YAML values serve as defaults; env vars (already in *values*) win.
        for key, val in yaml_data.items():
            if key not in values or values[key] is None:
                values[key] = val
            elif isinstance(val, dict) and isinstance(values.get(key), dict):
                values[key] = {**val, **values[key]}
        return values

    @classmethod
    def from_yaml(cls, path: str | Path) -> Self:
        """Construct ``AppConfig`` loading defaults from a YAML file.

        Environment variables still override YAML values.
        """
        return cls(config_path=str(path))

    def protocol_parameters(self) -> ProtocolParameters:
        """Network preset overlaid with any explicitly configured fields."""
        return self.protocol.to_parameters(PRESETS[self.network])
