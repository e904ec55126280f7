"""TxForge — the build, sign and submit pipeline behind one object.

Composes a chain backend, the balancer (with a script evaluator over the
same backend), a keyring and the submission client, all configured from a
single :class:`AppConfig`.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from txforge.builder.accumulator import TransactionBuilder
from txforge.builder.balancer import Balancer
from txforge.builder.evaluation import ScriptEvaluator
from txforge.chain.factory import create_backend
from txforge.config.settings import AppConfig
from txforge.ledger.address import Address
from txforge.metrics.collector import PipelineMetrics
from txforge.signing.keys import Keyring
from txforge.signing.signer import sign_transaction
from txforge.submission.client import SubmissionClient

if TYPE_CHECKING:
    from collections.abc import Iterable

    from txforge.builder.balancer import BalancedDraft
    from txforge.builder.intents import IntentSet
    from txforge.chain.backend import ChainBackend
    from txforge.ledger.params import ProtocolParameters
    from txforge.ledger.primitives import UTxO
    from txforge.ledger.transaction import Transaction
    from txforge.signing.signer import SignedTransaction
    from txforge.submission.state import SubmissionRecord

logger = logging.getLogger(__name__)


class TxForge:
    """Unified pipeline: intents in, confirmed transaction out.

    Usage::

        forge = TxForge(AppConfig.from_yaml("txforge.yaml"))
        await forge.connect()
        try:
            intents = forge.builder().pay_to(address, Value.lovelace(2_000_000)).finish()
            draft = await forge.build(intents)
            record = await forge.submit(forge.sign(draft))
            record.raise_for_state()
        finally:
            await forge.close()
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        backend: ChainBackend | None = None,
        keyring: Keyring | None = None,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            config: Application configuration (defaults and env vars if None).
            backend: Chain backend; built from ``config.backend`` if None.
            keyring: Signing keys; built from ``config.wallet`` if None.
            metrics: Metrics sink; created when ``config.metrics.enabled``.
        """
        self._config = config or AppConfig()
        if metrics is None and self._config.metrics.enabled:
            metrics = PipelineMetrics()
        self._metrics = metrics
        self._backend = backend or create_backend(self._config)
        self._keyring = keyring if keyring is not None else Keyring.from_config(self._config.wallet)
        self._params = self._config.protocol_parameters()
        self._balancer = Balancer(
            self._params,
            evaluator=ScriptEvaluator(
                self._backend, margin_percent=self._config.builder.exec_unit_margin_percent
            ),
            max_iterations=self._config.builder.max_iterations,
            metrics=self._metrics,
        )
        self._submission = SubmissionClient(
            self._backend, self._config.submission, metrics=self._metrics
        )

    async def connect(self) -> None:
        """Open the backend connection."""
        await self._backend.connect()

    async def close(self) -> None:
        """Close the backend connection."""
        await self._backend.close()

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def backend(self) -> ChainBackend:
        return self._backend

    @property
    def keyring(self) -> Keyring:
        return self._keyring

    @property
    def params(self) -> ProtocolParameters:
        return self._params

    @property
    def metrics(self) -> PipelineMetrics | None:
        return self._metrics

    @property
    def change_address(self) -> Address:
        """Configured change address, else the enterprise address of the first key."""
        if self._config.wallet.change_address:
            return Address.from_bech32(self._config.wallet.change_address)
        for key in self._keyring:
            return Address.from_key_hashes(
                key.key_hash, network_id=self._config.network.address_network_id
            )
        msg = "No change address configured and no signing key to derive one from"
        raise ValueError(msg)

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------

    @staticmethod
    def builder() -> TransactionBuilder:
        """Start a fresh intent accumulator."""
        return TransactionBuilder()

    async def build(
        self,
        intents: IntentSet,
        candidates: Iterable[UTxO] | None = None,
        *,
        change_address: Address | None = None,
    ) -> BalancedDraft:
        """Balance ``intents``.

        Without explicit ``candidates`` the backend is asked for the UTxOs
        at the change address.
        """
        change = change_address or self.change_address
        if candidates is None:
            candidates = await self._backend.candidates_for([change])
        return await self._balancer.balance(intents, candidates, change)

    def sign(self, draft: BalancedDraft) -> SignedTransaction:
        """Attach one signature per signatory of ``draft``."""
        return sign_transaction(draft, self._keyring)

    async def submit(self, tx: Transaction, *, wait: bool = True) -> SubmissionRecord:
        """Submit ``tx``; with ``wait`` also poll until confirmed or timed out."""
        if wait:
            return await self._submission.submit_and_confirm(tx)
        return await self._submission.submit(tx)
