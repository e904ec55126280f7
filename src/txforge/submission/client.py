"""Submission client — retrying submit and confirmation polling.

Transport faults on submit are retried with exponential backoff; ledger
rejections are final. Confirmation is polled until the block shows up or
the deadline passes. Concurrent submits of the same transaction share one
in-flight attempt instead of racing each other.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING

from txforge.chain.backend import TxStatus
from txforge.errors.chain_errors import TransactionRejected, TransportError
from txforge.submission.state import TRANSPORT_EXHAUSTED, SubmissionRecord, SubmissionState

if TYPE_CHECKING:
    from contextlib import AbstractContextManager

    from txforge.chain.backend import ChainBackend
    from txforge.config.settings import SubmissionConfig
    from txforge.ledger.transaction import Transaction
    from txforge.metrics.collector import PipelineMetrics

logger = logging.getLogger(__name__)


class SubmissionClient:
    """Drives signed transactions through submit and confirmation.

    Usage::

        client = SubmissionClient(backend, config.submission)
        record = await client.submit_and_confirm(signed)
        record.raise_for_state()
    """

    def __init__(
        self,
        backend: ChainBackend,
        config: SubmissionConfig,
        *,
        metrics: PipelineMetrics | None = None,
    ) -> None:
        self._backend = backend
        self._config = config
        self._metrics = metrics
        self._in_flight: dict[str, asyncio.Task[SubmissionRecord]] = {}

    @property
    def in_flight(self) -> int:
        """Number of submissions currently being attempted."""
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def submit(self, tx: Transaction) -> SubmissionRecord:
        """Submit ``tx`` and return its record (SUBMITTED or REJECTED).

        A call made while another submit of the same transaction is still
        running waits for that attempt and returns the same record.
        """
        tx_hash = tx.tx_id
        task = self._in_flight.get(tx_hash)
        if task is None:
            task = asyncio.create_task(self._submit(tx_hash, tx.to_cbor()))
            self._in_flight[tx_hash] = task
            task.add_done_callback(lambda done: self._forget(tx_hash, done))
        else:
            logger.info("Joining in-flight submission of %s", tx_hash)
        # A cancelled caller must not cancel the attempt others are waiting on
        return await asyncio.shield(task)

    async def wait_for_confirmation(
        self,
        record: SubmissionRecord,
        timeout: float | None = None,
    ) -> SubmissionRecord:
        """Poll until ``record`` is confirmed, rejected or the deadline passes.

        Hitting the deadline moves the record to TIMED_OUT; the transaction
        may still land on chain afterwards, so a TIMED_OUT record can be
        passed in again to resume polling. Records in any other state are
        returned unchanged.
        """
        if not record.state.awaits_confirmation:
            return record
        before = record.state
        deadline = timeout if timeout is not None else self._config.confirmation_timeout_seconds
        try:
            async with asyncio.timeout(deadline):
                await self._poll(record)
        except TimeoutError:
            record.mark_timed_out()
            logger.warning("No confirmation for %s after %.1fs", record.tx_hash, deadline)
        if record.state is not before:
            self._record_outcome(record)
        return record

    async def submit_and_confirm(
        self,
        tx: Transaction,
        timeout: float | None = None,
    ) -> SubmissionRecord:
        """Submit ``tx`` and, if accepted, wait for its confirmation."""
        record = await self.submit(tx)
        return await self.wait_for_confirmation(record, timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _submit(self, tx_hash: str, tx_cbor: bytes) -> SubmissionRecord:
        record = SubmissionRecord(tx_hash)
        with self._track_in_flight():
            while True:
                try:
                    reported = await self._backend.submit_transaction(tx_cbor)
                except TransportError as exc:
                    self._record_attempt("transport_error")
                    record.last_error = exc.message
                    if record.retries >= self._config.max_retries:
                        break
                    delay = self._backoff(record.retries)
                    record.retries += 1
                    logger.warning(
                        "Submit of %s failed: %s (retry %d/%d in %.1fs)",
                        tx_hash,
                        exc.message,
                        record.retries,
                        self._config.max_retries,
                        delay,
                    )
                    await asyncio.sleep(delay)
                    continue
                except TransactionRejected as exc:
                    self._record_attempt("rejected")
                    record.mark_rejected(exc.reason, exc.detail or None)
                    logger.warning("Ledger rejected %s: %s", tx_hash, exc.reason)
                    self._record_outcome(record)
                    return record

                self._record_attempt("ok")
                if reported != tx_hash:
                    logger.warning("Backend reported hash %s for %s", reported, tx_hash)
                record.mark_submitted()
                logger.info("Submitted %s after %d retries", tx_hash, record.retries)
                return record

        record.mark_rejected(TRANSPORT_EXHAUSTED)
        logger.warning("Giving up on %s after %d retries", tx_hash, record.retries)
        self._record_outcome(record)
        return record

    async def _poll(self, record: SubmissionRecord) -> None:
        while True:
            try:
                status = await self._backend.query_transaction(record.tx_hash)
            except TransportError as exc:
                record.last_error = exc.message
                logger.warning("Confirmation query for %s failed: %s", record.tx_hash, exc.message)
            else:
                if status.is_confirmed:
                    record.mark_confirmed(status.block_height)
                    logger.info("Confirmed %s at height %s", record.tx_hash, status.block_height)
                    return
                if status.status is TxStatus.REJECTED:
                    record.mark_rejected(status.reason or "Rejected")
                    logger.warning("Backend reports %s rejected: %s", record.tx_hash, record.reason)
                    return
            await asyncio.sleep(self._config.poll_interval_seconds)

    def _backoff(self, retry: int) -> float:
        """Delay before retry number ``retry + 1``, doubling up to the cap."""
        return min(self._config.backoff_seconds * (2**retry), self._config.max_backoff_seconds)

    def _forget(self, tx_hash: str, task: asyncio.Task[SubmissionRecord]) -> None:
        if self._in_flight.get(tx_hash) is task:
            del self._in_flight[tx_hash]

    def _track_in_flight(self) -> AbstractContextManager[None]:
        if self._metrics is None:
            return contextlib.nullcontext()
        return self._metrics.track_in_flight()

    def _record_attempt(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_attempt(outcome)

    def _record_outcome(self, record: SubmissionRecord) -> None:
        if self._metrics is not None and record.is_terminal:
            self._metrics.record_outcome(record.state.value)
