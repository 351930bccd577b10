"""Sequential simulate → sign → submit → confirm loop over claim batches.

Batches run strictly one after another. The first failure aborts the rest of
the run; batches that already confirmed stay reclaimed and are reported in
the returned ``ClaimSession``. Nothing is retried automatically.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, List, Optional

from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from . import classifier
from .builder import BatchTransactionBuilder, PreparedBatch
from .config import ReclaimConfig
from .errors import (
    ConfirmationExpired,
    DiscoveryError,
    ExecutionError,
    NotReady,
    ReclaimError,
    SigningRejected,
    SimulationError,
)
from .fees import preview_fees
from .interfaces import LedgerReader, Signer, Submitter, TransactionSimulator
from .models import (
    Batch,
    BatchProgress,
    BatchStatus,
    CandidateAccount,
    ClaimSession,
    ConfirmationStatus,
    FeePreview,
    Selection,
    SessionState,
)
from .partition import partition

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[BatchProgress], None]


class ClaimOrchestrator:
    """Owns the live candidate list and drives claim runs.

    ``ledger`` must also act as simulator and submitter unless those are
    passed separately (``SolanaRpc`` covers all three).
    """

    def __init__(
        self,
        config: ReclaimConfig,
        ledger: LedgerReader,
        signer: Optional[Signer] = None,
        *,
        simulator: Optional[TransactionSimulator] = None,
        submitter: Optional[Submitter] = None,
        owner: Optional[Pubkey] = None,
    ) -> None:
        self.config = config
        self.ledger = ledger
        self.signer = signer
        self.simulator = simulator if simulator is not None else ledger
        self.submitter = submitter if submitter is not None else ledger
        self.owner = owner
        self.candidates: List[CandidateAccount] = []
        self.selection = Selection()
        self.last_session: Optional[ClaimSession] = None
        self._lock = asyncio.Lock()

    @property
    def claiming(self) -> bool:
        return self._lock.locked()

    def _scan_owner(self, owner: Optional[Pubkey]) -> Pubkey:
        if owner is not None:
            return owner
        if self.signer is not None:
            return self.signer.pubkey
        if self.owner is not None:
            return self.owner
        raise NotReady("No wallet to scan: pass an owner or connect a signer")

    # ---------------- Discovery ----------------
    async def scan(self, owner: Optional[Pubkey] = None) -> List[CandidateAccount]:
        """Replace the candidate list with a fresh scan and clear the selection."""
        if self.claiming:
            raise NotReady("Cannot rescan while a claim is running")
        owner = self._scan_owner(owner)
        try:
            candidates = await classifier.scan(self.ledger, owner)
        except DiscoveryError:
            self.candidates = []
            self.selection.clear()
            raise
        self.owner = owner
        self.candidates = candidates
        self.selection.clear()
        return list(candidates)

    def preview_fees(self, selection: Optional[Selection] = None) -> FeePreview:
        selection = self.selection if selection is None else selection
        return preview_fees(
            selection.resolve(self.candidates),
            self.config.fee_bps,
            self.config.fee_recipient is not None,
            max_per_tx=self.config.max_per_tx,
        )

    # ---------------- Claim ----------------
    def _check_ready(self, accounts: List[CandidateAccount]) -> Signer:
        if self.signer is None:
            raise NotReady("No signer connected")
        if not accounts:
            raise NotReady("Nothing selected")
        if self.owner is not None and self.owner != self.signer.pubkey:
            raise NotReady(f"Candidates belong to {self.owner}, signer is {self.signer.pubkey}")
        if self.claiming:
            raise NotReady("A claim is already running")
        return self.signer

    async def run_claim(
        self,
        selection: Optional[Selection] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> ClaimSession:
        """Claim every selected candidate, batch by batch.

        Raises ``NotReady`` before touching the ledger when there is nothing
        to do. Otherwise always returns the session, completed or aborted.
        """
        selection = self.selection if selection is None else selection
        accounts = selection.resolve(self.candidates)
        signer = self._check_ready(accounts)

        async with self._lock:
            batches = partition(
                accounts,
                self.config.max_per_tx,
                self.config.fee_bps,
                self.config.fee_recipient is not None,
            )
            session = ClaimSession(batches=batches)
            self.last_session = session
            builder = BatchTransactionBuilder(self.ledger, signer.pubkey, self.config)
            logger.info(
                "claim started: %d accounts in %d batches (max %d per tx)",
                len(accounts),
                len(batches),
                self.config.max_per_tx,
            )
            try:
                for batch in batches:
                    if not await self._run_batch(session, batch, builder, signer, selection, on_progress):
                        break
                else:
                    session.state = SessionState.COMPLETED
            except asyncio.CancelledError as exc:
                session.state = SessionState.ABORTED
                session.error = exc
                for i, status in enumerate(session.statuses):
                    if status not in (BatchStatus.IDLE, BatchStatus.CONFIRMED):
                        session.statuses[i] = BatchStatus.FAILED
                        session.failed_batch = i + 1
                logger.warning("claim cancelled after %d confirmed batches", session.completed_count)
                raise

        logger.info(
            "claim %s: %d/%d batches, %d lamports reclaimed, %d lamports fee",
            session.state.value,
            session.completed_count,
            session.total_batches,
            session.total_reclaimed_lamports,
            session.total_fee_lamports,
        )
        return session

    def _set_status(
        self,
        session: ClaimSession,
        batch: Batch,
        status: BatchStatus,
        on_progress: Optional[ProgressCallback],
        detail: str = "",
    ) -> None:
        session.statuses[batch.index - 1] = status
        if on_progress is not None:
            on_progress(BatchProgress(batch.index, session.total_batches, status, detail))

    async def _run_batch(
        self,
        session: ClaimSession,
        batch: Batch,
        builder: BatchTransactionBuilder,
        signer: Signer,
        selection: Selection,
        on_progress: Optional[ProgressCallback],
    ) -> bool:
        self._set_status(session, batch, BatchStatus.SIMULATING, on_progress)
        try:
            prepared = await builder.build(batch)
            session.batches[batch.index - 1] = prepared.batch
            await self._simulate(prepared)

            self._set_status(session, batch, BatchStatus.AWAITING_SIGNATURE, on_progress)
            tx = await self._sign(signer, prepared.message)

            signature = await self._submit(tx)
            self._set_status(session, batch, BatchStatus.SUBMITTED, on_progress, signature)
            await self._confirm(signature, prepared)
        except ReclaimError as exc:
            session.state = SessionState.ABORTED
            session.error = exc
            session.failed_batch = batch.index
            logger.warning("batch %d/%d failed: %s", batch.index, session.total_batches, exc)
            self._set_status(session, batch, BatchStatus.FAILED, on_progress, str(exc))
            return False

        self._reconcile(session, prepared.batch, signature, selection)
        self._set_status(session, batch, BatchStatus.CONFIRMED, on_progress, signature)
        return True

    async def _simulate(self, prepared: PreparedBatch) -> None:
        try:
            result = await self.simulator.simulate(prepared.message)
        except ReclaimError as exc:
            raise SimulationError(f"simulation request failed: {exc}", detail=exc) from exc
        except Exception as exc:
            raise SimulationError(f"simulator failed: {exc}", detail=exc) from exc
        if not result.ok:
            raise SimulationError(
                f"simulation failed for batch {prepared.batch.index}: {result.error}",
                detail=result.error,
                logs=list(result.logs),
            )

    async def _sign(self, signer: Signer, message: Message) -> Transaction:
        timeout = self.config.sign_timeout_s
        try:
            if timeout is None:
                return await signer.sign(message)
            return await asyncio.wait_for(signer.sign(message), timeout)
        except SigningRejected:
            raise
        except asyncio.TimeoutError as exc:
            raise SigningRejected(f"no signature within {timeout}s") from exc
        except Exception as exc:
            raise SigningRejected(f"signer failed: {exc}", detail=exc) from exc

    async def _submit(self, tx: Transaction) -> str:
        try:
            return await self.submitter.submit(tx)
        except ReclaimError as exc:
            raise ExecutionError(f"submit failed: {exc}", detail=exc) from exc
        except Exception as exc:
            raise ExecutionError(f"submitter failed: {exc}", detail=exc) from exc

    async def _confirm(self, signature: str, prepared: PreparedBatch) -> None:
        timeout = self.config.confirm_timeout_s
        pending = self.submitter.await_confirmation(signature, prepared.window.last_valid_block_height)
        try:
            result = await (pending if timeout is None else asyncio.wait_for(pending, timeout))
        except asyncio.TimeoutError as exc:
            raise ConfirmationExpired(
                f"{signature} not confirmed within {timeout}s", signature=signature
            ) from exc
        except ReclaimError as exc:
            raise ExecutionError(f"confirmation failed: {exc}", signature=signature, detail=exc) from exc
        except Exception as exc:
            raise ExecutionError(f"confirmation wait failed: {exc}", signature=signature, detail=exc) from exc

        if result.status is ConfirmationStatus.EXPIRED:
            raise ConfirmationExpired(
                f"{signature} expired before confirmation: {result.error}", signature=signature, detail=result.error
            )
        if result.status is ConfirmationStatus.ERROR:
            raise ExecutionError(f"transaction {signature} failed: {result.error}", signature=signature, detail=result.error)

    def _reconcile(self, session: ClaimSession, batch: Batch, signature: str, selection: Selection) -> None:
        closed = set(batch.addresses)
        self.candidates = [c for c in self.candidates if c.address not in closed]
        for address in closed:
            selection.discard(address)
            if selection is not self.selection:
                self.selection.discard(address)

        session.total_reclaimed_lamports += batch.net_lamports
        session.total_fee_lamports += batch.fee_lamports
        session.last_signature = signature
        session.signatures.append(signature)
        session.completed_count += 1
        logger.info(
            "batch %d/%d confirmed: %s net=%d fee=%d",
            batch.index,
            session.total_batches,
            signature,
            batch.net_lamports,
            batch.fee_lamports,
        )
