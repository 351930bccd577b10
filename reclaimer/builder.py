"""Build one atomic close-accounts transaction per batch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction

from .config import ReclaimConfig
from .constants import CLOSE_ACCOUNT_IX, PACKET_DATA_SIZE
from .errors import SimulationError, TransactionTooLarge
from .interfaces import LedgerReader
from .models import Batch, BlockhashWindow, TokenProgram
from .partition import make_batch

logger = logging.getLogger(__name__)


# ---------------- Instruction builders ----------------
def build_transfer_ix(from_pubkey: Pubkey, to_pubkey: Pubkey, lamports: int) -> Instruction:
    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=int(lamports)))


def build_close_account_ix(
    program: TokenProgram,
    token_account: Pubkey,
    destination: Pubkey,
    authority: Pubkey,
) -> Instruction:
    return Instruction(
        program_id=program.program_id,
        accounts=[
            AccountMeta(pubkey=token_account, is_signer=False, is_writable=True),
            AccountMeta(pubkey=destination, is_signer=False, is_writable=True),
            AccountMeta(pubkey=authority, is_signer=True, is_writable=False),
        ],
        data=CLOSE_ACCOUNT_IX,
    )


def transaction_size(message: Message) -> int:
    """Serialized size with placeholder signatures, equal to the signed size."""
    return len(bytes(Transaction.new_unsigned(message)))


@dataclass(slots=True, frozen=True)
class PreparedBatch:
    batch: Batch
    message: Message
    window: BlockhashWindow
    instructions: tuple

    @property
    def has_fee_transfer(self) -> bool:
        return len(self.instructions) > len(self.batch.accounts)


class BatchTransactionBuilder:
    """Turns a batch into a compiled message against fresh ledger state."""

    def __init__(self, ledger: LedgerReader, wallet: Pubkey, config: ReclaimConfig) -> None:
        self.ledger = ledger
        self.wallet = wallet
        self.config = config

    async def refresh(self, batch: Batch) -> Batch:
        """Re-read each account's lamports and recompute the batch amounts.

        An account that disappeared since the scan cannot be closed, so the
        batch fails before anything is signed.
        """
        try:
            balances = await self.ledger.get_balances(batch.addresses)
        except Exception as exc:
            raise SimulationError(f"balance refresh failed: {exc}", detail=exc) from exc
        if len(balances) != len(batch.accounts):
            raise SimulationError(
                f"balance refresh returned {len(balances)} entries for {len(batch.accounts)} accounts"
            )

        fresh = []
        for account, lamports in zip(batch.accounts, balances):
            if lamports is None:
                raise SimulationError(f"account {account.address} no longer exists", detail=str(account.address))
            fresh.append(account.with_lamports(lamports))

        refreshed = make_batch(
            batch.index,
            fresh,
            self.config.fee_bps,
            self.config.fee_recipient is not None,
        )
        if refreshed.gross_lamports != batch.gross_lamports:
            logger.info(
                "batch %d balances drifted: %d -> %d lamports",
                batch.index,
                batch.gross_lamports,
                refreshed.gross_lamports,
            )
        return refreshed

    def instructions_for(self, batch: Batch) -> List[Instruction]:
        ixes: List[Instruction] = [
            build_close_account_ix(a.program, a.address, destination=self.wallet, authority=self.wallet)
            for a in batch.accounts
        ]
        # Same message as the closes: no close, no fee.
        if self.config.fee_recipient is not None and batch.fee_lamports > 0:
            ixes.append(build_transfer_ix(self.wallet, self.config.fee_recipient, batch.fee_lamports))
        return ixes

    async def build(self, batch: Batch) -> PreparedBatch:
        fresh = await self.refresh(batch)
        ixes = self.instructions_for(fresh)
        try:
            window = await self.ledger.get_latest_blockhash_window()
        except Exception as exc:
            raise SimulationError(f"blockhash fetch failed: {exc}", detail=exc) from exc

        msg = Message.new_with_blockhash(ixes, self.wallet, window.blockhash)
        size = transaction_size(msg)
        if size > PACKET_DATA_SIZE:
            raise TransactionTooLarge(
                f"batch {batch.index} with {len(batch)} closes is {size} bytes (limit {PACKET_DATA_SIZE}); "
                f"lower max_per_tx"
            )
        return PreparedBatch(batch=fresh, message=msg, window=window, instructions=tuple(ixes))
