"""Capabilities the engine consumes from the outside world."""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .models import BlockhashWindow, ConfirmationResult, SimulationResult


class LedgerReader(Protocol):
    async def list_token_accounts(self, owner: Pubkey, program_id: Pubkey) -> List[dict]: ...

    async def get_balance(self, address: Pubkey) -> int: ...

    async def get_balances(self, addresses: Sequence[Pubkey]) -> List[Optional[int]]:
        """Lamports per address, ``None`` where the account does not exist."""
        ...

    async def get_latest_blockhash_window(self) -> BlockhashWindow: ...


class TransactionSimulator(Protocol):
    async def simulate(self, message: Message) -> SimulationResult: ...


class Signer(Protocol):
    @property
    def pubkey(self) -> Pubkey: ...

    async def sign(self, message: Message) -> Transaction:
        """Return the signed transaction or raise ``SigningRejected``."""
        ...


class Submitter(Protocol):
    async def submit(self, tx: Transaction) -> str: ...

    async def await_confirmation(self, signature: str, last_valid_block_height: int) -> ConfirmationResult: ...
