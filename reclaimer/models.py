from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from solders.hash import Hash
from solders.pubkey import Pubkey

from .constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID


class TokenProgram(enum.Enum):
    LEGACY_TOKEN = "spl-token"
    TOKEN_2022 = "spl-token-2022"

    @property
    def program_id(self) -> Pubkey:
        if self is TokenProgram.LEGACY_TOKEN:
            return TOKEN_PROGRAM_ID
        return TOKEN_2022_PROGRAM_ID


# ---------------- Accounts ----------------
@dataclass(slots=True, frozen=True)
class TokenAccountRecord:
    """One parsed ``getTokenAccountsByOwner`` entry."""

    address: Pubkey
    program: TokenProgram
    owner: Pubkey
    mint: Pubkey
    amount: int
    lamports: int
    state: str = "initialized"
    close_authority: Optional[Pubkey] = None


@dataclass(slots=True, frozen=True)
class CandidateAccount:
    address: Pubkey
    program: TokenProgram
    mint: Pubkey
    lamports: int

    def with_lamports(self, lamports: int) -> "CandidateAccount":
        return CandidateAccount(self.address, self.program, self.mint, int(lamports))


class Selection:
    """Ordered set of selected account addresses.

    Owned by the caller; the orchestrator only discards addresses whose
    close has been confirmed.
    """

    def __init__(self, addresses: Iterable[Pubkey] = ()) -> None:
        self._addresses: dict[Pubkey, None] = {}
        for address in addresses:
            self._addresses[address] = None

    def __contains__(self, address: object) -> bool:
        return address in self._addresses

    def __iter__(self):
        return iter(list(self._addresses))

    def __len__(self) -> int:
        return len(self._addresses)

    def __bool__(self) -> bool:
        return bool(self._addresses)

    def add(self, address: Pubkey) -> None:
        self._addresses[address] = None

    def discard(self, address: Pubkey) -> None:
        self._addresses.pop(address, None)

    def toggle(self, address: Pubkey) -> bool:
        """Flip membership; returns True when the address is now selected."""
        if address in self._addresses:
            del self._addresses[address]
            return False
        self._addresses[address] = None
        return True

    def select_all(self, candidates: Iterable[CandidateAccount]) -> None:
        self._addresses = {c.address: None for c in candidates}

    def clear(self) -> None:
        self._addresses.clear()

    def resolve(self, candidates: Sequence[CandidateAccount]) -> List[CandidateAccount]:
        """Selected candidates in candidate-list order; stale addresses are ignored."""
        return [c for c in candidates if c.address in self._addresses]


# ---------------- Batches ----------------
@dataclass(slots=True, frozen=True)
class Batch:
    index: int
    accounts: Tuple[CandidateAccount, ...]
    gross_lamports: int
    fee_lamports: int
    net_lamports: int

    def __len__(self) -> int:
        return len(self.accounts)

    @property
    def addresses(self) -> List[Pubkey]:
        return [a.address for a in self.accounts]


@dataclass(slots=True, frozen=True)
class FeePreview:
    gross: int
    fee: int
    net: int


@dataclass(slots=True, frozen=True)
class BlockhashWindow:
    blockhash: Hash
    last_valid_block_height: int


@dataclass(slots=True, frozen=True)
class SimulationResult:
    ok: bool
    error: object = None
    logs: Tuple[str, ...] = ()
    units_consumed: Optional[int] = None


class ConfirmationStatus(enum.Enum):
    OK = "ok"
    ERROR = "error"
    EXPIRED = "expired"


@dataclass(slots=True, frozen=True)
class ConfirmationResult:
    status: ConfirmationStatus
    error: object = None

    @property
    def ok(self) -> bool:
        return self.status is ConfirmationStatus.OK


# ---------------- Claim session ----------------
class BatchStatus(enum.Enum):
    IDLE = "idle"
    SIMULATING = "simulating"
    AWAITING_SIGNATURE = "awaiting_signature"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class SessionState(enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass(slots=True, frozen=True)
class BatchProgress:
    index: int
    total: int
    status: BatchStatus
    detail: str = ""


@dataclass(slots=True)
class ClaimSession:
    batches: List[Batch]
    statuses: List[BatchStatus] = field(default_factory=list)
    completed_count: int = 0
    total_reclaimed_lamports: int = 0
    total_fee_lamports: int = 0
    last_signature: str = ""
    signatures: List[str] = field(default_factory=list)
    state: SessionState = SessionState.RUNNING
    error: Optional[BaseException] = None
    failed_batch: Optional[int] = None

    def __post_init__(self) -> None:
        if not self.statuses:
            self.statuses = [BatchStatus.IDLE] * len(self.batches)

    @property
    def total_batches(self) -> int:
        return len(self.batches)

    @property
    def succeeded(self) -> bool:
        return self.state is SessionState.COMPLETED
