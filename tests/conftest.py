"""
Reclaimer Test Configuration
============================
In-memory ledger / signer fakes and shared fixtures.
"""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from reclaimer.config import ReclaimConfig
from reclaimer.constants import TOKEN_2022_PROGRAM_ID, TOKEN_PROGRAM_ID, WSOL_MINT
from reclaimer.errors import RpcError, SigningRejected
from reclaimer.models import (
    BlockhashWindow,
    CandidateAccount,
    ConfirmationResult,
    ConfirmationStatus,
    SimulationResult,
    TokenProgram,
)
from reclaimer.signer import KeypairSigner

RENT = 1_000_000


def raw_record(
    address: Pubkey,
    owner: Pubkey,
    mint: Optional[Pubkey] = None,
    *,
    amount: str = "0",
    ui_amount: float = 0.0,
    lamports: int = RENT,
    state: str = "initialized",
    close_authority: Optional[Pubkey] = None,
) -> dict:
    """Shape of one jsonParsed getTokenAccountsByOwner entry."""
    info = {
        "isNative": mint is not None and mint == WSOL_MINT,
        "mint": str(mint or Pubkey.new_unique()),
        "owner": str(owner),
        "state": state,
        "tokenAmount": {"amount": amount, "decimals": 6, "uiAmount": ui_amount, "uiAmountString": str(ui_amount)},
    }
    if close_authority is not None:
        info["closeAuthority"] = str(close_authority)
    return {
        "pubkey": str(address),
        "account": {
            "data": {"parsed": {"info": info, "type": "account"}, "program": "spl-token", "space": 165},
            "executable": False,
            "lamports": lamports,
            "owner": str(TOKEN_PROGRAM_ID),
            "rentEpoch": 0,
        },
    }


class FakeLedger:
    """Reader, simulator and submitter backed by dicts.

    ``sim_errors`` / ``confirm_results`` are keyed by 1-based call number.
    A confirmed transaction removes the closed accounts from ``balances``.
    """

    def __init__(self) -> None:
        self.token_accounts: Dict[Pubkey, List[dict]] = {TOKEN_PROGRAM_ID: [], TOKEN_2022_PROGRAM_ID: []}
        self.failing_programs: set = set()
        self.balances: Dict[Pubkey, int] = {}
        self.wallet_balance = 5 * RENT
        self.sim_errors: Dict[int, object] = {}
        self.confirm_results: Dict[int, ConfirmationResult] = {}
        self.simulated: List = []
        self.submitted: List[Transaction] = []
        self.events: List[str] = []
        self.last_valid_block_height = 1_000

    def add_candidate(self, owner: Pubkey, lamports: int = RENT, program: TokenProgram = TokenProgram.LEGACY_TOKEN) -> Pubkey:
        address = Pubkey.new_unique()
        self.token_accounts[program.program_id].append(raw_record(address, owner, lamports=lamports))
        self.balances[address] = lamports
        return address

    async def list_token_accounts(self, owner: Pubkey, program_id: Pubkey) -> List[dict]:
        self.events.append("list")
        if program_id in self.failing_programs:
            raise RpcError("node unavailable", method="getTokenAccountsByOwner")
        return list(self.token_accounts[program_id])

    async def get_balance(self, address: Pubkey) -> int:
        return self.wallet_balance

    async def get_balances(self, addresses) -> List[Optional[int]]:
        self.events.append("balances")
        return [self.balances.get(a) for a in addresses]

    async def get_latest_blockhash_window(self) -> BlockhashWindow:
        return BlockhashWindow(Hash.new_unique(), self.last_valid_block_height)

    async def simulate(self, message) -> SimulationResult:
        self.events.append("simulate")
        self.simulated.append(message)
        err = self.sim_errors.get(len(self.simulated))
        if err is not None:
            return SimulationResult(ok=False, error=err, logs=("Program log: failed",))
        return SimulationResult(ok=True, units_consumed=3_000)

    async def submit(self, tx: Transaction) -> str:
        self.events.append("submit")
        self.submitted.append(tx)
        return f"sig{len(self.submitted)}"

    async def await_confirmation(self, signature: str, last_valid_block_height: int) -> ConfirmationResult:
        self.events.append("confirm")
        n = int(signature[3:])
        result = self.confirm_results.get(n, ConfirmationResult(ConfirmationStatus.OK))
        if result.ok:
            msg = self.submitted[n - 1].message
            keys = msg.account_keys
            for ix in msg.instructions:
                if keys[ix.program_id_index] in (TOKEN_PROGRAM_ID, TOKEN_2022_PROGRAM_ID):
                    closed = keys[ix.accounts[0]]
                    self.balances.pop(closed, None)
                    for records in self.token_accounts.values():
                        records[:] = [r for r in records if r["pubkey"] != str(closed)]
        return result


class FakeSigner(KeypairSigner):
    def __init__(self, keypair: Keypair, reject_on: Optional[int] = None) -> None:
        super().__init__(keypair)
        self.reject_on = reject_on
        self.calls = 0

    async def sign(self, message) -> Transaction:
        self.calls += 1
        if self.reject_on == self.calls:
            raise SigningRejected("User rejected the request")
        return await super().sign(message)


@pytest.fixture
def wallet() -> Keypair:
    return Keypair()


@pytest.fixture
def owner(wallet) -> Pubkey:
    return wallet.pubkey()


@pytest.fixture
def fee_recipient() -> Pubkey:
    return Pubkey.new_unique()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def signer(wallet) -> FakeSigner:
    return FakeSigner(wallet)


@pytest.fixture
def no_fee_config() -> ReclaimConfig:
    return ReclaimConfig(rpc_url="http://localhost:8899", fee_recipient=None, fee_bps=300, max_per_tx=8)


@pytest.fixture
def fee_config(fee_recipient) -> ReclaimConfig:
    return ReclaimConfig(rpc_url="http://localhost:8899", fee_recipient=fee_recipient, fee_bps=300, max_per_tx=8)


def make_candidates(n: int, lamports: int = RENT) -> List[CandidateAccount]:
    return [
        CandidateAccount(Pubkey.new_unique(), TokenProgram.LEGACY_TOKEN, Pubkey.new_unique(), lamports)
        for _ in range(n)
    ]
