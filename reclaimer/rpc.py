"""Thin JSON-RPC adapter for the ledger reader, simulator and submitter."""

from __future__ import annotations

import asyncio
import base64
import json
import logging
import time
import urllib.error
import urllib.request
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .config import ReclaimConfig
from .constants import MULTIPLE_ACCOUNTS_LIMIT
from .errors import RpcError
from .models import (
    BlockhashWindow,
    ConfirmationResult,
    ConfirmationStatus,
    SimulationResult,
)

logger = logging.getLogger(__name__)


def rpc_call(
    rpc_url: str,
    method: str,
    params: list,
    *,
    max_retries: int = 8,
    timeout: float = 30.0,
) -> dict:
    """Raw JSON-RPC helper with basic 429/backoff handling.

    A JSON-RPC ``error`` object is returned by a healthy node and is raised
    straight away; only transport failures are retried.
    """
    payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
    data = json.dumps(payload).encode("utf-8")
    req = urllib.request.Request(rpc_url, data=data, headers={"Content-Type": "application/json"})

    last_err: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                out = json.loads(resp.read().decode("utf-8"))
        except urllib.error.HTTPError as e:
            last_err = e
            if e.code == 429:
                logger.debug("%s rate limited (attempt %d/%d)", method, attempt, max_retries)
                time.sleep(min(2 * attempt, 10))
                continue
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = ""
            raise RpcError(f"RPC HTTPError {e.code} {e.reason}: {body}", method=method) from e
        except (urllib.error.URLError, OSError, ValueError) as e:
            last_err = e
            logger.debug("%s transport error (attempt %d/%d): %s", method, attempt, max_retries, e)
            time.sleep(min(1.25 * attempt, 8))
            continue

        if "error" in out:
            raise RpcError(f"RPC error: {out['error']}", method=method, payload=out["error"])
        return out

    raise RpcError(f"RPC call failed after retries: {method} (last={last_err})", method=method)


class SolanaRpc:
    """Ledger reader, simulator and submitter over one RPC endpoint.

    The transport is blocking ``urllib``; every call runs in a worker
    thread so the claim loop stays cooperative.
    """

    def __init__(self, config: ReclaimConfig) -> None:
        self.config = config
        self.rpc_url = config.rpc_url
        self.commitment = config.commitment

    async def call(self, method: str, params: list) -> dict:
        return await asyncio.to_thread(
            rpc_call,
            self.rpc_url,
            method,
            params,
            max_retries=self.config.max_retries,
            timeout=self.config.http_timeout_s,
        )

    # ---------------- LedgerReader ----------------
    async def list_token_accounts(self, owner: Pubkey, program_id: Pubkey) -> List[dict]:
        resp = await self.call(
            "getTokenAccountsByOwner",
            [
                str(owner),
                {"programId": str(program_id)},
                {"encoding": "jsonParsed", "commitment": self.commitment},
            ],
        )
        return list((resp.get("result") or {}).get("value", []) or [])

    async def get_balance(self, address: Pubkey) -> int:
        resp = await self.call("getBalance", [str(address), {"commitment": self.commitment}])
        return int((resp.get("result") or {}).get("value", 0) or 0)

    async def get_balances(self, addresses: Sequence[Pubkey]) -> List[Optional[int]]:
        out: List[Optional[int]] = []
        for i in range(0, len(addresses), MULTIPLE_ACCOUNTS_LIMIT):
            chunk = [str(a) for a in addresses[i : i + MULTIPLE_ACCOUNTS_LIMIT]]
            resp = await self.call(
                "getMultipleAccounts",
                [chunk, {"encoding": "base64", "commitment": self.commitment, "dataSlice": {"offset": 0, "length": 0}}],
            )
            infos = (resp.get("result") or {}).get("value", []) or []
            if len(infos) != len(chunk):
                raise RpcError(
                    f"getMultipleAccounts returned {len(infos)} entries for {len(chunk)} keys",
                    method="getMultipleAccounts",
                )
            out.extend(int(info.get("lamports", 0)) if info else None for info in infos)
        return out

    async def get_latest_blockhash_window(self) -> BlockhashWindow:
        resp = await self.call("getLatestBlockhash", [{"commitment": self.commitment}])
        value = (resp.get("result") or {}).get("value", {}) or {}
        bh = value.get("blockhash")
        height = value.get("lastValidBlockHeight")
        if not bh or height is None:
            raise RpcError(f"getLatestBlockhash failed: {resp}", method="getLatestBlockhash")
        return BlockhashWindow(blockhash=Hash.from_string(str(bh)), last_valid_block_height=int(height))

    async def get_block_height(self) -> int:
        resp = await self.call("getBlockHeight", [{"commitment": self.commitment}])
        return int(resp.get("result", 0) or 0)

    # ---------------- TransactionSimulator ----------------
    async def simulate(self, message: Message) -> SimulationResult:
        tx = Transaction.new_unsigned(message)
        tx_b64 = base64.b64encode(bytes(tx)).decode("utf-8")
        resp = await self.call(
            "simulateTransaction",
            [
                tx_b64,
                {"encoding": "base64", "sigVerify": False, "commitment": self.commitment},
            ],
        )
        value = (resp.get("result") or {}).get("value", {}) or {}
        err = value.get("err")
        return SimulationResult(
            ok=err is None,
            error=err,
            logs=tuple(value.get("logs") or ()),
            units_consumed=value.get("unitsConsumed"),
        )

    # ---------------- Submitter ----------------
    async def submit(self, tx: Transaction) -> str:
        tx_b64 = base64.b64encode(bytes(tx)).decode("utf-8")
        resp = await self.call(
            "sendTransaction",
            [
                tx_b64,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": self.commitment,
                },
            ],
        )
        sig = resp.get("result")
        if not sig:
            raise RpcError(f"sendTransaction returned no signature: {resp}", method="sendTransaction")
        return str(sig)

    async def await_confirmation(self, signature: str, last_valid_block_height: int) -> ConfirmationResult:
        """Poll until confirmed, failed, or the blockhash window has passed."""
        wanted = {"confirmed", "finalized"} if self.commitment != "processed" else {"processed", "confirmed", "finalized"}
        while True:
            try:
                resp = await self.call(
                    "getSignatureStatuses",
                    [[signature], {"searchTransactionHistory": True}],
                )
                val = ((resp.get("result") or {}).get("value") or [None])[0]
                if val is not None:
                    err = val.get("err")
                    if err:
                        return ConfirmationResult(ConfirmationStatus.ERROR, err)
                    status = (val.get("confirmationStatus") or "").lower()
                    if status in wanted:
                        return ConfirmationResult(ConfirmationStatus.OK)
                else:
                    height = await self.get_block_height()
                    if height > last_valid_block_height:
                        return ConfirmationResult(
                            ConfirmationStatus.EXPIRED,
                            f"block height {height} exceeded {last_valid_block_height}",
                        )
            except RpcError as exc:
                # the transaction may still land; only expiry or an on-ledger error ends the wait
                logger.warning("confirmation poll for %s failed, retrying: %s", signature, exc)
            await asyncio.sleep(self.config.confirm_poll_s)
