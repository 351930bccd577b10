"""Scan a wallet for empty token accounts and reclaim their rent.

Defaults to DRY RUN. Use ``claim --execute`` to broadcast transactions.

Env:
  - KEYPAIR_PATH (wallet keypair, solana-keygen JSON or .json.gz)
  - HELIUS_API_KEY (optional)
  - RPC_URL or SOLANA_URL (optional override)
  - FEE_RECIPIENT / FEE_BPS (optional service fee, zero-fee when unset)
  - MAX_ACCOUNTS_PER_TX (default: 8)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
from pathlib import Path
from typing import List, Optional, Sequence

from dotenv import load_dotenv
from solders.pubkey import Pubkey

from .config import ReclaimConfig
from .constants import LAMPORTS_PER_SOL
from .errors import DiscoveryError, ReclaimError, ValidationError
from .models import BatchProgress, BatchStatus, CandidateAccount, SessionState
from .orchestrator import ClaimOrchestrator
from .partition import partition
from .rpc import SolanaRpc
from .signer import KeypairSigner, PromptingSigner

# ---------------- Formatting ----------------
def fmt_sol(lamports: int) -> str:
    return f"{lamports / LAMPORTS_PER_SOL:.9f}".rstrip("0").rstrip(".") or "0"


def short_pk(pk: Pubkey, a: int = 4, b: int = 4) -> str:
    s = str(pk)
    return f"{s[:a]}…{s[-b:]}"


def print_candidates(candidates: Sequence[CandidateAccount], limit: int = 25) -> None:
    for c in candidates[:limit]:
        print(f"  {c.address} {c.program.value:<14} mint={short_pk(c.mint)} rent={fmt_sol(c.lamports)} SOL")
    if len(candidates) > limit:
        print(f"  ... ({len(candidates) - limit} more)")


# ---------------- Commands ----------------
async def run_scan(config: ReclaimConfig, owner: Pubkey) -> int:
    rpc = SolanaRpc(config)
    orch = ClaimOrchestrator(config, rpc, owner=owner)
    balance = await rpc.get_balance(owner)
    print(f"Wallet: {owner}")
    print(f"Wallet balance: {fmt_sol(balance)} SOL ({balance} lamports)")
    print("-" * 80)

    candidates = await orch.scan()
    total = sum(c.lamports for c in candidates)
    print(f"Empty accounts: {len(candidates)}")
    if candidates:
        print(f"Rent / account: {fmt_sol(total // len(candidates))} SOL (avg)")
    print(f"Total reclaimable rent: {fmt_sol(total)} SOL")
    print_candidates(candidates)
    return 0


async def run_claim(config: ReclaimConfig, keypair_path: Path, *, execute: bool, assume_yes: bool, limit: int) -> int:
    wallet = KeypairSigner.from_file(keypair_path)
    signer = wallet if assume_yes else PromptingSigner(wallet)
    rpc = SolanaRpc(config)
    orch = ClaimOrchestrator(config, rpc, signer)

    balance = await rpc.get_balance(wallet.pubkey)
    print(f"RPC: {config.rpc_url}")
    print(f"Wallet: {wallet.pubkey} ({keypair_path})")
    print(f"Wallet balance: {fmt_sol(balance)} SOL ({balance} lamports)")
    if config.fee_enabled:
        print(f"Fee: {config.fee_bps / 100:.2f}% per confirmed batch -> {config.fee_recipient}")
    else:
        print("Fee: none")
    print(f"Mode: {'EXECUTE' if execute else 'DRY RUN'}")
    print("-" * 80)

    candidates = await orch.scan()
    if not candidates:
        print("No empty token accounts found; wallet is already clean.")
        return 0

    chosen = candidates[:limit] if limit > 0 else candidates
    orch.selection.select_all(chosen)
    preview = orch.preview_fees()
    print(f"Selected {len(chosen)}/{len(candidates)} empty token accounts")
    print_candidates(chosen)
    print(f"Estimated: gross={fmt_sol(preview.gross)} fee={fmt_sol(preview.fee)} net={fmt_sol(preview.net)} SOL")

    if not execute:
        plan = partition(chosen, config.max_per_tx, config.fee_bps, config.fee_recipient is not None)
        print(f"DRY RUN: would send {len(plan)} transaction(s).")
        for batch in plan:
            print(
                f"  batch {batch.index}/{len(plan)}: {len(batch)} closes "
                f"gross={fmt_sol(batch.gross_lamports)} fee={fmt_sol(batch.fee_lamports)} "
                f"net={fmt_sol(batch.net_lamports)}"
            )
        return 0

    def report(progress: BatchProgress) -> None:
        if progress.status is BatchStatus.AWAITING_SIGNATURE and isinstance(signer, PromptingSigner):
            signer.prompt = f"Sign claim batch {progress.index}/{progress.total}?"
        line = f"  [{progress.index}/{progress.total}] {progress.status.value}"
        if progress.detail:
            line += f": {progress.detail}"
        print(line)

    session = await orch.run_claim(on_progress=report)

    print("-" * 80)
    print(f"Batches confirmed: {session.completed_count}/{session.total_batches}")
    print(f"Reclaimed (net):   {fmt_sol(session.total_reclaimed_lamports)} SOL")
    print(f"Fee charged:       {fmt_sol(session.total_fee_lamports)} SOL")
    if session.last_signature:
        print(f"Last tx:           {session.last_signature}")
    if session.state is not SessionState.COMPLETED:
        print(f"ABORTED at batch {session.failed_batch}: {session.error}")
        if orch.candidates:
            print(f"{len(orch.candidates)} accounts left open; rescan and claim again to retry.")
        return 1
    print("DONE")
    return 0


# ---------------- Main ----------------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="reclaimer",
        description="Reclaim SOL rent locked in empty SPL / Token-2022 token accounts.",
    )
    ap.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    ap.add_argument("--rpc-url", default="", help="RPC URL override (default: RPC_URL/SOLANA_URL/HELIUS_API_KEY)")
    ap.add_argument(
        "--keypair",
        default=os.getenv("KEYPAIR_PATH", ""),
        help="Wallet keypair path (default: env KEYPAIR_PATH)",
    )
    ap.add_argument("--fee-recipient", default=None, help="Fee recipient address (default: env FEE_RECIPIENT)")
    ap.add_argument("--fee-bps", type=int, default=None, help="Fee in basis points (default: env FEE_BPS or 300)")
    ap.add_argument(
        "--max-per-tx",
        type=int,
        default=None,
        help="CloseAccount instructions per tx (default: env MAX_ACCOUNTS_PER_TX or 8)",
    )

    sub = ap.add_subparsers(dest="command", required=True)

    scan_p = sub.add_parser("scan", help="List empty token accounts and their reclaimable rent")
    scan_p.add_argument("--owner", default="", help="Wallet address to scan (default: keypair pubkey)")

    claim_p = sub.add_parser("claim", help="Close empty token accounts in batches")
    claim_p.add_argument("--execute", action="store_true", help="Broadcast transactions (default: dry run)")
    claim_p.add_argument("--yes", action="store_true", help="Sign every batch without asking")
    claim_p.add_argument("--limit", type=int, default=0, help="Only claim the N largest accounts (0 = all)")
    return ap


def _configure_logging(verbosity: int) -> None:
    level = logging.WARNING
    if verbosity == 1:
        level = logging.INFO
    elif verbosity > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    _configure_logging(args.verbose)

    try:
        config = ReclaimConfig.from_env(
            rpc_url=(args.rpc_url or "").strip() or None,
            fee_recipient=args.fee_recipient,
            fee_bps=args.fee_bps,
            max_per_tx=args.max_per_tx,
        )
        keypair_path = Path(args.keypair).expanduser().resolve() if args.keypair else None

        if args.command == "scan":
            if args.owner:
                owner = Pubkey.from_string(args.owner.strip())
            elif keypair_path is not None:
                owner = KeypairSigner.from_file(keypair_path).pubkey
            else:
                print("ERROR: pass --owner or --keypair (or set KEYPAIR_PATH)")
                return 2
            return asyncio.run(run_scan(config, owner))

        if keypair_path is None or not keypair_path.exists():
            print(f"ERROR: keypair not found: {keypair_path or '(unset)'}")
            return 2
        return asyncio.run(
            run_claim(config, keypair_path, execute=args.execute, assume_yes=args.yes, limit=args.limit)
        )
    except ValidationError as exc:
        print(f"ERROR: {exc}")
        return 2
    except ValueError as exc:
        print(f"ERROR: invalid address: {exc}")
        return 2
    except DiscoveryError as exc:
        print(f"Scan error: {exc}")
        return 1
    except ReclaimError as exc:
        print(f"ERROR: {exc}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
