"""Turn raw ``getTokenAccountsByOwner`` entries into closable candidates."""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, Iterable, List, Mapping

from solders.pubkey import Pubkey

from .constants import WSOL_MINT
from .errors import DiscoveryError, MalformedRecord
from .interfaces import LedgerReader
from .models import CandidateAccount, TokenAccountRecord, TokenProgram

logger = logging.getLogger(__name__)


def _pubkey(value, field_name: str) -> Pubkey:
    if not isinstance(value, str) or not value:
        raise MalformedRecord(f"missing {field_name}")
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise MalformedRecord(f"bad {field_name}: {value!r}") from exc


def parse_token_account(raw: Mapping, program: TokenProgram) -> TokenAccountRecord:
    """Validate one jsonParsed entry.

    Only the raw integer ``amount`` is trusted for the token balance;
    ``uiAmount`` is a float and may round a dust balance to zero.
    """
    try:
        account = raw["account"]
        info = account["data"]["parsed"]["info"]
        raw_amount = info["tokenAmount"]["amount"]
    except (KeyError, TypeError) as exc:
        raise MalformedRecord(f"unexpected layout: {exc!r}") from exc

    try:
        amount = int(raw_amount)
        lamports = int(account.get("lamports", 0) or 0)
    except (TypeError, ValueError) as exc:
        raise MalformedRecord(f"non-integer amount: {raw_amount!r}") from exc

    close_auth = info.get("closeAuthority")
    return TokenAccountRecord(
        address=_pubkey(raw.get("pubkey"), "pubkey"),
        program=program,
        owner=_pubkey(info.get("owner"), "owner"),
        mint=_pubkey(info.get("mint"), "mint"),
        amount=amount,
        lamports=lamports,
        state=str(info.get("state") or "initialized"),
        close_authority=_pubkey(close_auth, "closeAuthority") if close_auth else None,
    )


def is_closable(record: TokenAccountRecord, owner: Pubkey) -> bool:
    if record.owner != owner:
        return False
    if record.amount != 0:
        return False
    if record.mint == WSOL_MINT:
        return False
    if record.lamports <= 0:
        return False
    # Frozen accounts or a foreign close authority would fail the whole batch.
    if record.state == "frozen":
        return False
    return record.close_authority is None or record.close_authority == owner


def classify(raw_by_program: Mapping[TokenProgram, Iterable[Mapping]], owner: Pubkey) -> List[CandidateAccount]:
    """Merge both token programs into one candidate list, largest rent first."""
    out: List[CandidateAccount] = []
    for program, entries in raw_by_program.items():
        for raw in entries or []:
            try:
                record = parse_token_account(raw, program)
            except MalformedRecord as exc:
                logger.debug("skipping malformed %s record: %s", program.value, exc)
                continue
            if not is_closable(record, owner):
                continue
            out.append(
                CandidateAccount(
                    address=record.address,
                    program=record.program,
                    mint=record.mint,
                    lamports=record.lamports,
                )
            )
    out.sort(key=lambda c: c.lamports, reverse=True)
    return out


async def scan(ledger: LedgerReader, owner: Pubkey) -> List[CandidateAccount]:
    """Fetch both token programs and classify.

    Either fetch failing fails the scan; callers never see half a wallet.
    """
    programs = list(TokenProgram)
    try:
        results = await asyncio.gather(
            *(ledger.list_token_accounts(owner, p.program_id) for p in programs)
        )
    except Exception as exc:
        raise DiscoveryError(f"token account scan failed for {owner}: {exc}") from exc

    raw_by_program: Dict[TokenProgram, Iterable[Mapping]] = dict(zip(programs, results))
    candidates = classify(raw_by_program, owner)
    logger.info(
        "scan %s: %d records, %d candidates",
        owner,
        sum(len(r or []) for r in results),
        len(candidates),
    )
    return candidates
