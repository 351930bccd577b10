from __future__ import annotations

import asyncio
import gzip
import json
import logging
from pathlib import Path
from typing import Callable, Optional

from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from .errors import SigningRejected, ValidationError
from .interfaces import Signer

logger = logging.getLogger(__name__)


# ---------------- Keypair loading ----------------
def load_keypair_any(path: Path) -> Keypair:
    """Load a solana-keygen style keypair from .json or .json.gz.

    Supports:
      - JSON array of 64 ints (Solana CLI default)
      - JSON string holding the base58 encoding of the 64 raw bytes
    """
    try:
        if path.name.endswith(".json.gz") or path.suffix == ".gz":
            with gzip.open(path, "rt", encoding="utf-8") as fh:
                payload = json.load(fh)
        else:
            with path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
    except (OSError, ValueError) as exc:
        raise ValidationError(f"Cannot read keypair file {path}: {exc}") from exc

    try:
        if isinstance(payload, list):
            raw = bytes(int(x) for x in payload)
            if len(raw) != 64:
                raise ValidationError(f"Keypair must be 64 bytes (got {len(raw)}): {path}")
            return Keypair.from_bytes(raw)
        if isinstance(payload, str):
            return Keypair.from_base58_string(payload.strip())
    except ValueError as exc:
        raise ValidationError(f"Invalid keypair in {path}: {exc}") from exc
    raise ValidationError(f"Unsupported keypair format: {path}")


# ---------------- Signers ----------------
class KeypairSigner:
    """Signs with a local keypair. Never rejects."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_file(cls, path: Path) -> "KeypairSigner":
        return cls(load_keypair_any(Path(path).expanduser()))

    @property
    def pubkey(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign(self, message: Message) -> Transaction:
        tx = Transaction.new_unsigned(message)
        tx.sign([self._keypair], message.recent_blockhash)
        return tx


class PromptingSigner:
    """Asks the operator before each signature, like a wallet approval popup.

    ``approve`` receives the prompt text and returns True to sign. It is
    blocking (``input`` by default) and runs in a worker thread.
    """

    def __init__(self, inner: Signer, approve: Optional[Callable[[str], bool]] = None) -> None:
        self._inner = inner
        self._approve = approve or _ask_yes_no
        self.prompt = "Sign transaction?"

    @property
    def pubkey(self) -> Pubkey:
        return self._inner.pubkey

    async def sign(self, message: Message) -> Transaction:
        approved = await asyncio.to_thread(self._approve, self.prompt)
        if not approved:
            logger.info("signature declined by operator")
            raise SigningRejected("Signature request declined")
        return await self._inner.sign(message)


def _ask_yes_no(prompt: str) -> bool:
    try:
        answer = input(f"{prompt} [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")
