from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from solders.pubkey import Pubkey

from .interfaces import LedgerReader

logger = logging.getLogger(__name__)


class BalanceWatcher:
    """Polls the wallet's native balance for display.

    Runs beside a claim without touching it: the only state it writes is
    ``lamports`` (``None`` when the last read failed).
    """

    def __init__(
        self,
        ledger: LedgerReader,
        owner: Pubkey,
        *,
        interval_s: float = 5.0,
        on_change: Optional[Callable[[Optional[int]], None]] = None,
    ) -> None:
        self.ledger = ledger
        self.owner = owner
        self.interval_s = interval_s
        self.on_change = on_change
        self.lamports: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def refresh(self) -> Optional[int]:
        try:
            lamports: Optional[int] = await self.ledger.get_balance(self.owner)
        except Exception as exc:
            logger.debug("balance refresh for %s failed: %s", self.owner, exc)
            lamports = None
        if lamports != self.lamports:
            self.lamports = lamports
            if self.on_change is not None:
                self.on_change(lamports)
        return lamports

    async def _run(self) -> None:
        while True:
            await self.refresh()
            await asyncio.sleep(self.interval_s)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
