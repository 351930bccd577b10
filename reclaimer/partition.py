from __future__ import annotations

from typing import List, Sequence

from .errors import ValidationError
from .fees import compute_fee
from .models import Batch, CandidateAccount


def make_batch(
    index: int,
    accounts: Sequence[CandidateAccount],
    fee_bps: int = 0,
    fee_recipient_configured: bool = False,
) -> Batch:
    gross = sum(a.lamports for a in accounts)
    fee, net = compute_fee(gross, fee_bps, fee_recipient_configured)
    return Batch(
        index=index,
        accounts=tuple(accounts),
        gross_lamports=gross,
        fee_lamports=fee,
        net_lamports=net,
    )


def partition(
    selection: Sequence[CandidateAccount],
    max_per_tx: int,
    fee_bps: int = 0,
    fee_recipient_configured: bool = False,
) -> List[Batch]:
    """Split ``selection`` into contiguous batches of at most ``max_per_tx``.

    Amounts on the returned batches are estimates from scan-time balances;
    the builder recomputes them right before sending.
    """
    if int(max_per_tx) < 1:
        raise ValidationError(f"max_per_tx must be positive (got {max_per_tx})")

    n = int(max_per_tx)
    return [
        make_batch(i // n + 1, selection[i : i + n], fee_bps, fee_recipient_configured)
        for i in range(0, len(selection), n)
    ]
