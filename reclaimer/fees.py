"""Service fee arithmetic.

Fees are charged per batch, never once over a whole selection, so a claim
that aborts halfway only pays for the batches that confirmed.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple

from .constants import BPS_DENOMINATOR
from .errors import ValidationError
from .models import CandidateAccount, FeePreview


def compute_fee(gross_lamports: int, fee_bps: int, fee_recipient_configured: bool) -> Tuple[int, int]:
    """Return ``(fee_lamports, net_lamports)`` for a gross reclaim amount."""
    gross = int(gross_lamports)
    if not fee_recipient_configured or fee_bps <= 0:
        fee = 0
    else:
        fee = max(0, gross * int(fee_bps) // BPS_DENOMINATOR)
    return fee, max(0, gross - fee)


def preview_fees(
    accounts: Sequence[CandidateAccount],
    fee_bps: int,
    fee_recipient_configured: bool,
    max_per_tx: Optional[int] = None,
) -> FeePreview:
    """Gross / fee / net for a selection.

    With ``max_per_tx`` the fee is summed batch by batch, which is what a
    fully successful claim actually charges (floor rounding per batch).
    """
    if max_per_tx is None:
        gross = sum(a.lamports for a in accounts)
        fee, net = compute_fee(gross, fee_bps, fee_recipient_configured)
        return FeePreview(gross=gross, fee=fee, net=net)

    if max_per_tx < 1:
        raise ValidationError(f"max_per_tx must be positive (got {max_per_tx})")
    gross = fee = net = 0
    for i in range(0, len(accounts), max_per_tx):
        chunk_gross = sum(a.lamports for a in accounts[i : i + max_per_tx])
        chunk_fee, chunk_net = compute_fee(chunk_gross, fee_bps, fee_recipient_configured)
        gross += chunk_gross
        fee += chunk_fee
        net += chunk_net
    return FeePreview(gross=gross, fee=fee, net=net)
