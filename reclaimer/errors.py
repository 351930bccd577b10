"""Exception hierarchy for scan and claim runs.

Every error is terminal to the current run. Nothing here is retried by the
engine; a fresh ``scan`` + ``run_claim`` is the recovery path.
"""

from __future__ import annotations


class ReclaimError(Exception):
    """Base class for all engine errors."""


class RpcError(ReclaimError):
    """Transport failure or JSON-RPC error object returned by the node."""

    def __init__(self, message: str, *, method: str = "", payload: object = None) -> None:
        super().__init__(message)
        self.method = method
        self.payload = payload


class DiscoveryError(ReclaimError):
    """Ledger read failed during a scan. No partial candidate list is kept."""


class ValidationError(ReclaimError):
    """Bad configuration or input, raised before any ledger interaction."""


class NotReady(ValidationError):
    """Claim requested with an empty selection, no signer, or a run in flight."""


class TransactionTooLarge(ValidationError):
    """Compiled batch does not fit in a single transaction packet."""


class SimulationError(ReclaimError):
    """Pre-flight failure for a batch."""

    def __init__(self, message: str, *, detail: object = None, logs: list | None = None) -> None:
        super().__init__(message)
        self.detail = detail
        self.logs = logs or []


class SigningRejected(SimulationError):
    """The external signer declined or failed to sign."""


class ExecutionError(ReclaimError):
    """Ledger rejected the transaction or it never confirmed."""

    def __init__(self, message: str, *, signature: str | None = None, detail: object = None) -> None:
        super().__init__(message)
        self.signature = signature
        self.detail = detail


class ConfirmationExpired(ExecutionError):
    """Blockhash validity window passed without confirmation."""


class MalformedRecord(ValueError):
    """A raw token-account entry could not be parsed."""
