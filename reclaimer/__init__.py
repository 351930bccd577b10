"""Reclaim SOL rent from empty SPL and Token-2022 token accounts."""

from .config import ReclaimConfig
from .errors import (
    ConfirmationExpired,
    DiscoveryError,
    ExecutionError,
    NotReady,
    ReclaimError,
    RpcError,
    SigningRejected,
    SimulationError,
    TransactionTooLarge,
    ValidationError,
)
from .fees import compute_fee, preview_fees
from .models import (
    Batch,
    BatchProgress,
    BatchStatus,
    CandidateAccount,
    ClaimSession,
    FeePreview,
    Selection,
    SessionState,
    TokenProgram,
)
from .orchestrator import ClaimOrchestrator
from .partition import partition

__version__ = "0.1.0"

__all__ = [
    "Batch",
    "BatchProgress",
    "BatchStatus",
    "CandidateAccount",
    "ClaimOrchestrator",
    "ClaimSession",
    "ConfirmationExpired",
    "DiscoveryError",
    "ExecutionError",
    "FeePreview",
    "NotReady",
    "ReclaimConfig",
    "ReclaimError",
    "RpcError",
    "Selection",
    "SessionState",
    "SigningRejected",
    "SimulationError",
    "TokenProgram",
    "TransactionTooLarge",
    "ValidationError",
    "compute_fee",
    "partition",
    "preview_fees",
]
