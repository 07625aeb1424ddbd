from .base import ResponseBase
from .dispatch import ClaimRequest, ClaimOutcome, CandidateScoreRead, PoolJobRead
from .jobs import TransitionRequest, JobAction
from .settlement import (
    ClawbackRequest,
    WalletTransactionRead,
    WalletDebtRead,
    WalletSummary,
    LedgerCheckRead,
)

__all__ = [
    # Base
    "ResponseBase",

    # Dispatch
    "ClaimRequest",
    "ClaimOutcome",
    "CandidateScoreRead",
    "PoolJobRead",

    # Jobs
    "TransitionRequest",
    "JobAction",

    # Settlement
    "ClawbackRequest",
    "WalletTransactionRead",
    "WalletDebtRead",
    "WalletSummary",
    "LedgerCheckRead",
]
