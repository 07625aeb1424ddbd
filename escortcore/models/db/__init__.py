from .catalog import ServiceItem, Venue, ProviderTier, CommissionConfig
from .providers import Provider, provider_venues
from .memberships import CustomerMembership
from .jobs import Job
from .job_logs import JobLog
from .wallets import Wallet, WalletTransaction, WalletDebt
from .enums import (
    JobStatus,
    AssignMethod,
    ProviderStatus,
    WorkStatus,
    CommissionSource,
    TransactionType,
    DebtStatus,
    OperatorType,
    MembershipStatus,
)

__all__ = [
    "ServiceItem",
    "Venue",
    "ProviderTier",
    "CommissionConfig",
    "Provider",
    "provider_venues",
    "CustomerMembership",
    "Job",
    "JobLog",
    "Wallet",
    "WalletTransaction",
    "WalletDebt",
    "JobStatus",
    "AssignMethod",
    "ProviderStatus",
    "WorkStatus",
    "CommissionSource",
    "TransactionType",
    "DebtStatus",
    "OperatorType",
    "MembershipStatus",
]
