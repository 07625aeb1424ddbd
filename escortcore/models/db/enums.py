"""Central Enum definitions for dispatch & settlement states.

These replace scattered string literals to ensure consistency across
DB models, schemas, and business logic.
"""
from __future__ import annotations
import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"          # created, not yet paid
    PAID = "paid"                # claimable
    ASSIGNED = "assigned"
    ARRIVED = "arrived"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDING = "refunding"
    REFUNDED = "refunded"


# Statuses in which a provider is holding the job (time-slot occupied)
ACTIVE_JOB_STATUSES = frozenset({JobStatus.ASSIGNED, JobStatus.ARRIVED, JobStatus.IN_PROGRESS})

# Statuses from which cancellation / refund side-exits are allowed
PRE_COMPLETION_STATUSES = frozenset({
    JobStatus.PENDING,
    JobStatus.PAID,
    JobStatus.ASSIGNED,
    JobStatus.ARRIVED,
    JobStatus.IN_PROGRESS,
})


class AssignMethod(str, enum.Enum):
    MANUAL = "manual"
    AUTO = "auto"
    RACE = "race"
    PRESELECTED = "preselected"


class ProviderStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class WorkStatus(str, enum.Enum):
    RESTING = "resting"
    WORKING = "working"  # accepting work
    BUSY = "busy"        # currently serving a job


class CommissionSource(str, enum.Enum):
    SERVICE = "service"
    TIER = "tier"
    GLOBAL = "global"


class TransactionType(str, enum.Enum):
    INCOME = "income"
    REFUND = "refund"
    FROZEN = "frozen"
    UNFROZEN = "unfrozen"
    WITHDRAW = "withdraw"


class DebtStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class OperatorType(str, enum.Enum):
    SYSTEM = "system"
    PROVIDER = "provider"
    OPERATOR = "operator"
    CUSTOMER = "customer"


class MembershipStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


__all__ = [
    "JobStatus",
    "ACTIVE_JOB_STATUSES",
    "PRE_COMPLETION_STATUSES",
    "AssignMethod",
    "ProviderStatus",
    "WorkStatus",
    "CommissionSource",
    "TransactionType",
    "DebtStatus",
    "OperatorType",
    "MembershipStatus",
]
