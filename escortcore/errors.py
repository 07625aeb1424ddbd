"""Error taxonomy for the dispatch & settlement core.

Services raise these inside a unit of work; the public entry points
(``ClaimArbitrator.attempt_claim``, ``SettlementEngine.settle_on_completion``
...) roll the session back and convert the expected ones into typed results.
Only ``InvariantViolationError`` is allowed to escape: it means stored data
contradicts itself and a human has to look.
"""
from __future__ import annotations

from typing import Any


class EscortCoreError(Exception):
    """Base class for every error raised by the core."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context


class NotFoundError(EscortCoreError):
    """Job, provider or wallet does not exist."""


class ConflictError(EscortCoreError):
    """Lost a race or the record is not in the required state."""


class PolicyViolationError(EscortCoreError):
    """A provider is not allowed to take the job.

    ``reason_code`` names the limiting rule (``inactive``, ``not_accepting_work``,
    ``daily_quota_reached``, ``time_conflict``, ``below_rating_floor``,
    ``not_familiar_with_venue``).
    """

    def __init__(self, message: str, reason_code: str, **context: Any) -> None:
        super().__init__(message, **context)
        self.reason_code = reason_code


class InvariantViolationError(EscortCoreError):
    """Stored state breaks a rule that should never break."""


__all__ = [
    "EscortCoreError",
    "NotFoundError",
    "ConflictError",
    "PolicyViolationError",
    "InvariantViolationError",
]
