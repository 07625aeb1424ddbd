"""Commission calculator.

Rate precedence: service override > provider tier > global default
(``commission_configs`` row, else ``COMMISSION_SETTINGS['default_rate']``).

``commission = round(paid * rate / 100)`` half-up to the cent and the
platform takes the remainder, so ``commission + platform == paid`` exactly.
The calculator only reads; persisting the split is the settlement engine's job.
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from escortcore.config import COMMISSION_SETTINGS
from escortcore.errors import InvariantViolationError, NotFoundError
from escortcore.models.db.catalog import CommissionConfig, ProviderTier, ServiceItem
from escortcore.models.db.enums import CommissionSource
from escortcore.models.db.jobs import Job
from escortcore.models.db.providers import Provider
from escortcore.utils import get_logger
from escortcore.utils.money import percent_of, to_money

logger = get_logger(__name__)

_HUNDRED = Decimal(100)


@dataclass(frozen=True)
class CommissionResult:
    rate: Decimal
    commission_amount: Decimal
    platform_amount: Decimal
    source: CommissionSource

    def as_dict(self) -> dict:
        return {
            "rate": str(self.rate),
            "commission_amount": str(self.commission_amount),
            "platform_amount": str(self.platform_amount),
            "source": self.source.value,
        }


def resolve_rate(
    service_rate: Decimal | float | None,
    tier_rate: Decimal | float | None,
    global_rate: Decimal | float,
) -> tuple[Decimal, CommissionSource]:
    """Pick the first configured rate in precedence order.

    Zero is a valid configured rate; only ``None`` falls through.
    """
    if service_rate is not None:
        return Decimal(str(service_rate)), CommissionSource.SERVICE
    if tier_rate is not None:
        return Decimal(str(tier_rate)), CommissionSource.TIER
    return Decimal(str(global_rate)), CommissionSource.GLOBAL


def split_amount(paid_amount: Decimal, rate: Decimal, source: CommissionSource) -> CommissionResult:
    if rate < 0 or rate > _HUNDRED:
        raise InvariantViolationError(f"Commission rate {rate} outside 0-100", rate=rate, source=source)
    paid = to_money(paid_amount)
    commission = percent_of(paid, rate)
    return CommissionResult(
        rate=rate,
        commission_amount=commission,
        platform_amount=paid - commission,
        source=source,
    )


def load_global_rate(session: Session) -> Decimal:
    row = session.execute(select(CommissionConfig).order_by(CommissionConfig.id).limit(1)).scalar_one_or_none()
    if row is not None and row.default_rate is not None:
        return Decimal(str(row.default_rate))
    return Decimal(str(COMMISSION_SETTINGS["default_rate"]))


class GlobalRateCache:
    """Caches the global default rate for ``ttl_seconds``.

    Settlement reads the rate on every completion; the row changes rarely.
    """

    def __init__(self, ttl_seconds: float | None = None) -> None:
        self.ttl_seconds = float(
            ttl_seconds if ttl_seconds is not None else COMMISSION_SETTINGS.get("global_rate_ttl_seconds", 60)  # type: ignore[arg-type]
        )
        self._lock = threading.Lock()
        self._value: Decimal | None = None
        self._loaded_at = 0.0

    def get(self, session: Session) -> Decimal:
        with self._lock:
            now = time.monotonic()
            if self._value is not None and now - self._loaded_at < self.ttl_seconds:
                return self._value
        value = load_global_rate(session)
        with self._lock:
            self._value = value
            self._loaded_at = time.monotonic()
        return value

    def invalidate(self) -> None:
        with self._lock:
            self._value = None


def calculate_commission(
    session: Session,
    job_id: int,
    provider_id: int,
    *,
    global_rate: Decimal | None = None,
    cache: GlobalRateCache | None = None,
) -> CommissionResult:
    """Compute the split for ``job_id`` as if settled to ``provider_id`` now."""
    job = session.get(Job, job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found", job_id=job_id)
    provider = session.get(Provider, provider_id)
    if provider is None:
        raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)

    service_rate = None
    if job.service_id is not None:
        service = session.get(ServiceItem, job.service_id)
        service_rate = service.commission_rate if service is not None else None
    tier_rate = None
    if provider.tier_id is not None:
        tier = session.get(ProviderTier, provider.tier_id)
        tier_rate = tier.commission_rate if tier is not None else None

    if global_rate is None:
        global_rate = cache.get(session) if cache is not None else load_global_rate(session)

    rate, source = resolve_rate(service_rate, tier_rate, global_rate)
    result = split_amount(job.paid_amount, rate, source)
    logger.debug(
        "Commission calculated",
        job_id=job_id,
        provider_id=provider_id,
        rate=rate,
        source=source.value,
        commission=result.commission_amount,
    )
    return result


__all__ = [
    "CommissionResult",
    "resolve_rate",
    "split_amount",
    "load_global_rate",
    "GlobalRateCache",
    "calculate_commission",
]
