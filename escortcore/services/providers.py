"""Provider account housekeeping the core depends on.

Activation creates the wallet lazily so every active provider can be
settled against. Work status is the provider's own on/off switch; it cannot
be flipped while a job is in progress (the lifecycle owns ``busy``).
"""
from __future__ import annotations

from sqlalchemy.orm import Session

from escortcore.errors import ConflictError, NotFoundError
from escortcore.models.db.enums import ProviderStatus, WorkStatus
from escortcore.models.db.providers import Provider
from escortcore.services.ledger import ensure_wallet
from escortcore.utils import get_logger

logger = get_logger(__name__)


def _get_provider(session: Session, provider_id: int) -> Provider:
    provider = session.get(Provider, provider_id)
    if provider is None:
        raise NotFoundError(f"Provider {provider_id} not found", provider_id=provider_id)
    return provider


def activate_provider(session: Session, provider_id: int) -> Provider:
    provider = _get_provider(session, provider_id)
    provider.status = ProviderStatus.ACTIVE
    ensure_wallet(session, provider_id)
    session.commit()
    logger.info("Provider activated", provider_id=provider_id)
    return provider


def set_work_status(session: Session, provider_id: int, work_status: WorkStatus) -> Provider:
    """Switch between ``working`` and ``resting``."""
    if work_status == WorkStatus.BUSY:
        raise ConflictError("Busy is set by job start, not by the provider", provider_id=provider_id)
    provider = _get_provider(session, provider_id)
    if provider.work_status == WorkStatus.BUSY:
        raise ConflictError("Cannot change work status during a job", provider_id=provider_id)
    if provider.status != ProviderStatus.ACTIVE:
        raise ConflictError("Provider account is not active", provider_id=provider_id)
    provider.work_status = work_status
    session.commit()
    return provider


__all__ = ["activate_provider", "set_work_status"]
