"""Dispatch scoring (0-100 factor scale, weighted sum).

Each candidate gets five normalised factors; the weighted sum plus an
optional flat customer priority bonus is the candidate score. Ranking is
score descending, ties broken by ascending provider id so results are
deterministic.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy import select
from sqlalchemy.orm import Session

from escortcore.config import DISPATCH_SETTINGS
from escortcore.models.db.enums import MembershipStatus
from escortcore.models.db.jobs import Job
from escortcore.models.db.memberships import CustomerMembership
from escortcore.models.db.providers import Provider
from escortcore.utils import get_logger
from escortcore.utils.time import ensure_aware, utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchWeights:
    proximity: float = 0.30
    familiarity: float = 0.25
    rating: float = 0.20
    tier: float = 0.15
    load: float = 0.10


@dataclass(frozen=True)
class DispatchConfig:
    """Immutable snapshot of the dispatch rules used for one operation."""
    weights: DispatchWeights = field(default_factory=DispatchWeights)
    proximity_score: float = 80.0
    familiar_score: float = 100.0
    unfamiliar_score: float = 50.0
    rating_scale: float = 5.0
    min_rating: float = 4.0
    priority_booking_bonus: float = 10.0
    tier_scores: Mapping[str, float] = field(
        default_factory=lambda: {"senior": 100.0, "intermediate": 75.0, "junior": 50.0, "trainee": 25.0}
    )
    default_tier_score: float = 50.0
    default_daily_quota: int = 5
    enforce_venue_familiarity_on_claim: bool = False
    recommend_limit: int = 5
    pool_limit: int = 50

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any] | None = None, **overrides: Any) -> "DispatchConfig":
        cfg = dict(settings if settings is not None else DISPATCH_SETTINGS)
        weights_cfg = cfg.get("weights", {})
        weights = DispatchWeights(**{k: float(v) for k, v in weights_cfg.items()}) if isinstance(weights_cfg, dict) else DispatchWeights()
        base = cls(
            weights=weights,
            proximity_score=float(cfg.get("proximity_score", 80.0)),
            familiar_score=float(cfg.get("familiar_score", 100.0)),
            unfamiliar_score=float(cfg.get("unfamiliar_score", 50.0)),
            rating_scale=float(cfg.get("rating_scale", 5.0)),
            min_rating=float(cfg.get("min_rating", 4.0)),
            priority_booking_bonus=float(cfg.get("priority_booking_bonus", 10.0)),
            tier_scores=dict(cfg.get("tier_scores", {})) or cls().tier_scores,
            default_tier_score=float(cfg.get("default_tier_score", 50.0)),
            default_daily_quota=int(cfg.get("default_daily_quota", 5)),
            enforce_venue_familiarity_on_claim=bool(cfg.get("enforce_venue_familiarity_on_claim", False)),
            recommend_limit=int(cfg.get("recommend_limit", 5)),
            pool_limit=int(cfg.get("pool_limit", 50)),
        )
        return replace(base, **overrides) if overrides else base


@dataclass(frozen=True)
class ScoreFactors:
    proximity: float
    familiarity: float
    rating: float
    tier: float
    load: float

    def as_dict(self) -> dict[str, float]:
        return {
            "proximity": round(self.proximity, 2),
            "familiarity": round(self.familiarity, 2),
            "rating": round(self.rating, 2),
            "tier": round(self.tier, 2),
            "load": round(self.load, 2),
        }


@dataclass(frozen=True)
class CandidateScore:
    provider_id: int
    provider_name: str
    score: float
    weighted_score: float
    bonus: float
    factors: ScoreFactors

    def as_dict(self) -> dict[str, Any]:
        return {
            "provider_id": self.provider_id,
            "provider_name": self.provider_name,
            "score": round(self.score, 2),
            "weighted_score": round(self.weighted_score, 2),
            "bonus": self.bonus,
            "factors": self.factors.as_dict(),
        }


def score_factors(provider: Provider, job: Job, config: DispatchConfig, familiar_venue_ids: set[int] | None = None) -> ScoreFactors:
    if familiar_venue_ids is None:
        familiar_venue_ids = {v.id for v in provider.venues}
    familiar = job.venue_id is not None and job.venue_id in familiar_venue_ids
    rating = float(provider.rating if provider.rating is not None else Decimal("0"))
    quota = provider.daily_quota or config.default_daily_quota
    used = provider.daily_claimed or 0
    load = max(0.0, (quota - used) / quota * 100.0) if quota > 0 else 0.0
    return ScoreFactors(
        proximity=config.proximity_score,
        familiarity=config.familiar_score if familiar else config.unfamiliar_score,
        rating=rating / config.rating_scale * 100.0,
        tier=float(config.tier_scores.get(provider.tier_code or "", config.default_tier_score)),
        load=load,
    )


def weighted_sum(factors: ScoreFactors, weights: DispatchWeights) -> float:
    return (
        factors.proximity * weights.proximity
        + factors.familiarity * weights.familiarity
        + factors.rating * weights.rating
        + factors.tier * weights.tier
        + factors.load * weights.load
    )


def score_candidate(provider: Provider, job: Job, config: DispatchConfig, *, bonus: float = 0.0) -> CandidateScore:
    factors = score_factors(provider, job, config)
    base = weighted_sum(factors, config.weights)
    return CandidateScore(
        provider_id=provider.id,
        provider_name=provider.name,
        score=base + bonus,
        weighted_score=base,
        bonus=bonus,
        factors=factors,
    )


def rank_candidates(scores: Iterable[CandidateScore]) -> list[CandidateScore]:
    return sorted(scores, key=lambda s: (-s.score, s.provider_id))


def customer_priority_bonus(session: Session, customer_id: int, config: DispatchConfig, now: datetime | None = None) -> float:
    """Flat bonus when the customer holds an active membership with ``priority_booking``."""
    now = now or utc_now()
    memberships = session.execute(
        select(CustomerMembership).where(
            CustomerMembership.customer_id == customer_id,
            CustomerMembership.status == MembershipStatus.ACTIVE,
        )
    ).scalars().all()
    for membership in memberships:
        if ensure_aware(membership.expires_at) <= now:
            continue
        benefits = membership.benefits or {}
        if benefits.get("priority_booking") is True:
            logger.debug("Priority booking bonus applies", customer_id=customer_id, bonus=config.priority_booking_bonus)
            return config.priority_booking_bonus
    return 0.0


__all__ = [
    "DispatchWeights",
    "DispatchConfig",
    "ScoreFactors",
    "CandidateScore",
    "score_factors",
    "weighted_sum",
    "score_candidate",
    "rank_candidates",
    "customer_priority_bonus",
]
