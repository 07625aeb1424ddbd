from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from escortcore.services.scoring import (
    CandidateScore,
    DispatchConfig,
    DispatchWeights,
    ScoreFactors,
    customer_priority_bonus,
    rank_candidates,
    score_candidate,
    weighted_sum,
)


def _provider(pid, *, rating="5.00", tier_code=None, venue_ids=(), quota=5, claimed=0, name=None):
    return SimpleNamespace(
        id=pid,
        name=name or f"p{pid}",
        rating=Decimal(rating),
        tier_code=tier_code,
        venues=[SimpleNamespace(id=v) for v in venue_ids],
        daily_quota=quota,
        daily_claimed=claimed,
    )


def _job(venue_id=None):
    return SimpleNamespace(id=1, venue_id=venue_id, scheduled_date=date(2026, 1, 1), scheduled_time="20:00", duration_minutes=120)


def test_perfect_candidate_score():
    config = DispatchConfig()
    score = score_candidate(_provider(1, rating="5.00", tier_code="senior", venue_ids=[7]), _job(venue_id=7), config)
    # 80*.30 + 100*.25 + 100*.20 + 100*.15 + 100*.10
    assert score.weighted_score == pytest.approx(94.0)
    assert score.score == pytest.approx(94.0)
    assert score.bonus == 0


def test_unfamiliar_mid_tier_half_loaded():
    config = DispatchConfig()
    score = score_candidate(
        _provider(2, rating="4.00", tier_code="intermediate", quota=4, claimed=2),
        _job(venue_id=7),
        config,
    )
    # 80*.30 + 50*.25 + 80*.20 + 75*.15 + 50*.10
    assert score.weighted_score == pytest.approx(24 + 12.5 + 16 + 11.25 + 5)
    assert score.factors.load == pytest.approx(50.0)


def test_unknown_tier_uses_default_score():
    config = DispatchConfig()
    score = score_candidate(_provider(3, tier_code=None), _job(), config)
    assert score.factors.tier == config.default_tier_score


def test_bonus_is_added_after_weighting():
    config = DispatchConfig()
    plain = score_candidate(_provider(1), _job(), config)
    boosted = score_candidate(_provider(1), _job(), config, bonus=10.0)
    assert boosted.score == pytest.approx(plain.score + 10.0)
    assert boosted.weighted_score == pytest.approx(plain.weighted_score)


def test_weighted_sum_with_custom_weights():
    factors = ScoreFactors(proximity=100, familiarity=0, rating=0, tier=0, load=0)
    assert weighted_sum(factors, DispatchWeights(proximity=1.0, familiarity=0, rating=0, tier=0, load=0)) == 100


def test_rank_breaks_ties_by_provider_id():
    factors = ScoreFactors(proximity=0, familiarity=0, rating=0, tier=0, load=0)
    scores = [
        CandidateScore(provider_id=9, provider_name="a", score=50.0, weighted_score=50.0, bonus=0, factors=factors),
        CandidateScore(provider_id=3, provider_name="b", score=50.0, weighted_score=50.0, bonus=0, factors=factors),
        CandidateScore(provider_id=5, provider_name="c", score=70.0, weighted_score=70.0, bonus=0, factors=factors),
    ]
    assert [s.provider_id for s in rank_candidates(scores)] == [5, 3, 9]


def test_config_from_settings_with_overrides():
    config = DispatchConfig.from_settings(min_rating=3.5)
    assert config.min_rating == 3.5
    assert config.weights.proximity == pytest.approx(0.30)
    assert config.tier_scores["senior"] == 100.0


def test_priority_bonus_requires_active_unexpired_flag(db_session, membership_factory, dispatch_config):
    membership_factory(101, priority_booking=True)
    membership_factory(102, priority_booking=False)
    membership_factory(103, priority_booking=True, expires_in_days=-1)

    assert customer_priority_bonus(db_session, 101, dispatch_config) == dispatch_config.priority_booking_bonus
    assert customer_priority_bonus(db_session, 102, dispatch_config) == 0.0
    assert customer_priority_bonus(db_session, 103, dispatch_config) == 0.0
    assert customer_priority_bonus(db_session, 104, dispatch_config) == 0.0
