"""Core configuration & tunable business rules.

All rules that may evolve (dispatch weights, rating floor, commission
defaults, sweep cadence, outbox priorities) are centralized here so they can
be adjusted without diving into service logic. Values are module constants
seeded from environment variables; services never read them ad hoc but take
typed snapshots (see ``DispatchConfig.from_settings``) so tests can pass
explicit configs or monkeypatch these dicts.
"""
from __future__ import annotations

import os


def _env_float(name: str, default: float) -> float:
	raw = os.getenv(name)
	return float(raw) if raw and raw.strip() else default


def _env_int(name: str, default: int) -> int:
	raw = os.getenv(name)
	return int(raw) if raw and raw.strip() else default


# ------------------------------- Dispatch --------------------------------- #
DISPATCH_SETTINGS: dict[str, float | int | bool | dict[str, float]] = {
	# Weighted factors, each factor is normalised to 0-100 before weighting.
	"weights": {
		"proximity": _env_float("DISPATCH_WEIGHT_PROXIMITY", 0.30),
		"familiarity": _env_float("DISPATCH_WEIGHT_FAMILIARITY", 0.25),
		"rating": _env_float("DISPATCH_WEIGHT_RATING", 0.20),
		"tier": _env_float("DISPATCH_WEIGHT_TIER", 0.15),
		"load": _env_float("DISPATCH_WEIGHT_LOAD", 0.10),
	},
	# No real geolocation: every candidate gets the same proximity score.
	"proximity_score": 80.0,
	"familiar_score": 100.0,
	"unfamiliar_score": 50.0,
	"rating_scale": 5.0,
	"min_rating": _env_float("DISPATCH_MIN_RATING", 4.0),
	# Flat bonus added after the weighted sum (not weighted itself).
	"priority_booking_bonus": _env_float("DISPATCH_PRIORITY_BONUS", 10.0),
	"tier_scores": {
		"senior": 100.0,
		"intermediate": 75.0,
		"junior": 50.0,
		"trainee": 25.0,
	},
	"default_tier_score": 50.0,
	# Used when a provider row carries no quota (should not happen after activation)
	"default_daily_quota": _env_int("DISPATCH_DEFAULT_DAILY_QUOTA", 5),
	# Manual / race claims ignore venue familiarity unless this is switched on.
	"enforce_venue_familiarity_on_claim": os.getenv("DISPATCH_ENFORCE_VENUE_ON_CLAIM", "false").lower() == "true",
	"recommend_limit": 5,
	"pool_limit": 50,
}

# ------------------------------ Commission -------------------------------- #
COMMISSION_SETTINGS: dict[str, float | int | str] = {
	# Provider share in percent when neither the service nor the tier sets one
	# and no global config row exists.
	"default_rate": _env_float("COMMISSION_DEFAULT_RATE", 70.0),
	"currency_quantum": "0.01",
	# How long the global default row is cached before being re-read.
	"global_rate_ttl_seconds": _env_int("COMMISSION_GLOBAL_RATE_TTL", 60),
}

# --------------------------------- Sweep ---------------------------------- #
SWEEP_SETTINGS: dict[str, int | float] = {
	"interval_seconds": _env_int("SWEEP_INTERVAL_SECONDS", 300),  # 5 minutes
	"grace_minutes": _env_int("SWEEP_GRACE_MINUTES", 30),
	"batch_size": _env_int("SWEEP_BATCH_SIZE", 50),
	# Local hour at which daily claim counters reset.
	"daily_reset_hour": _env_int("SWEEP_DAILY_RESET_HOUR", 0),
}

# -------------------------------- Outbox ---------------------------------- #
# Best-effort side effects (notifications, distribution payouts) run on an
# in-process queue drained by a daemon worker.
OUTBOX_SETTINGS: dict[str, dict[str, int] | int | float | bool | str] = {
	"priorities": {  # Lower number = higher priority
		"high": 0,
		"normal": 5,
		"low": 10,
	},
	"warn_depth": 1000,
	"max_in_memory": 5000,
	"poll_timeout_seconds": 5.0,
	# Redelivery of failed side effects (exponential backoff with jitter)
	"max_attempts": _env_int("OUTBOX_MAX_ATTEMPTS", 3),
	"retry_base_seconds": 2,
	"retry_factor": 2,
	"retry_max_seconds": 60,
	"retry_jitter_pct": 0.10,
	"enabled": os.getenv("OUTBOX_ENABLED", "true").lower() != "false",
	# Durable backend; falls back to the in-memory queue when Redis is unreachable.
	"use_redis": os.getenv("OUTBOX_USE_REDIS", "false").lower() == "true",
	"redis_url": os.getenv("REDIS_URL", "redis://localhost:6379/0"),
	"redis_ready_key": "escortcore:outbox:ready",
	"redis_scheduled_key": "escortcore:outbox:scheduled",
}

# Notification kind -> outbox priority label
NOTIFICATION_PRIORITIES: dict[str, str] = {
	"job_assigned": "high",
	"provider_assigned": "high",
	"commission_credited": "normal",
	"commission_clawed_back": "normal",
}

ENABLE_SWEEP_SCHEDULER: bool = os.getenv("ENABLE_SWEEP_SCHEDULER", "true").lower() != "false"

__all__ = [
	"DISPATCH_SETTINGS",
	"COMMISSION_SETTINGS",
	"SWEEP_SETTINGS",
	"OUTBOX_SETTINGS",
	"NOTIFICATION_PRIORITIES",
	"ENABLE_SWEEP_SCHEDULER",
]
