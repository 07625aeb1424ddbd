"""Exponential backoff with jitter for outbox redelivery."""
from __future__ import annotations

import random
from typing import Optional

from escortcore.config import OUTBOX_SETTINGS


def redelivery_delay(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None, jitter_pct: Optional[float] = None) -> float:
    """Delay before redelivering an outbox item that failed ``attempt`` times."""
    if attempt < 1:
        attempt = 1
    base = float(base if base is not None else OUTBOX_SETTINGS["retry_base_seconds"])  # type: ignore[arg-type]
    factor = float(factor if factor is not None else OUTBOX_SETTINGS["retry_factor"])  # type: ignore[arg-type]
    max_seconds = float(max_seconds if max_seconds is not None else OUTBOX_SETTINGS["retry_max_seconds"])  # type: ignore[arg-type]
    jitter_pct = float(jitter_pct if jitter_pct is not None else OUTBOX_SETTINGS["retry_jitter_pct"])  # type: ignore[arg-type]

    delay = min(base * (factor ** (attempt - 1)), max_seconds)
    if jitter_pct > 0:
        spread = delay * jitter_pct
        delay = random.uniform(delay - spread, delay + spread)
    return max(delay, 0.0)


__all__ = ["redelivery_delay"]
