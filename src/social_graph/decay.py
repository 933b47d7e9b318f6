from __future__ import annotations

import math
from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def elapsed_seconds(since: datetime, at: datetime) -> float:
    return max(0.0, (at - since).total_seconds())


def decay_factor(elapsed: float, half_life: float) -> float:
    # exp(-dt / tau); time running backwards never increases a weight.
    if elapsed <= 0.0:
        return 1.0
    return math.exp(-elapsed / max(1e-9, half_life))


def decayed_weight(weight: float, since: datetime, at: datetime, half_life: float) -> float:
    return weight * decay_factor(elapsed_seconds(since, at), half_life)
