from __future__ import annotations

import math
from datetime import datetime
from typing import Callable, Sequence

from pydantic import BaseModel

from tip_reputation.models import CompletedTip
from tip_reputation.utils.time import whole_days_between


class AccuracyResult(BaseModel):
    accuracy_rate: float
    weighted_accuracy_rate: float
    accuracy_score: float
    total_completed: int
    total_hit: int


def recency_weight(closed_at: datetime, now: datetime, half_life_days: float) -> float:
    """exp(-lambda * days) with lambda = ln 2 / half_life; a tip one half-life old weighs 0.5."""
    decay = math.log(2) / half_life_days
    days_ago = max(whole_days_between(closed_at, now), 0)
    return math.exp(-decay * days_ago)


def calculate_accuracy(
    tips: Sequence[CompletedTip],
    half_life_days: float,
    now: datetime,
) -> AccuracyResult:
    if not tips:
        return AccuracyResult(
            accuracy_rate=0.0,
            weighted_accuracy_rate=0.0,
            accuracy_score=0.0,
            total_completed=0,
            total_hit=0,
        )

    weighted_hits = 0.0
    weighted_total = 0.0
    total_hit = 0
    for tip in tips:
        weight = recency_weight(tip.closed_at, now, half_life_days)
        weighted_total += weight
        if tip.status.is_hit:
            weighted_hits += weight
            total_hit += 1

    weighted_rate = weighted_hits / weighted_total if weighted_total > 0 else 0.0
    return AccuracyResult(
        accuracy_rate=total_hit / len(tips),
        weighted_accuracy_rate=weighted_rate,
        accuracy_score=weighted_rate * 100,
        total_completed=len(tips),
        total_hit=total_hit,
    )


def filtered_accuracy(
    tips: Sequence[CompletedTip],
    predicate: Callable[[CompletedTip], bool],
) -> float | None:
    selected = [tip for tip in tips if predicate(tip)]
    if not selected:
        return None
    hits = sum(1 for tip in selected if tip.status.is_hit)
    return hits / len(selected)
