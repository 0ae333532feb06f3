from __future__ import annotations

import statistics
from collections import defaultdict
from typing import Sequence

from pydantic import BaseModel

from tip_reputation.models import CompletedTip
from tip_reputation.scoring.features import clamp, month_key

MIN_MONTHS_FOR_CONSISTENCY = 3
NEUTRAL_CONSISTENCY_SCORE = 50.0


class MonthlyAccuracy(BaseModel):
    month: str
    accuracy_rate: float
    tip_count: int


class ConsistencyResult(BaseModel):
    coefficient_of_variation: float
    consistency_score: float
    months_with_data: int
    monthly_breakdown: list[MonthlyAccuracy] = []


def group_by_month(tips: Sequence[CompletedTip]) -> list[MonthlyAccuracy]:
    # Bucketed by close month: that is when the outcome was decided.
    counts: dict[str, list[int]] = defaultdict(lambda: [0, 0])
    for tip in tips:
        bucket = counts[month_key(tip.closed_at)]
        bucket[1] += 1
        if tip.status.is_hit:
            bucket[0] += 1
    return [
        MonthlyAccuracy(month=month, accuracy_rate=hits / total, tip_count=total)
        for month, (hits, total) in sorted(counts.items())
    ]


def calculate_consistency(
    tips: Sequence[CompletedTip],
    min_months: int = MIN_MONTHS_FOR_CONSISTENCY,
    neutral_score: float = NEUTRAL_CONSISTENCY_SCORE,
) -> ConsistencyResult:
    if not tips:
        return ConsistencyResult(coefficient_of_variation=0.0, consistency_score=0.0, months_with_data=0)

    monthly = group_by_month(tips)
    if len(monthly) < min_months:
        return ConsistencyResult(
            coefficient_of_variation=0.0,
            consistency_score=neutral_score,
            months_with_data=len(monthly),
            monthly_breakdown=monthly,
        )

    rates = [month.accuracy_rate for month in monthly]
    mean_rate = statistics.fmean(rates)
    if mean_rate == 0:
        # Never hitting a target is not consistency worth rewarding.
        return ConsistencyResult(
            coefficient_of_variation=0.0,
            consistency_score=0.0,
            months_with_data=len(monthly),
            monthly_breakdown=monthly,
        )

    cv = statistics.pstdev(rates) / mean_rate
    return ConsistencyResult(
        coefficient_of_variation=cv,
        consistency_score=clamp((1 - cv) * 100, 0.0, 100.0),
        months_with_data=len(monthly),
        monthly_breakdown=monthly,
    )
