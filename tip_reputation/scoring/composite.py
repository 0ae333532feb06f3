from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Optional, Sequence

from pydantic import BaseModel

from tip_reputation.config import AppConfig
from tip_reputation.models import CompletedTip, CreatorScore, Tier, Timeframe, TimeframeAccuracy
from tip_reputation.scoring.accuracy import calculate_accuracy, filtered_accuracy
from tip_reputation.scoring.consistency import calculate_consistency
from tip_reputation.scoring.features import clamp
from tip_reputation.scoring.risk_adjusted import calculate_risk_adjusted
from tip_reputation.scoring.volume import calculate_volume_factor
from tip_reputation.scoring.weights import stable_sorted, weighted_sum

logger = logging.getLogger(__name__)

# Upper bounds (exclusive) on completed-tip count for each tier.
TIER_THRESHOLDS = (
    (20, Tier.UNRATED),
    (50, Tier.BRONZE),
    (200, Tier.SILVER),
    (500, Tier.GOLD),
    (1000, Tier.PLATINUM),
)


class CompositeResult(BaseModel):
    creator_id: str
    tier: Tier
    total_scored_tips: int
    score: Optional[CreatorScore] = None

    @property
    def published(self) -> bool:
        return self.score is not None


def determine_tier(total_scored_tips: int) -> Tier:
    for upper, tier in TIER_THRESHOLDS:
        if total_scored_tips < upper:
            return tier
    return Tier.DIAMOND


def confidence_interval(accuracy_rate: float, total: int, z: float = 1.96) -> float:
    if total <= 0:
        return 0.0
    p = clamp(accuracy_rate, 0.0, 1.0)
    return z * math.sqrt(p * (1 - p) / total) * 100


def calculate_streaks(tips: Sequence[CompletedTip]) -> tuple[int, int]:
    """(win_streak, loss_streak) counted back from the most recent close."""
    ordered = stable_sorted(tips, key=lambda tip: tip.closed_at, reverse=True)
    if not ordered:
        return 0, 0
    winning = ordered[0].status.is_hit
    run = 0
    for tip in ordered:
        if tip.status.is_hit != winning:
            break
        run += 1
    return (run, 0) if winning else (0, run)


def timeframe_accuracy(tips: Sequence[CompletedTip]) -> TimeframeAccuracy:
    def rate(timeframe: Timeframe) -> float | None:
        return filtered_accuracy(tips, lambda tip: tip.timeframe is timeframe)

    return TimeframeAccuracy(
        intraday=rate(Timeframe.INTRADAY),
        swing=rate(Timeframe.SWING),
        positional=rate(Timeframe.POSITIONAL),
        long_term=rate(Timeframe.LONG_TERM),
    )


def calculate_composite_score(
    creator_id: str,
    tips: Sequence[CompletedTip],
    config: AppConfig,
    now: datetime,
) -> CreatorScore:
    scoring = config.scoring
    accuracy = calculate_accuracy(tips, scoring.half_life_days, now)
    risk = calculate_risk_adjusted(
        tips,
        floor=scoring.risk_adjusted_floor,
        ceiling=scoring.risk_adjusted_ceiling,
        min_risk_pct=config.lifecycle.min_risk_pct,
    )
    consistency = calculate_consistency(
        tips,
        min_months=scoring.min_months_for_consistency,
        neutral_score=scoring.neutral_consistency,
    )
    volume = calculate_volume_factor(len(tips), scoring.max_expected_tips)

    components = {
        "accuracy": accuracy.accuracy_score,
        "risk_adjusted": risk.risk_adjusted_score,
        "consistency": consistency.consistency_score,
        "volume": volume.volume_factor_score,
    }
    rmt_score = clamp(weighted_sum(components, scoring.weights.as_dict()), 0.0, 100.0)
    win_streak, loss_streak = calculate_streaks(tips)

    issued = [tip.tip_timestamp for tip in tips]
    closes = [tip.closed_at for tip in tips]
    return CreatorScore(
        creator_id=creator_id,
        accuracy_score=accuracy.accuracy_score,
        risk_adjusted_score=risk.risk_adjusted_score,
        consistency_score=consistency.consistency_score,
        volume_factor_score=volume.volume_factor_score,
        rmt_score=rmt_score,
        confidence_interval=confidence_interval(accuracy.accuracy_rate, len(tips), scoring.confidence_z),
        accuracy_rate=accuracy.accuracy_rate,
        avg_return_pct=risk.avg_return_pct,
        avg_risk_reward_ratio=risk.avg_risk_reward_ratio,
        win_streak=win_streak,
        loss_streak=loss_streak,
        best_tip_return_pct=risk.best_tip_return_pct,
        worst_tip_return_pct=risk.worst_tip_return_pct,
        timeframe_accuracy=timeframe_accuracy(tips),
        total_scored_tips=len(tips),
        score_period_start=min(issued) if issued else now,
        score_period_end=max(closes) if closes else now,
        calculated_at=now,
        tier=determine_tier(len(tips)),
    )


def score_creator(
    creator_id: str,
    tips: Sequence[CompletedTip],
    config: AppConfig,
    now: datetime,
) -> CompositeResult:
    total = len(tips)
    tier = determine_tier(total)
    if total < config.scoring.min_tips_for_rating:
        logger.debug("creator %s has %d completed tips; score withheld", creator_id, total)
        return CompositeResult(creator_id=creator_id, tier=tier, total_scored_tips=total)
    score = calculate_composite_score(creator_id, tips, config, now)
    return CompositeResult(creator_id=creator_id, tier=tier, total_scored_tips=total, score=score)
