"""Risk-adjusted return component.

Each completed tip is reduced to a return and a risk-reward ratio (return over
planned risk). The average ratio maps linearly onto 0-100 between a floor and a
ceiling.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel

from tip_reputation.models import CompletedTip, TipStatus
from tip_reputation.scoring.features import blended_target_return, clamp, pct_move, risk_pct

DEFAULT_FLOOR = -2.0
DEFAULT_CEILING = 5.0
DEFAULT_MIN_RISK_PCT = 0.01

_HIT_AT_FIELDS = ("target1_hit_at", "target2_hit_at", "target3_hit_at")


class TipReturnDetail(BaseModel):
    tip_id: str
    return_pct: float
    risk_pct: float
    risk_reward_ratio: float


class RiskAdjustedResult(BaseModel):
    avg_return_pct: float
    avg_risk_reward_ratio: float
    risk_adjusted_score: float
    best_tip_return_pct: Optional[float] = None
    worst_tip_return_pct: Optional[float] = None
    tip_details: list[TipReturnDetail] = []


def targets_reached(tip: CompletedTip) -> int:
    """Targets with a recorded hit time; every target when none were recorded."""
    stamped = sum(
        1 for field in _HIT_AT_FIELDS[: len(tip.targets)] if getattr(tip, field) is not None
    )
    return stamped or len(tip.targets)


def tip_return(tip: CompletedTip, min_risk_pct: float = DEFAULT_MIN_RISK_PCT) -> TipReturnDetail:
    risk = risk_pct(tip.entry_price, tip.stop_loss, min_risk_pct)

    if tip.status is TipStatus.STOPLOSS_HIT:
        # The full planned loss is booked, whatever the fill.
        return TipReturnDetail(tip_id=tip.id, return_pct=-risk, risk_pct=risk, risk_reward_ratio=-1.0)

    if tip.status is TipStatus.EXPIRED:
        price = tip.closed_price if tip.closed_price is not None else tip.entry_price
        return_pct = pct_move(tip.entry_price, price, tip.direction)
    elif tip.status is TipStatus.ALL_TARGETS_HIT:
        return_pct = blended_target_return(
            tip.entry_price, tip.targets, targets_reached(tip), tip.direction
        )
    else:
        raise ValueError(f"tip {tip.id}: cannot score open status {tip.status.value}")

    return TipReturnDetail(
        tip_id=tip.id,
        return_pct=return_pct,
        risk_pct=risk,
        risk_reward_ratio=return_pct / risk,
    )


def normalize_risk_reward(avg_risk_reward: float, floor: float, ceiling: float) -> float:
    return clamp((avg_risk_reward - floor) / (ceiling - floor) * 100, 0.0, 100.0)


def calculate_risk_adjusted(
    tips: Sequence[CompletedTip],
    floor: float = DEFAULT_FLOOR,
    ceiling: float = DEFAULT_CEILING,
    min_risk_pct: float = DEFAULT_MIN_RISK_PCT,
) -> RiskAdjustedResult:
    if not tips:
        return RiskAdjustedResult(avg_return_pct=0.0, avg_risk_reward_ratio=0.0, risk_adjusted_score=0.0)

    details = [tip_return(tip, min_risk_pct) for tip in tips]
    returns = [detail.return_pct for detail in details]
    avg_risk_reward = sum(detail.risk_reward_ratio for detail in details) / len(details)

    return RiskAdjustedResult(
        avg_return_pct=sum(returns) / len(returns),
        avg_risk_reward_ratio=avg_risk_reward,
        risk_adjusted_score=normalize_risk_reward(avg_risk_reward, floor, ceiling),
        best_tip_return_pct=max(returns),
        worst_tip_return_pct=min(returns),
        tip_details=details,
    )
