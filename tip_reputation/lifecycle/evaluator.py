"""Tip outcome state machine.

Every tick a non-terminal tip is checked against the current price in a fixed
order: expiry, then stop-loss, then the next un-hit target. Only the current
price is looked at, so a target reached on an earlier tick does not protect a
tip whose stop-loss is breached now.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from tip_reputation.config import TargetMode
from tip_reputation.models import Direction, Tip, TipStatus
from tip_reputation.scoring.features import blended_target_return, pct_move, risk_pct
from tip_reputation.utils.time import ensure_utc

DEFAULT_MIN_RISK_PCT = 0.01

# Targets already reached for each open status.
_TARGETS_REACHED = {
    TipStatus.ACTIVE: 0,
    TipStatus.TARGET_1_HIT: 1,
    TipStatus.TARGET_2_HIT: 2,
    TipStatus.TARGET_3_HIT: 3,
}

_INTERMEDIATE_STATUS = {
    1: TipStatus.TARGET_1_HIT,
    2: TipStatus.TARGET_2_HIT,
}

_HIT_AT_FIELDS = ("target1_hit_at", "target2_hit_at", "target3_hit_at")


class TipTransition(BaseModel):
    tip_id: str
    creator_id: str
    symbol: str
    old_status: TipStatus
    new_status: TipStatus
    price: float
    timestamp: datetime
    targets_reached: int = 0
    return_pct: Optional[float] = None
    risk_reward_ratio: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.new_status.is_terminal


def evaluate_tip(
    tip: Tip,
    price: float | None,
    now: datetime,
    min_risk_pct: float = DEFAULT_MIN_RISK_PCT,
    target_mode: TargetMode = TargetMode.MULTI,
) -> TipTransition | None:
    """Decide the next status for ``tip`` at ``price``.

    Returns ``None`` when nothing changes: the tip is already terminal, no
    price is known this tick, or no condition is met.
    """
    if price is None or tip.status.is_terminal:
        return None

    reached = _TARGETS_REACHED[tip.status]

    if ensure_utc(now) >= ensure_utc(tip.expires_at):
        return _transition(tip, price, TipStatus.EXPIRED, now, reached, min_risk_pct)

    if stop_loss_breached(tip, price):
        return _transition(tip, price, TipStatus.STOPLOSS_HIT, now, reached, min_risk_pct)

    hit = next_target_hit(tip, price, target_mode)
    if hit is None:
        return None
    new_status, reached = hit
    return _transition(tip, price, new_status, now, reached, min_risk_pct)


def stop_loss_breached(tip: Tip, price: float) -> bool:
    if tip.direction is Direction.BUY:
        return price <= tip.stop_loss
    return price >= tip.stop_loss


def target_reached(tip: Tip, target: float, price: float) -> bool:
    if tip.direction is Direction.BUY:
        return price >= target
    return price <= target


def next_target_hit(
    tip: Tip,
    price: float,
    target_mode: TargetMode,
) -> tuple[TipStatus, int] | None:
    """Status and targets-reached count after checking the next un-hit target."""
    if target_mode is TargetMode.SINGLE:
        if target_reached(tip, tip.target1, price):
            return TipStatus.ALL_TARGETS_HIT, 1
        return None

    targets = tip.targets
    reached = _TARGETS_REACHED[tip.status]
    if reached >= len(targets):
        # Status already covers the last defined target.
        return TipStatus.ALL_TARGETS_HIT, len(targets)
    if not target_reached(tip, targets[reached], price):
        return None
    reached += 1
    if reached == len(targets):
        return TipStatus.ALL_TARGETS_HIT, reached
    return _INTERMEDIATE_STATUS[reached], reached


def closing_returns(
    tip: Tip,
    status: TipStatus,
    price: float,
    targets_reached: int,
    min_risk_pct: float = DEFAULT_MIN_RISK_PCT,
) -> tuple[float, float]:
    """Return ``(return_pct, risk_reward_ratio)`` for a tip closing at ``price``.

    A target close books the planned return of the targets reached; expiry and
    stop-loss closes book the actual move to ``price``.
    """
    if status is TipStatus.ALL_TARGETS_HIT:
        return_pct = blended_target_return(
            tip.entry_price, tip.targets, targets_reached, tip.direction
        )
    else:
        return_pct = pct_move(tip.entry_price, price, tip.direction)
    risk = risk_pct(tip.entry_price, tip.stop_loss, min_risk_pct)
    return return_pct, return_pct / risk


def _transition(
    tip: Tip,
    price: float,
    status: TipStatus,
    now: datetime,
    targets_reached: int,
    min_risk_pct: float,
) -> TipTransition:
    transition = TipTransition(
        tip_id=tip.id,
        creator_id=tip.creator_id,
        symbol=tip.symbol,
        old_status=tip.status,
        new_status=status,
        price=price,
        timestamp=now,
        targets_reached=targets_reached,
    )
    if not status.is_terminal:
        return transition
    return_pct, risk_reward_ratio = closing_returns(tip, status, price, targets_reached, min_risk_pct)
    return transition.model_copy(
        update={"return_pct": return_pct, "risk_reward_ratio": risk_reward_ratio}
    )


def transition_updates(tip: Tip, transition: TipTransition) -> dict[str, Any]:
    """Column updates written back for a transition."""
    timestamp = transition.timestamp
    status = transition.new_status
    updates: dict[str, Any] = {
        "status": status,
        "status_updated_at": timestamp,
    }

    if status in (TipStatus.TARGET_1_HIT, TipStatus.TARGET_2_HIT, TipStatus.ALL_TARGETS_HIT):
        for field in _HIT_AT_FIELDS[: transition.targets_reached]:
            if getattr(tip, field) is None:
                updates[field] = timestamp
    elif status is TipStatus.STOPLOSS_HIT:
        updates["stoploss_hit_at"] = timestamp

    if transition.is_terminal:
        updates.update(
            {
                "closed_price": transition.price,
                "closed_at": timestamp,
                "return_pct": transition.return_pct,
                "risk_reward_ratio": transition.risk_reward_ratio,
            }
        )
    return updates


def apply_transition(tip: Tip, transition: TipTransition) -> Tip:
    if transition.tip_id != tip.id:
        raise ValueError(f"transition for {transition.tip_id} applied to tip {tip.id}")
    if tip.status.is_terminal:
        raise ValueError(f"tip {tip.id} is already {tip.status.value}")
    return tip.model_copy(update=transition_updates(tip, transition))
