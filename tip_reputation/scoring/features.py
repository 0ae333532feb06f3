from __future__ import annotations

from datetime import datetime

from tip_reputation.models import Direction


def clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


def direction_sign(direction: Direction) -> float:
    return 1.0 if direction is Direction.BUY else -1.0


def pct_move(entry_price: float, price: float, direction: Direction) -> float:
    """Percentage move from entry to price, positive when the call was right."""
    return direction_sign(direction) * (price - entry_price) / entry_price * 100


def risk_pct(entry_price: float, stop_loss: float, floor: float) -> float:
    """Planned loss in percent of entry, never below ``floor``."""
    return max(abs(entry_price - stop_loss) / entry_price * 100, floor)


def month_key(value: datetime) -> str:
    return f"{value.year:04d}-{value.month:02d}"


TARGET_BLEND_WEIGHTS = {
    1: (1.0,),
    2: (0.5, 0.5),
    3: (0.33, 0.33, 0.34),
}


def blended_target_return(
    entry_price: float,
    targets: list[float],
    reached: int,
    direction: Direction,
) -> float:
    """Weighted planned return over the first ``reached`` targets."""
    reached = max(1, min(reached, len(targets)))
    weights = TARGET_BLEND_WEIGHTS[reached]
    return sum(
        weight * pct_move(entry_price, target, direction)
        for weight, target in zip(weights, targets[:reached])
    )
