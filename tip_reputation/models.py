from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class TipStatus(str, Enum):
    ACTIVE = "ACTIVE"
    TARGET_1_HIT = "TARGET_1_HIT"
    TARGET_2_HIT = "TARGET_2_HIT"
    TARGET_3_HIT = "TARGET_3_HIT"
    ALL_TARGETS_HIT = "ALL_TARGETS_HIT"
    STOPLOSS_HIT = "STOPLOSS_HIT"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_hit(self) -> bool:
        return self in HIT_STATUSES


TERMINAL_STATUSES = frozenset(
    {TipStatus.ALL_TARGETS_HIT, TipStatus.STOPLOSS_HIT, TipStatus.EXPIRED}
)
OPEN_STATUSES = frozenset(
    {TipStatus.ACTIVE, TipStatus.TARGET_1_HIT, TipStatus.TARGET_2_HIT, TipStatus.TARGET_3_HIT}
)
HIT_STATUSES = frozenset(
    {
        TipStatus.TARGET_1_HIT,
        TipStatus.TARGET_2_HIT,
        TipStatus.TARGET_3_HIT,
        TipStatus.ALL_TARGETS_HIT,
    }
)


class Direction(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class Timeframe(str, Enum):
    INTRADAY = "INTRADAY"
    SWING = "SWING"
    POSITIONAL = "POSITIONAL"
    LONG_TERM = "LONG_TERM"


class Tier(str, Enum):
    UNRATED = "UNRATED"
    BRONZE = "BRONZE"
    SILVER = "SILVER"
    GOLD = "GOLD"
    PLATINUM = "PLATINUM"
    DIAMOND = "DIAMOND"


class Tip(BaseModel):
    """A single directional prediction.

    Closing fields (closed_at, closed_price, return_pct, risk_reward_ratio) are
    either all unset or all set, and they are set exactly when the status is
    terminal.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    creator_id: str
    symbol: str
    exchange: str = "NSE"
    direction: Direction
    timeframe: Timeframe
    entry_price: float
    target1: float
    target2: Optional[float] = None
    target3: Optional[float] = None
    stop_loss: float
    status: TipStatus = TipStatus.ACTIVE
    tip_timestamp: datetime
    expires_at: datetime
    closed_price: Optional[float] = None
    closed_at: Optional[datetime] = None
    return_pct: Optional[float] = None
    risk_reward_ratio: Optional[float] = None
    target1_hit_at: Optional[datetime] = None
    target2_hit_at: Optional[datetime] = None
    target3_hit_at: Optional[datetime] = None
    stoploss_hit_at: Optional[datetime] = None
    status_updated_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "Tip":
        if self.entry_price <= 0:
            raise ValueError(f"tip {self.id}: entry_price must be positive")
        if self.target3 is not None and self.target2 is None:
            raise ValueError(f"tip {self.id}: target3 requires target2")
        sign = 1.0 if self.direction is Direction.BUY else -1.0
        previous = self.target1
        for target in (self.target2, self.target3):
            if target is None:
                continue
            if sign * (target - previous) <= 0:
                raise ValueError(f"tip {self.id}: targets must move away from entry in order")
            previous = target

        closing = (self.closed_at, self.closed_price, self.return_pct, self.risk_reward_ratio)
        if self.status.is_terminal:
            if any(value is None for value in closing):
                raise ValueError(f"tip {self.id}: terminal status {self.status.value} without closing fields")
        elif any(value is not None for value in closing):
            raise ValueError(f"tip {self.id}: closing fields set on open status {self.status.value}")
        return self

    @property
    def targets(self) -> list[float]:
        return [target for target in (self.target1, self.target2, self.target3) if target is not None]


class CompletedTip(Tip):
    closed_at: datetime

    @model_validator(mode="after")
    def _check_terminal(self) -> "CompletedTip":
        if not self.status.is_terminal:
            raise ValueError(f"tip {self.id}: status {self.status.value} is not terminal")
        return self


class PriceQuote(BaseModel):
    symbol: str
    price: float
    timestamp: datetime
    change: float = 0.0
    change_pct: float = 0.0


class TimeframeAccuracy(BaseModel):
    intraday: Optional[float] = None
    swing: Optional[float] = None
    positional: Optional[float] = None
    long_term: Optional[float] = None


class CreatorScore(BaseModel):
    creator_id: str
    accuracy_score: float
    risk_adjusted_score: float
    consistency_score: float
    volume_factor_score: float
    rmt_score: float
    confidence_interval: float
    accuracy_rate: float
    avg_return_pct: float
    avg_risk_reward_ratio: float
    win_streak: int
    loss_streak: int
    best_tip_return_pct: Optional[float] = None
    worst_tip_return_pct: Optional[float] = None
    timeframe_accuracy: TimeframeAccuracy = TimeframeAccuracy()
    total_scored_tips: int
    score_period_start: datetime
    score_period_end: datetime
    calculated_at: datetime
    tier: Tier


class ScoreSnapshot(BaseModel):
    creator_id: str
    snapshot_date: date
    rmt_score: float
    accuracy_rate: float
    total_scored_tips: int
