from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ValidationInfo, field_validator


class TargetMode(str, Enum):
    MULTI = "multi"
    SINGLE = "single"


class RunConfig(BaseModel):
    timezone: str = "UTC"
    db_path: str = "data/tip_reputation.sqlite"


class LifecycleConfig(BaseModel):
    min_risk_pct: float = 0.01
    target_mode: TargetMode = TargetMode.MULTI


class ScoreWeights(BaseModel):
    accuracy: float = 0.40
    risk_adjusted: float = 0.30
    consistency: float = 0.20
    volume: float = 0.10

    def as_dict(self) -> Dict[str, float]:
        return {
            "accuracy": self.accuracy,
            "risk_adjusted": self.risk_adjusted,
            "consistency": self.consistency,
            "volume": self.volume,
        }


class ScoringConfig(BaseModel):
    weights: ScoreWeights = ScoreWeights()
    half_life_days: float = 90
    min_tips_for_rating: int = 20
    max_expected_tips: int = 2000
    risk_adjusted_floor: float = -2.0
    risk_adjusted_ceiling: float = 5.0
    confidence_z: float = 1.96
    neutral_consistency: float = 50.0
    min_months_for_consistency: int = 3

    @field_validator("weights")
    @classmethod
    def _weights_sum_to_one(cls, value: ScoreWeights) -> ScoreWeights:
        total = sum(value.as_dict().values())
        if abs(total - 1.0) > 1e-6:
            raise ValueError(f"scoring weights must sum to 1.0, got {total:.4f}")
        return value

    @field_validator("half_life_days")
    @classmethod
    def _positive_half_life(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("half_life_days must be positive")
        return value

    @field_validator("max_expected_tips")
    @classmethod
    def _max_expected_above_one(cls, value: int) -> int:
        if value <= 1:
            raise ValueError("max_expected_tips must be greater than 1")
        return value

    @field_validator("risk_adjusted_ceiling")
    @classmethod
    def _ceiling_above_floor(cls, value: float, info: ValidationInfo) -> float:
        floor = info.data.get("risk_adjusted_floor")
        if floor is not None and value <= floor:
            raise ValueError("risk_adjusted_ceiling must be greater than risk_adjusted_floor")
        return value


class OrchestratorConfig(BaseModel):
    batch_size: int = 50
    max_workers: int = 10


class PriceFeedConfig(BaseModel):
    base_url: str = "https://query1.finance.yahoo.com/v8/finance/chart"
    request_timeout_s: int = 15
    retry_max: int = 3
    backoff_initial_s: float = 1.0
    backoff_max_s: float = 10.0
    rate_limit_per_s: int = 5


class ScheduleConfig(BaseModel):
    price_check_cron: str = "30 4,8 * * mon-fri"
    expiry_check_cron: str = "0 * * * *"
    full_recompute_cron: Optional[str] = None
    snapshot_delay_s: int = 300
    job_attempts: Dict[str, int] = {
        "update_prices": 2,
        "check_expirations": 1,
        "calculate_scores": 1,
        "daily_snapshot": 1,
    }


class AppConfig(BaseModel):
    run: RunConfig = RunConfig()
    lifecycle: LifecycleConfig = LifecycleConfig()
    scoring: ScoringConfig = ScoringConfig()
    orchestrator: OrchestratorConfig = OrchestratorConfig()
    price_feed: PriceFeedConfig = PriceFeedConfig()
    schedule: ScheduleConfig = ScheduleConfig()


def load_config(path: str | Path) -> AppConfig:
    data: Dict[str, Any] = {}
    config_path = Path(path)
    if config_path.exists():
        with config_path.open("r", encoding="utf-8") as handle:
            loaded = yaml.safe_load(handle)
            if isinstance(loaded, dict):
                data = loaded
    return AppConfig(**data)
