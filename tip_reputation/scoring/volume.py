from __future__ import annotations

import math

from pydantic import BaseModel

from tip_reputation.scoring.features import clamp

MAX_EXPECTED_TIPS = 2000


class VolumeFactorResult(BaseModel):
    volume_factor: float
    volume_factor_score: float


def calculate_volume_factor(
    total_scored_tips: int,
    max_expected_tips: int = MAX_EXPECTED_TIPS,
) -> VolumeFactorResult:
    """log10(n) / log10(max_expected_tips), so 2000 tips score 100 and growth flattens."""
    if total_scored_tips <= 0:
        return VolumeFactorResult(volume_factor=0.0, volume_factor_score=0.0)
    factor = math.log10(total_scored_tips) / math.log10(max_expected_tips)
    return VolumeFactorResult(volume_factor=factor, volume_factor_score=clamp(factor * 100, 0.0, 100.0))
