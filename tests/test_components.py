from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

import pytest

from tip_reputation.config import TargetMode
from tip_reputation.lifecycle.evaluator import apply_transition, evaluate_tip
from tip_reputation.models import CompletedTip, Direction, Timeframe, Tip, TipStatus
from tip_reputation.scoring.accuracy import calculate_accuracy, filtered_accuracy, recency_weight
from tip_reputation.scoring.consistency import calculate_consistency
from tip_reputation.scoring.risk_adjusted import (
    calculate_risk_adjusted,
    normalize_risk_reward,
    targets_reached,
    tip_return,
)
from tip_reputation.scoring.volume import calculate_volume_factor

NOW = datetime(2025, 6, 30, 12, 0, tzinfo=timezone.utc)


def _completed(
    index: int,
    status: TipStatus,
    closed_at: datetime = NOW,
    **overrides,
) -> CompletedTip:
    data = {
        "id": f"t{index}",
        "creator_id": "c1",
        "symbol": "TCS",
        "direction": Direction.BUY,
        "timeframe": Timeframe.SWING,
        "entry_price": 100.0,
        "target1": 110.0,
        "stop_loss": 95.0,
        "status": status,
        "tip_timestamp": closed_at - timedelta(days=3),
        "expires_at": closed_at + timedelta(days=30),
        "closed_at": closed_at,
        "closed_price": 100.0,
        "return_pct": 0.0,
        "risk_reward_ratio": 0.0,
    }
    data.update(overrides)
    return CompletedTip(**data)


def _hits_and_misses(hits: int, misses: int, closed_at: datetime = NOW) -> list[CompletedTip]:
    tips = [_completed(i, TipStatus.ALL_TARGETS_HIT, closed_at) for i in range(hits)]
    tips += [_completed(hits + i, TipStatus.STOPLOSS_HIT, closed_at) for i in range(misses)]
    return tips


def test_accuracy_empty_scores_zero():
    result = calculate_accuracy([], 90, NOW)
    assert result.accuracy_score == 0.0
    assert result.total_completed == 0


def test_accuracy_uniform_recency():
    result = calculate_accuracy(_hits_and_misses(15, 10), 90, NOW)
    assert result.accuracy_rate == pytest.approx(0.6)
    assert result.accuracy_score == pytest.approx(60.0)
    assert result.total_hit == 15
    assert result.total_completed == 25


def test_accuracy_score_approaches_raw_rate_with_long_half_life():
    tips = [
        _completed(i, TipStatus.ALL_TARGETS_HIT if i % 5 < 3 else TipStatus.EXPIRED, NOW - timedelta(days=i * 7))
        for i in range(25)
    ]
    result = calculate_accuracy(tips, 1e9, NOW)
    assert result.accuracy_rate == pytest.approx(0.6)
    assert result.accuracy_score == pytest.approx(60.0, abs=1e-3)


def test_recency_half_life():
    assert recency_weight(NOW - timedelta(days=30), NOW, 30) == pytest.approx(0.5)
    assert recency_weight(NOW, NOW, 30) == pytest.approx(1.0)
    assert recency_weight(NOW + timedelta(days=3), NOW, 30) == pytest.approx(1.0)

    tips = [
        _completed(1, TipStatus.ALL_TARGETS_HIT, NOW - timedelta(days=30)),
        _completed(2, TipStatus.STOPLOSS_HIT, NOW),
    ]
    result = calculate_accuracy(tips, 30, NOW)
    assert result.weighted_accuracy_rate == pytest.approx(0.5 / 1.5)


def test_recency_uses_whole_days():
    almost_two_days = NOW - timedelta(days=1, hours=23)
    assert recency_weight(almost_two_days, NOW, 30) == pytest.approx(math.exp(-math.log(2) / 30))


def test_filtered_accuracy():
    tips = [
        _completed(1, TipStatus.ALL_TARGETS_HIT, timeframe=Timeframe.INTRADAY),
        _completed(2, TipStatus.STOPLOSS_HIT, timeframe=Timeframe.INTRADAY),
        _completed(3, TipStatus.ALL_TARGETS_HIT),
    ]
    assert filtered_accuracy(tips, lambda tip: tip.timeframe is Timeframe.INTRADAY) == pytest.approx(0.5)
    assert filtered_accuracy(tips, lambda tip: tip.timeframe is Timeframe.LONG_TERM) is None


def test_stop_loss_books_full_planned_loss():
    detail = tip_return(_completed(1, TipStatus.STOPLOSS_HIT, closed_price=90.0))
    assert detail.return_pct == pytest.approx(-5.0)
    assert detail.risk_reward_ratio == pytest.approx(-1.0)


def test_target_blends():
    single = tip_return(_completed(1, TipStatus.ALL_TARGETS_HIT, closed_price=111.0))
    assert single.return_pct == pytest.approx(10.0)
    assert single.risk_reward_ratio == pytest.approx(2.0)

    two = tip_return(_completed(2, TipStatus.ALL_TARGETS_HIT, target2=120.0, closed_price=121.0))
    assert two.return_pct == pytest.approx(15.0)

    three = tip_return(_completed(3, TipStatus.ALL_TARGETS_HIT, target2=120.0, target3=130.0))
    assert three.return_pct == pytest.approx(20.1)


def test_target_blend_counts_recorded_hits():
    partial = _completed(
        1,
        TipStatus.ALL_TARGETS_HIT,
        target2=120.0,
        target3=130.0,
        target1_hit_at=NOW - timedelta(days=2),
        target2_hit_at=NOW - timedelta(days=1),
    )
    assert targets_reached(partial) == 2
    assert tip_return(partial).return_pct == pytest.approx(15.0)


def test_single_target_mode_close_scores_first_target_only():
    open_tip = Tip(
        id="t1",
        creator_id="c1",
        symbol="TCS",
        direction=Direction.BUY,
        timeframe=Timeframe.SWING,
        entry_price=100.0,
        target1=110.0,
        target2=120.0,
        target3=130.0,
        stop_loss=95.0,
        tip_timestamp=NOW - timedelta(days=3),
        expires_at=NOW + timedelta(days=30),
    )
    transition = evaluate_tip(open_tip, 111.0, NOW, target_mode=TargetMode.SINGLE)
    closed = CompletedTip(**apply_transition(open_tip, transition).model_dump())

    detail = tip_return(closed)
    assert closed.target2_hit_at is None
    assert detail.return_pct == pytest.approx(closed.return_pct)
    assert detail.return_pct == pytest.approx(10.0)
    assert detail.risk_reward_ratio == pytest.approx(2.0)


def test_expired_uses_close_vs_entry():
    buy = tip_return(_completed(1, TipStatus.EXPIRED, closed_price=103.0))
    assert buy.return_pct == pytest.approx(3.0)
    assert buy.risk_reward_ratio == pytest.approx(0.6)

    sell = tip_return(
        _completed(2, TipStatus.EXPIRED, direction=Direction.SELL, target1=90.0, stop_loss=105.0, closed_price=103.0)
    )
    assert sell.return_pct == pytest.approx(-3.0)


def test_risk_reward_mapping():
    assert normalize_risk_reward(-2.0, -2.0, 5.0) == pytest.approx(0.0)
    assert normalize_risk_reward(5.0, -2.0, 5.0) == pytest.approx(100.0)
    assert normalize_risk_reward(1.5, -2.0, 5.0) == pytest.approx(50.0)
    assert normalize_risk_reward(-10.0, -2.0, 5.0) == 0.0
    assert normalize_risk_reward(40.0, -2.0, 5.0) == 100.0


def test_risk_adjusted_aggregate():
    tips = [
        _completed(1, TipStatus.ALL_TARGETS_HIT, closed_price=111.0),
        _completed(2, TipStatus.STOPLOSS_HIT, closed_price=95.0),
    ]
    result = calculate_risk_adjusted(tips)
    assert result.avg_return_pct == pytest.approx(2.5)
    assert result.avg_risk_reward_ratio == pytest.approx(0.5)
    assert result.risk_adjusted_score == pytest.approx(2.5 / 7 * 100)
    assert result.best_tip_return_pct == pytest.approx(10.0)
    assert result.worst_tip_return_pct == pytest.approx(-5.0)
    assert [detail.tip_id for detail in result.tip_details] == ["t1", "t2"]


def test_risk_adjusted_empty():
    result = calculate_risk_adjusted([])
    assert result.risk_adjusted_score == 0.0
    assert result.best_tip_return_pct is None


def _month(month: int, day: int = 15) -> datetime:
    return datetime(2025, month, day, tzinfo=timezone.utc)


def test_consistency_neutral_under_three_months():
    tips = [
        _completed(1, TipStatus.ALL_TARGETS_HIT, _month(1)),
        _completed(2, TipStatus.STOPLOSS_HIT, _month(2)),
        _completed(3, TipStatus.STOPLOSS_HIT, _month(2, 20)),
    ]
    result = calculate_consistency(tips)
    assert result.consistency_score == 50.0
    assert result.months_with_data == 2


def test_consistency_zero_mean_scores_zero():
    tips = [_completed(i, TipStatus.STOPLOSS_HIT, _month(i)) for i in range(1, 5)]
    assert calculate_consistency(tips).consistency_score == 0.0


def test_consistency_equal_months_score_full():
    tips = []
    for month in (1, 2, 3):
        tips.append(_completed(month * 10, TipStatus.ALL_TARGETS_HIT, _month(month)))
        tips.append(_completed(month * 10 + 1, TipStatus.EXPIRED, _month(month, 20)))
    result = calculate_consistency(tips)
    assert result.coefficient_of_variation == pytest.approx(0.0)
    assert result.consistency_score == pytest.approx(100.0)
    assert [month.month for month in result.monthly_breakdown] == ["2025-01", "2025-02", "2025-03"]


def test_consistency_coefficient_of_variation():
    tips = [
        _completed(1, TipStatus.ALL_TARGETS_HIT, _month(1)),
        _completed(2, TipStatus.ALL_TARGETS_HIT, _month(2)),
        _completed(3, TipStatus.STOPLOSS_HIT, _month(2, 20)),
        _completed(4, TipStatus.STOPLOSS_HIT, _month(3)),
    ]
    result = calculate_consistency(tips)
    expected_cv = math.sqrt(1 / 6) / 0.5
    assert result.coefficient_of_variation == pytest.approx(expected_cv)
    assert result.consistency_score == pytest.approx((1 - expected_cv) * 100)


def test_consistency_empty():
    assert calculate_consistency([]).consistency_score == 0.0


def test_volume_factor_endpoints():
    assert calculate_volume_factor(0).volume_factor_score == 0.0
    assert calculate_volume_factor(-5).volume_factor_score == 0.0
    assert calculate_volume_factor(2000).volume_factor_score == pytest.approx(100.0)
    assert calculate_volume_factor(50_000).volume_factor_score == 100.0


def test_volume_factor_strictly_increasing():
    scores = [calculate_volume_factor(n).volume_factor_score for n in range(1, 2000)]
    assert all(later > earlier for earlier, later in zip(scores, scores[1:]))
