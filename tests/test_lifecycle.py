from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from tip_reputation.config import TargetMode
from tip_reputation.lifecycle.evaluator import apply_transition, evaluate_tip, transition_updates
from tip_reputation.models import Direction, Timeframe, Tip, TipStatus

NOW = datetime(2025, 3, 10, 4, 30, tzinfo=timezone.utc)


def _tip(**overrides) -> Tip:
    data = {
        "id": "t1",
        "creator_id": "c1",
        "symbol": "RELIANCE",
        "direction": Direction.BUY,
        "timeframe": Timeframe.SWING,
        "entry_price": 100.0,
        "target1": 110.0,
        "stop_loss": 95.0,
        "tip_timestamp": NOW - timedelta(days=5),
        "expires_at": NOW + timedelta(days=10),
    }
    data.update(overrides)
    return Tip(**data)


def _closing_fields(tip: Tip) -> list:
    return [tip.closed_at, tip.closed_price, tip.return_pct, tip.risk_reward_ratio]


def test_single_target_hit_closes_all_targets():
    tip = _tip()
    transition = evaluate_tip(tip, 111.0, NOW)

    assert transition is not None
    assert transition.new_status is TipStatus.ALL_TARGETS_HIT
    assert transition.return_pct == pytest.approx(10.0)
    assert transition.risk_reward_ratio == pytest.approx(2.0)

    closed = apply_transition(tip, transition)
    assert closed.status is TipStatus.ALL_TARGETS_HIT
    assert closed.closed_price == 111.0
    assert closed.closed_at == NOW
    assert closed.target1_hit_at == NOW
    assert closed.stoploss_hit_at is None


def test_stop_loss_wins_after_target_seen_on_earlier_tick():
    tip = _tip(target2=120.0)
    first = evaluate_tip(tip, 111.0, NOW)
    assert first.new_status is TipStatus.TARGET_1_HIT
    tip = apply_transition(tip, first)

    second = evaluate_tip(tip, 94.0, NOW + timedelta(hours=4))
    assert second.new_status is TipStatus.STOPLOSS_HIT
    closed = apply_transition(tip, second)
    assert closed.target1_hit_at == NOW
    assert closed.stoploss_hit_at == NOW + timedelta(hours=4)
    assert closed.return_pct == pytest.approx(-6.0)


def test_stop_loss_only_looks_at_current_price():
    transition = evaluate_tip(_tip(), 94.0, NOW)
    assert transition.new_status is TipStatus.STOPLOSS_HIT


def test_expiry_takes_priority_over_target():
    tip = _tip(expires_at=NOW)
    transition = evaluate_tip(tip, 111.0, NOW)
    assert transition.new_status is TipStatus.EXPIRED
    assert transition.return_pct == pytest.approx(11.0)


def test_expiry_takes_priority_over_stop_loss():
    tip = _tip(expires_at=NOW - timedelta(minutes=1))
    transition = evaluate_tip(tip, 90.0, NOW)
    assert transition.new_status is TipStatus.EXPIRED


def test_missing_price_leaves_tip_unchanged():
    assert evaluate_tip(_tip(), None, NOW) is None


def test_no_condition_met_returns_none():
    assert evaluate_tip(_tip(), 105.0, NOW) is None


def test_terminal_tip_is_never_reevaluated():
    tip = apply_transition(_tip(), evaluate_tip(_tip(), 111.0, NOW))
    assert evaluate_tip(tip, 50.0, NOW + timedelta(days=1)) is None
    with pytest.raises(ValueError):
        apply_transition(tip, evaluate_tip(_tip(), 94.0, NOW))


def test_multi_target_progression_blends_return():
    tip = _tip(target2=120.0, target3=130.0)

    first = evaluate_tip(tip, 111.0, NOW)
    assert first.new_status is TipStatus.TARGET_1_HIT
    assert first.return_pct is None
    tip = apply_transition(tip, first)
    assert _closing_fields(tip) == [None, None, None, None]

    later = NOW + timedelta(days=1)
    second = evaluate_tip(tip, 125.0, later)
    assert second.new_status is TipStatus.TARGET_2_HIT
    tip = apply_transition(tip, second)

    final = evaluate_tip(tip, 131.0, later + timedelta(days=1))
    assert final.new_status is TipStatus.ALL_TARGETS_HIT
    assert final.return_pct == pytest.approx(0.33 * 10 + 0.33 * 20 + 0.34 * 30)
    assert final.risk_reward_ratio == pytest.approx(final.return_pct / 5.0)
    tip = apply_transition(tip, final)
    assert tip.target1_hit_at == NOW
    assert tip.target2_hit_at == later
    assert tip.target3_hit_at == later + timedelta(days=1)


def test_only_next_target_is_checked_per_tick():
    tip = _tip(target2=120.0)
    transition = evaluate_tip(tip, 125.0, NOW)
    assert transition.new_status is TipStatus.TARGET_1_HIT
    assert transition.targets_reached == 1


def test_single_target_mode_jumps_to_all_targets():
    tip = _tip(target2=120.0, target3=130.0)
    transition = evaluate_tip(tip, 111.0, NOW, target_mode=TargetMode.SINGLE)
    assert transition.new_status is TipStatus.ALL_TARGETS_HIT
    assert transition.return_pct == pytest.approx(10.0)
    updates = transition_updates(tip, transition)
    assert updates["target1_hit_at"] == NOW
    assert "target2_hit_at" not in updates


def test_third_target_status_completes_on_next_tick():
    tip = _tip(target2=120.0, target3=130.0, status=TipStatus.TARGET_3_HIT)
    transition = evaluate_tip(tip, 126.0, NOW)
    assert transition.new_status is TipStatus.ALL_TARGETS_HIT
    assert transition.targets_reached == 3
    assert transition.return_pct == pytest.approx(20.1)


def test_sell_tip_direction():
    tip = _tip(direction=Direction.SELL, target1=90.0, stop_loss=105.0)

    hit = evaluate_tip(tip, 89.0, NOW)
    assert hit.new_status is TipStatus.ALL_TARGETS_HIT
    assert hit.return_pct == pytest.approx(10.0)
    assert hit.risk_reward_ratio == pytest.approx(2.0)

    stopped = evaluate_tip(tip, 106.0, NOW)
    assert stopped.new_status is TipStatus.STOPLOSS_HIT
    assert stopped.return_pct == pytest.approx(-6.0)
    assert stopped.risk_reward_ratio == pytest.approx(-1.2)


def test_zero_risk_uses_floor():
    tip = _tip(stop_loss=100.0)
    transition = evaluate_tip(tip, 111.0, NOW, min_risk_pct=0.01)
    assert transition.risk_reward_ratio == pytest.approx(10.0 / 0.01)


def test_closing_fields_set_together_on_every_terminal_status():
    cases = [
        (_tip(), 111.0),
        (_tip(), 94.0),
        (_tip(expires_at=NOW), 101.0),
    ]
    for tip, price in cases:
        closed = apply_transition(tip, evaluate_tip(tip, price, NOW))
        assert closed.status.is_terminal
        assert all(value is not None for value in _closing_fields(closed))


def test_tip_rejects_targets_out_of_order():
    with pytest.raises(ValueError):
        _tip(target2=105.0)
    with pytest.raises(ValueError):
        _tip(direction=Direction.SELL, target1=90.0, target2=95.0, stop_loss=105.0)
    with pytest.raises(ValueError):
        _tip(target3=130.0)


def test_tip_rejects_partial_closing_fields():
    with pytest.raises(ValueError):
        _tip(closed_at=NOW)
    with pytest.raises(ValueError):
        _tip(status=TipStatus.EXPIRED, closed_at=NOW, closed_price=100.0)
