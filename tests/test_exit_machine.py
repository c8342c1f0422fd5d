from datetime import datetime, timedelta, timezone

import pytest

from algo.factors.snapshot import MACD, IndicatorSnapshot
from algo.strategy.exit import ExitRule, ExitStateMachine, ExitTiming
from shared.config.schema import ExitConfig
from shared.models.models import Position

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _position(**overrides) -> Position:
    base = dict(
        symbol="BTCUSDT",
        entry_price=100.0,
        entry_time=T0,
        quantity=1.0,
        stop_loss=98.0,
        take_profit=101.5,
        trailing_stop=98.0,
        peak_price=100.0,
        entry_volume=100.0,
        entry_atr=1.0,
    )
    base.update(overrides)
    return Position(**base)


def _quiet(price: float = 100.0, **overrides) -> IndicatorSnapshot:
    """不触发任何出场规则的快照。"""
    base = dict(price=price, volume=100.0, atr=1.0, rsi=50.0, uo=50.0, williams_r=-50.0)
    base.update(overrides)
    return IndicatorSnapshot(**base)


def test_quiet_market_holds():
    machine = ExitStateMachine()
    decision = machine.evaluate(_position(), _quiet(), T0 + timedelta(minutes=5))
    assert not decision.triggered
    assert machine.exit_timing(decision) == ExitTiming.HOLD


def test_profit_target_is_net_of_fees():
    machine = ExitStateMachine()
    now = T0 + timedelta(minutes=1)
    # 毛收益 0.4% - 往返 0.2% = 0.2% < 0.3%
    assert not machine.evaluate(_position(), _quiet(100.4), now).triggered
    decision = machine.evaluate(_position(), _quiet(100.6), now)
    assert decision.triggered
    assert decision.rule == ExitRule.PROFIT_TARGET
    assert decision.priority == 1


def test_rule_priority_order():
    machine = ExitStateMachine()
    now = T0 + timedelta(minutes=45)
    snap = _quiet(
        williams_r=-10.0,
        volume=10.0,
        atr=0.1,
        rsi=90.0,
        uo=90.0,
        macd=MACD(macd=-1.0, signal=0.0, histogram=-1.0),
    )
    decision = machine.evaluate(_position(), snap, now)
    assert decision.rule == ExitRule.MOMENTUM_EXHAUSTION
    assert decision.priority == 2


@pytest.mark.parametrize(
    "overrides, minutes, rule",
    [
        ({"cci": 150.0}, 1, ExitRule.MOMENTUM_EXHAUSTION),
        ({"roc": -2.0}, 1, ExitRule.MOMENTUM_EXHAUSTION),
        ({"volume": 40.0}, 1, ExitRule.VOLUME_EXHAUSTION),
        ({"atr": 0.5}, 1, ExitRule.VOLATILITY_CONTRACTION),
        ({}, 31, ExitRule.TIME_LIMIT),
        ({"rsi": 85.0}, 1, ExitRule.RSI_OVERBOUGHT),
        ({"macd": MACD(macd=-0.5, signal=0.1, histogram=-0.6)}, 1, ExitRule.TREND_BEARISH_CROSS),
        ({"uo": 75.0}, 1, ExitRule.UO_OVERBOUGHT),
    ],
)
def test_each_rule_fires_alone(overrides, minutes, rule):
    machine = ExitStateMachine()
    decision = machine.evaluate(_position(), _quiet(**overrides), T0 + timedelta(minutes=minutes))
    assert decision.triggered
    assert decision.rule == rule


def test_exit_timing_by_priority():
    machine = ExitStateMachine(ExitConfig(immediate_max_priority=3))
    now = T0 + timedelta(minutes=1)
    high = machine.evaluate(_position(), _quiet(williams_r=-5.0), now)
    low = machine.evaluate(_position(), _quiet(uo=90.0), now)
    assert machine.exit_timing(high) == ExitTiming.IMMEDIATE
    assert machine.exit_timing(low) == ExitTiming.WAIT


def test_scale_out_tiers_fire_once():
    machine = ExitStateMachine()
    pos = _position()
    early = T0 + timedelta(minutes=5)
    later = T0 + timedelta(minutes=12)

    # 持仓不足 10 分钟不减仓
    assert not machine.should_scale_out(pos, early, 101.2)
    # net = 1.2% - 0.2% = 1.0% -> 一档
    assert machine.should_scale_out(pos, later, 101.2)
    assert machine.scale_out_level(pos, 101.2) == 1
    assert machine.scale_out_fraction(pos, 101.2) == pytest.approx(0.3)

    pos.scale_out_level = 1
    assert not machine.should_scale_out(pos, later, 101.2)
    # net = 1.5% -> 二档
    assert machine.should_scale_out(pos, later, 101.5)
    assert machine.scale_out_fraction(pos, 101.5) == pytest.approx(0.5)


def test_trailing_stop_tightens_and_never_lowers():
    machine = ExitStateMachine()
    pos = _position()
    # 毛收益 < 0.5%：保持原止损
    assert machine.trailing_stop(pos, 100.3) == 98.0
    # 毛收益 0.6%：回撤 0.3%
    assert machine.trailing_stop(pos, 100.6) == pytest.approx(100.6 * 0.997)
    # 毛收益 2%：回撤 0.8%
    assert machine.trailing_stop(pos, 102.0) == pytest.approx(102.0 * 0.992)

    pos.trailing_stop = 101.0
    assert machine.trailing_stop(pos, 100.6) == 101.0


def test_trailing_stop_trigger():
    machine = ExitStateMachine()
    pos = _position(trailing_stop=99.0)
    assert machine.should_trigger_trailing_stop(pos, 98.9)
    assert machine.should_trigger_trailing_stop(pos, 99.0)
    assert not machine.should_trigger_trailing_stop(pos, 99.5)
    assert not machine.should_trigger_trailing_stop(_position(trailing_stop=0.0), 1.0)
