import math
from dataclasses import fields, is_dataclass
from datetime import timedelta

import pandas as pd
import pytest

from algo.factors import complexity, momentum, volume
from algo.factors.engine import IndicatorEngine, compute
from algo.factors.snapshot import CloudSignal, neutral_snapshot
from algo.strategy.exit import ExitRule, ExitStateMachine
from market.client import FakeMarketClient
from shared.models.models import Position


def _finite_fields(snapshot):
    """递归收集快照（含嵌套记录）中的全部 float 值。"""
    out = []
    for f in fields(snapshot):
        value = getattr(snapshot, f.name)
        if is_dataclass(value):
            out.extend(_finite_fields(value))
        elif isinstance(value, float):
            out.append(value)
    return out


def test_short_window_returns_neutral_snapshot(make_ticks):
    snap = compute(make_ticks([100.0] * 10))
    assert snap == neutral_snapshot(100.0, 10)
    assert snap.is_neutral
    assert snap.rsi == 50.0
    assert snap.ichimoku.signal == CloudSignal.NEUTRAL


def test_nested_records_are_walked():
    values = _finite_fields(neutral_snapshot(100.0, 10))
    # macd / stochastic / ichimoku / smart_money / liquidity / volume_profile 都被展开
    assert len(values) > 30


def test_empty_window_is_neutral():
    snap = compute([])
    assert snap.is_neutral
    assert snap.price == 0.0


def test_random_walk_snapshot_is_finite_and_in_range():
    ticks = FakeMarketClient(seed=3).generate("ETHUSDT", 150)
    snap = IndicatorEngine().compute(ticks)

    assert not snap.is_neutral
    assert snap.window_size == 150
    assert snap.price == pytest.approx(ticks[-1].close)
    assert all(math.isfinite(v) for v in _finite_fields(snap))
    assert 0.0 <= snap.rsi <= 100.0
    assert -100.0 <= snap.williams_r <= 0.0
    assert 0.0 <= snap.stochastic.k <= 100.0
    assert 0.0 <= snap.uo <= 100.0
    assert 0.0 <= snap.mfi <= 100.0
    assert 0.0 <= snap.atr_percentile <= 100.0
    assert 1.0 <= snap.fractal_dimension <= 2.0
    assert 0.0 <= snap.hurst_exponent <= 1.0
    assert snap.atr > 0
    assert snap.volume_profile.value_area_low <= snap.volume_profile.point_of_control
    assert snap.volume_profile.point_of_control <= snap.volume_profile.value_area_high


def test_compute_is_deterministic():
    ticks = FakeMarketClient(seed=11).generate("SOLUSDT", 120)
    assert compute(ticks) == compute(list(ticks))


def test_flat_prices_produce_neutral_values(make_ticks):
    ticks = [t.__class__(t.symbol, 100.0, 100.0, 100.0, 100.0, 0.0, t.timestamp) for t in make_ticks([100.0] * 80)]
    snap = compute(ticks)
    assert not snap.is_neutral
    assert snap.rsi == 50.0
    assert snap.williams_r == -50.0
    assert snap.cci == 0.0
    assert snap.roc == 0.0
    assert snap.uo == 50.0
    assert snap.mfi == 50.0
    assert snap.volume_ratio == 1.0
    assert snap.volume_profile.point_of_control == 100.0
    assert all(math.isfinite(v) for v in _finite_fields(snap))


def test_rsi_edges():
    rising = pd.Series([float(i) for i in range(1, 40)])
    assert momentum.rsi(rising, 14) == 100.0
    falling = pd.Series([float(i) for i in range(40, 1, -1)])
    assert momentum.rsi(falling, 14) == 0.0
    assert momentum.rsi(pd.Series([5.0] * 30), 14) == 50.0


def test_roc_percent():
    close = pd.Series([100.0] * 10 + [110.0])
    assert momentum.roc(close, 10) == pytest.approx(10.0)


def test_obv_sums_signed_volume():
    close = pd.Series([1.0, 2.0, 1.5, 1.5, 3.0])
    vol = pd.Series([10.0, 20.0, 30.0, 40.0, 50.0])
    assert volume.obv(close, vol) == pytest.approx(20.0 - 30.0 + 50.0)


def test_volume_profile_value_area_contains_poc():
    high = pd.Series([101.0, 102.0, 103.0, 104.0, 105.0] * 6)
    low = high - 2.0
    close = high - 1.0
    vol = pd.Series([10.0, 50.0, 200.0, 50.0, 10.0] * 6)
    vp = volume.volume_profile(high, low, close, vol, bins=10, value_area_pct=0.7)
    assert vp.value_area_low <= vp.point_of_control <= vp.value_area_high
    assert 101.0 <= vp.point_of_control <= 103.0


def test_complexity_defaults_for_short_series():
    short = pd.Series([1.0, 2.0, 3.0])
    assert complexity.fractal_dimension(short) == 1.5
    assert complexity.hurst_exponent(short) == 0.5


def test_bullish_trend_reads_as_bullish_cloud(make_ticks):
    closes = [100.0 * (1.003 ** i) for i in range(120)]
    snap = compute(make_ticks(closes))
    assert snap.ichimoku.signal == CloudSignal.BULLISH
    assert snap.macd.macd > 0
    assert snap.roc > 0
    assert 0 < snap.parabolic_sar < snap.price


def test_rising_prices_with_constant_volume(make_ticks):
    ticks = make_ticks([100.0 + i for i in range(60)], symbol="ETHUSDT")

    obvs = [compute(ticks[:n]).obv for n in range(50, 61)]
    assert all(b > a for a, b in zip(obvs, obvs[1:]))

    snap = compute(ticks)
    assert snap.williams_r > -10.0

    entry = ticks[50]
    position = Position(
        symbol="ETHUSDT",
        entry_price=entry.close,
        entry_time=entry.timestamp,
        quantity=1.0,
        stop_loss=entry.close * 0.98,
        take_profit=entry.close * 1.015,
        trailing_stop=entry.close * 0.98,
        peak_price=entry.close,
        entry_volume=100.0,
        entry_atr=snap.atr,
    )
    decision = ExitStateMachine().evaluate(position, snap, ticks[-1].timestamp + timedelta(seconds=1))
    assert decision.triggered
    assert decision.rule == ExitRule.PROFIT_TARGET
    assert decision.priority == 1
