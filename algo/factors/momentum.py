"""动量类因子：RSI / Williams %R / Stochastic / CCI / ROC / RVI / Ultimate Oscillator。

所有函数输入为窗口的 pandas Series（同一索引），返回最新一根 K 线上的标量值。
"""

from __future__ import annotations

import numpy as np
import pandas as pd

from algo.factors.base import clamp, last_value, safe_div


def rsi(close: pd.Series, period: int = 14) -> float:
    """相对强弱指数（SMA 版本）。

    没有下跌时返回 100；既无上涨也无下跌（价格不变）时返回 50。
    """
    if len(close) < period + 1:
        return 50.0
    delta = close.astype(float).diff()
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)

    avg_gain = last_value(gain.rolling(period, min_periods=period).mean(), 0.0)
    avg_loss = last_value(loss.rolling(period, min_periods=period).mean(), 0.0)
    if avg_loss <= 0:
        return 100.0 if avg_gain > 0 else 50.0
    rs = avg_gain / avg_loss
    return clamp(100.0 - 100.0 / (1.0 + rs), 0.0, 100.0)


def williams_r(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> float:
    """Williams %R，取值 [-100, 0]；区间为零时为 -50。"""
    if len(close) < period:
        return -50.0
    hh = float(high.iloc[-period:].max())
    ll = float(low.iloc[-period:].min())
    rng = hh - ll
    if rng <= 0:
        return -50.0
    return clamp((hh - float(close.iloc[-1])) / rng * -100.0, -100.0, 0.0)


def stochastic(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    k_period: int = 14,
    d_period: int = 3,
) -> tuple[float, float]:
    """随机指标 (%K, %D)。%D 为 %K 序列最近 d_period 个有效值的 SMA。"""
    if len(close) < k_period:
        return 50.0, 50.0
    hh = high.rolling(k_period, min_periods=k_period).max()
    ll = low.rolling(k_period, min_periods=k_period).min()
    rng = hh - ll
    k_series = ((close - ll) / rng.where(rng > 0) * 100.0).clip(0.0, 100.0)

    k = last_value(k_series, 50.0)
    if not rng.iloc[-1] > 0:
        return 50.0, 50.0
    valid = k_series.dropna()
    if len(valid) < d_period:
        return k, k
    d = float(valid.iloc[-d_period:].mean())
    return k, d


def cci(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 20) -> float:
    """商品通道指数（典型价格）；平均偏差为零时为 0。"""
    if len(close) < period:
        return 0.0
    tp = ((high + low + close) / 3.0).iloc[-period:]
    sma = float(tp.mean())
    mean_dev = float((tp - sma).abs().mean())
    return safe_div(float(tp.iloc[-1]) - sma, 0.015 * mean_dev, 0.0)


def roc(close: pd.Series, period: int = 10) -> float:
    """变动率（百分比）。"""
    if len(close) < period + 1:
        return 0.0
    past = float(close.iloc[-1 - period])
    return safe_div(float(close.iloc[-1]) - past, past, 0.0) * 100.0


def _symmetric_weighted(series: pd.Series) -> pd.Series:
    # 权重 (1, 2, 2, 1) / 6，最新值在前
    return (series + 2.0 * series.shift(1) + 2.0 * series.shift(2) + series.shift(3)) / 6.0


def rvi(
    open_: pd.Series,
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 10,
) -> tuple[float, float]:
    """相对活力指数 (RVI, signal)；区间为零时为 (0, 0)。"""
    if len(close) < period + 3:
        return 0.0, 0.0
    num = _symmetric_weighted(close - open_).rolling(period, min_periods=period).sum()
    den = _symmetric_weighted(high - low).rolling(period, min_periods=period).sum()
    rvi_series = (num / den.where(den != 0)).replace([np.inf, -np.inf], np.nan)

    value = last_value(rvi_series, 0.0)
    signal = last_value(_symmetric_weighted(rvi_series.fillna(0.0)), value)
    return value, signal


def ultimate_oscillator(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    periods: tuple[int, int, int] = (7, 14, 28),
) -> float:
    """终极震荡指标；所有周期的真实波幅都为零时为 50。"""
    if len(close) < max(periods) + 1:
        return 50.0
    prev_close = close.shift(1)
    low_min = pd.concat([low, prev_close], axis=1).min(axis=1)
    high_max = pd.concat([high, prev_close], axis=1).max(axis=1)
    buying_pressure = close - low_min
    true_range = high_max - low_min

    averages: list[float] = []
    for n in periods:
        tr_sum = float(true_range.iloc[-n:].sum())
        bp_sum = float(buying_pressure.iloc[-n:].sum())
        averages.append(safe_div(bp_sum, tr_sum, 0.5))
    if float(true_range.iloc[-max(periods):].sum()) <= 0:
        return 50.0
    a_short, a_mid, a_long = averages
    return clamp(100.0 * (4.0 * a_short + 2.0 * a_mid + a_long) / 7.0, 0.0, 100.0)
