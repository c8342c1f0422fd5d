"""趋势类因子：MACD / Parabolic SAR / Ichimoku。

递推型指标（EMA、SAR）每次都从窗口首根 K 线重放，不保留跨调用状态。
"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd

from algo.factors.base import ema, last_value
from algo.factors.snapshot import MACD, CloudSignal, IchimokuCloud


def macd(close: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> MACD:
    if len(close) < 2:
        return MACD()
    macd_line = ema(close, fast) - ema(close, slow)
    signal_line = ema(macd_line, signal)
    m = last_value(macd_line, 0.0)
    s = last_value(signal_line, 0.0)
    return MACD(macd=m, signal=s, histogram=m - s)


def parabolic_sar(
    high: pd.Series,
    low: pd.Series,
    step: float = 0.02,
    max_step: float = 0.2,
) -> float:
    """抛物线 SAR（Wilder）。窗口少于 2 根时返回 0。"""
    h = high.to_numpy(dtype=float)
    lo = low.to_numpy(dtype=float)
    n = len(h)
    if n < 2:
        return 0.0

    uptrend = h[1] >= h[0]
    sar = lo[0] if uptrend else h[0]
    ep = h[0] if uptrend else lo[0]
    af = step

    for i in range(1, n):
        sar = sar + af * (ep - sar)
        if uptrend:
            sar = min(sar, lo[i - 1], lo[i - 2] if i >= 2 else lo[i - 1])
            if lo[i] < sar:
                uptrend = False
                sar = ep
                ep = lo[i]
                af = step
            elif h[i] > ep:
                ep = h[i]
                af = min(af + step, max_step)
        else:
            sar = max(sar, h[i - 1], h[i - 2] if i >= 2 else h[i - 1])
            if h[i] > sar:
                uptrend = True
                sar = ep
                ep = h[i]
                af = step
            elif lo[i] < ep:
                ep = lo[i]
                af = min(af + step, max_step)

    return float(sar) if math.isfinite(sar) else 0.0


def _midpoint(high: pd.Series, low: pd.Series, period: int) -> pd.Series:
    # 窗口短于周期时按已有数据计算
    return (high.rolling(period, min_periods=1).max() + low.rolling(period, min_periods=1).min()) / 2.0


def ichimoku(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    tenkan_period: int = 9,
    kijun_period: int = 26,
    senkou_b_period: int = 52,
) -> IchimokuCloud:
    """一目均衡表。

    窗口长度 >= senkou_b_period + kijun_period 时使用位移后的云层（当前 K 线对应
    kijun_period 根之前计算的先行带），否则使用当前值。
    """
    n = len(close)
    if n == 0:
        return IchimokuCloud()

    tenkan = _midpoint(high, low, tenkan_period)
    kijun = _midpoint(high, low, kijun_period)
    senkou_a = (tenkan + kijun) / 2.0
    senkou_b = _midpoint(high, low, senkou_b_period)

    idx = -1 - kijun_period if n >= senkou_b_period + kijun_period else -1
    span_a = float(senkou_a.iloc[idx])
    span_b = float(senkou_b.iloc[idx])
    t = float(tenkan.iloc[-1])
    k = float(kijun.iloc[-1])
    price = float(close.iloc[-1])

    top = max(span_a, span_b)
    bottom = min(span_a, span_b)
    if price > top and t > k:
        signal = CloudSignal.BULLISH
    elif price < bottom and t < k:
        signal = CloudSignal.BEARISH
    else:
        signal = CloudSignal.NEUTRAL

    values = np.array([t, k, span_a, span_b, price], dtype=float)
    if not np.isfinite(values).all():
        return IchimokuCloud()
    return IchimokuCloud(
        tenkan=t,
        kijun=k,
        senkou_a=span_a,
        senkou_b=span_b,
        chikou=price,
        signal=signal,
    )
