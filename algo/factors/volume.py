"""量能类因子：OBV / VPT / A/D / MFI / 成交量均值 / 成交量分布（Volume Profile）。"""

from __future__ import annotations

import numpy as np
import pandas as pd

from algo.factors.base import safe_div
from algo.factors.snapshot import VolumeProfile


def obv(close: pd.Series, volume: pd.Series) -> float:
    """能量潮：按收盘价变动方向累加成交量（首根不计）。"""
    direction = np.sign(close.astype(float).diff()).fillna(0.0)
    return float((direction * volume).sum())


def vpt(close: pd.Series, volume: pd.Series) -> float:
    """量价趋势；前收盘价为零的 K 线不计。"""
    pct = close.astype(float).pct_change().replace([np.inf, -np.inf], np.nan).fillna(0.0)
    return float((volume * pct).sum())


def ad_line(high: pd.Series, low: pd.Series, close: pd.Series, volume: pd.Series) -> float:
    """累积/派发线；high == low 的 K 线跳过。"""
    rng = high - low
    clv = ((close - low) - (high - close)) / rng.where(rng > 0)
    return float((clv.fillna(0.0) * volume).sum())


def mfi(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    volume: pd.Series,
    period: int = 14,
) -> float:
    """资金流量指数。无负向资金流时为 100，完全无资金流时为 50。"""
    if len(close) < period + 1:
        return 50.0
    tp = (high + low + close) / 3.0
    flow = tp * volume
    change = tp.diff()
    recent_flow = flow.iloc[-period:]
    recent_change = change.iloc[-period:]

    positive = float(recent_flow[recent_change > 0].sum())
    negative = float(recent_flow[recent_change < 0].sum())
    if negative <= 0:
        return 100.0 if positive > 0 else 50.0
    ratio = positive / negative
    return 100.0 - 100.0 / (1.0 + ratio)


def volume_stats(volume: pd.Series, period: int = 20) -> tuple[float, float, float]:
    """返回 (当前成交量, 成交量 SMA, 当前/SMA)；SMA 为零时比值为 1。"""
    if volume.empty:
        return 0.0, 0.0, 1.0
    current = float(volume.iloc[-1])
    sma = float(volume.iloc[-period:].mean())
    return current, sma, safe_div(current, sma, 1.0)


def volume_profile(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    volume: pd.Series,
    bins: int = 24,
    value_area_pct: float = 0.70,
) -> VolumeProfile:
    """按典型价格分桶的成交量分布。

    Parameters
    ----------
    bins:
        价格区间 [min(low), max(high)] 等分的桶数。
    value_area_pct:
        价值区覆盖的成交量比例；从 POC 桶开始向成交量更大的相邻桶扩展。

    价格区间为零或总成交量为零时，POC 与价值区上下沿都取最新收盘价。
    """
    if close.empty:
        return VolumeProfile()
    price = float(close.iloc[-1])
    lo = float(low.min())
    hi = float(high.max())
    vol = volume.to_numpy(dtype=float)
    total = float(vol.sum())
    if not hi > lo or not total > 0:
        return VolumeProfile(point_of_control=price, value_area_high=price, value_area_low=price)

    typical = ((high + low + close) / 3.0).to_numpy(dtype=float)
    edges = np.linspace(lo, hi, bins + 1)
    idx = np.clip(np.searchsorted(edges, typical, side="right") - 1, 0, bins - 1)
    hist = np.bincount(idx, weights=vol, minlength=bins)

    poc = int(np.argmax(hist))
    lo_i = hi_i = poc
    covered = float(hist[poc])
    target = value_area_pct * total
    while covered < target and (lo_i > 0 or hi_i < bins - 1):
        below = hist[lo_i - 1] if lo_i > 0 else -1.0
        above = hist[hi_i + 1] if hi_i < bins - 1 else -1.0
        if above >= below:
            hi_i += 1
            covered += float(hist[hi_i])
        else:
            lo_i -= 1
            covered += float(hist[lo_i])

    return VolumeProfile(
        point_of_control=float((edges[poc] + edges[poc + 1]) / 2.0),
        value_area_high=float(edges[hi_i + 1]),
        value_area_low=float(edges[lo_i]),
    )
