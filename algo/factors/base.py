"""因子层公共约定与小工具。

约定：因子层是“纯计算”，输入为 pandas Series（窗口的 OHLCV 列），输出标量。
任何除零/退化输入都返回调用方给定的中性值，而不是 NaN/Inf。
"""

from __future__ import annotations

import math

import pandas as pd


def last_value(series: pd.Series, default: float) -> float:
    """取序列最后一个有限值；为空或非有限时返回 default。"""
    if series is None or series.empty:
        return float(default)
    v = series.iloc[-1]
    try:
        v = float(v)
    except (TypeError, ValueError):
        return float(default)
    return v if math.isfinite(v) else float(default)


def safe_div(num: float, den: float, default: float = 0.0) -> float:
    if den == 0 or not math.isfinite(den) or not math.isfinite(num):
        return float(default)
    out = num / den
    return float(out) if math.isfinite(out) else float(default)


def clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(value)))


def ema(series: pd.Series, span: int) -> pd.Series:
    """递推 EMA（adjust=False），递推过程每次都从窗口首值重放。"""
    if span <= 0:
        raise ValueError("EMA span must be > 0")
    return series.astype(float).ewm(span=span, adjust=False).mean()
