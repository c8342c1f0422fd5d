"""波动类因子：ATR / ATR 分位 / 布林挤压 / Keltner 触边 / GARCH(1,1)。"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd

from algo.factors.base import ema, last_value


def true_range(high: pd.Series, low: pd.Series, close: pd.Series) -> pd.Series:
    prev_close = close.shift(1)
    ranges = pd.concat(
        [high - low, (high - prev_close).abs(), (low - prev_close).abs()],
        axis=1,
    )
    # 首根没有前收盘价，max 跳过 NaN 后即 high - low
    return ranges.max(axis=1)


def atr_series(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> pd.Series:
    """ATR（SMA 版本）序列。"""
    return true_range(high, low, close).rolling(period, min_periods=period).mean()


def atr(high: pd.Series, low: pd.Series, close: pd.Series, period: int = 14) -> float:
    return max(0.0, last_value(atr_series(high, low, close, period), 0.0))


def atr_percentile(series: pd.Series, lookback: int = 100) -> float:
    """当前 ATR 在最近 lookback 个 ATR 值中的百分位（相等值计半）。"""
    values = series.replace([np.inf, -np.inf], np.nan).dropna().iloc[-lookback:]
    if len(values) < 2:
        return 50.0
    current = float(values.iloc[-1])
    below = int((values < current).sum())
    equal = int((values == current).sum()) - 1
    return (below + 0.5 * equal) / (len(values) - 1) * 100.0


def bollinger_squeeze(
    close: pd.Series,
    period: int = 20,
    num_std: float = 2.0,
    squeeze_ratio: float = 0.8,
) -> bool:
    """带宽低于最近 period 根平均带宽的 squeeze_ratio 倍即视为挤压。"""
    if len(close) < period:
        return False
    sma = close.rolling(period, min_periods=period).mean()
    std = close.rolling(period, min_periods=period).std(ddof=0)
    width = (2.0 * num_std * std / sma.where(sma != 0)).replace([np.inf, -np.inf], np.nan)

    current = last_value(width, float("nan"))
    recent = width.dropna().iloc[-period:]
    if not math.isfinite(current) or recent.empty:
        return False
    avg = float(recent.mean())
    if avg <= 0:
        return False
    return bool(current < squeeze_ratio * avg)


def keltner_touch(
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    period: int = 20,
    multiplier: float = 2.0,
) -> bool:
    """收盘价触及或越过 Keltner 通道（EMA ± multiplier × ATR）。"""
    if len(close) < period:
        return False
    atr_value = atr(high, low, close, period)
    if atr_value <= 0:
        return False
    middle = last_value(ema(close, period), float("nan"))
    if not math.isfinite(middle):
        return False
    price = float(close.iloc[-1])
    upper = middle + multiplier * atr_value
    lower = middle - multiplier * atr_value
    return bool(price >= upper or price <= lower)


def garch_volatility(close: pd.Series, alpha: float = 0.1, beta: float = 0.85) -> float:
    """GARCH(1,1) 条件波动率（单根 K 线收益率尺度）。

    omega 由样本方差反推：omega = var × (1 - alpha - beta)，从样本方差开始递推。
    """
    values = close.astype(float)
    if (values <= 0).any():
        returns = values.pct_change()
    else:
        returns = np.log(values).diff()
    r = returns.replace([np.inf, -np.inf], np.nan).dropna().to_numpy()
    if len(r) < 2:
        return 0.0
    variance = float(np.var(r))
    if not math.isfinite(variance) or variance <= 0:
        return 0.0

    omega = variance * (1.0 - alpha - beta)
    sigma2 = variance
    for x in r:
        sigma2 = omega + alpha * x * x + beta * sigma2
    return math.sqrt(sigma2) if math.isfinite(sigma2) and sigma2 > 0 else 0.0
