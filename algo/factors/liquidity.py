"""资金流与流动性代理（仅基于 OHLCV，没有真实订单簿）。"""

from __future__ import annotations

import numpy as np
import pandas as pd

from algo.factors.base import safe_div
from algo.factors.snapshot import Liquidity, SmartMoney


def smart_money(
    open_: pd.Series,
    high: pd.Series,
    low: pd.Series,
    close: pd.Series,
    volume: pd.Series,
    lookback: int = 10,
) -> SmartMoney:
    """CVD 取整个窗口按 K 线方向带符号的成交量之和。

    最近 lookback 根按收盘价在 K 线区间中的位置拆分主动买/卖量：
    buy = volume × (close - low) / (high - low)，零区间按 0.5 计。
    """
    if close.empty:
        return SmartMoney()
    direction = np.sign(close - open_)
    cvd = float((direction * volume).sum())

    rng = (high - low).iloc[-lookback:]
    position = ((close - low).iloc[-lookback:] / rng.where(rng > 0)).fillna(0.5).clip(0.0, 1.0)
    recent_volume = volume.iloc[-lookback:]
    buy = float((recent_volume * position).sum())
    total = float(recent_volume.sum())
    sell = total - buy
    delta = buy - sell

    if sell > 0:
        imbalance = buy / sell
    else:
        imbalance = 1.0 if buy <= 0 else 10.0
    return SmartMoney(
        cvd=cvd,
        delta=delta,
        order_flow=max(-1.0, min(1.0, safe_div(delta, total, 0.0))),
        imbalance_ratio=float(imbalance),
    )


def liquidity(atr_value: float, price: float, volume_sma: float) -> Liquidity:
    depth = volume_sma * price if price > 0 else 0.0
    return Liquidity(
        spread=safe_div(atr_value, price, 0.0),
        depth=depth,
        efficiency=safe_div(atr_value, depth, 1.0),
    )
