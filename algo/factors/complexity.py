"""序列复杂度：分形维数（盒计数）与 Hurst 指数（R/S）。"""

from __future__ import annotations

import math

import numpy as np
import pandas as pd

from algo.factors.base import clamp


def fractal_dimension(close: pd.Series) -> float:
    """盒计数分形维数，取值 [1, 2]；退化输入为 1.5。

    收盘价先归一化到单位正方形，逐级减半盒子边长，对 log(1/ε)–log(N) 做线性回归。
    """
    y = close.to_numpy(dtype=float)
    n = len(y)
    if n < 4 or not np.isfinite(y).all():
        return 1.5
    rng = float(y.max() - y.min())
    if rng <= 0:
        return 1.5

    norm = (y - y.min()) / rng
    x = np.linspace(0.0, 1.0, n)
    max_level = max(2, int(math.log2(n - 1)))

    log_inv_eps: list[float] = []
    log_counts: list[float] = []
    for level in range(1, max_level + 1):
        boxes_per_side = 2**level
        eps = 1.0 / boxes_per_side
        cols = np.minimum((x / eps).astype(int), boxes_per_side - 1)
        rows = np.minimum((norm / eps).astype(int), boxes_per_side - 1)
        frame = pd.DataFrame({"col": cols, "row": rows})
        grouped = frame.groupby("col")["row"]
        count = float((grouped.max() - grouped.min() + 1).sum())
        log_inv_eps.append(math.log(boxes_per_side))
        log_counts.append(math.log(count))

    if len(log_inv_eps) < 2:
        return 1.5
    slope = float(np.polyfit(log_inv_eps, log_counts, 1)[0])
    if not math.isfinite(slope):
        return 1.5
    return clamp(slope, 1.0, 2.0)


def hurst_exponent(close: pd.Series, min_chunk: int = 8) -> float:
    """对数收益率的 R/S Hurst 指数，取值 [0, 1]；退化输入为 0.5。"""
    y = close.to_numpy(dtype=float)
    if len(y) < 2 * min_chunk + 1 or not np.isfinite(y).all():
        return 0.5
    if (y > 0).all():
        r = np.diff(np.log(y))
    else:
        r = np.diff(y)
    n = len(r)

    sizes: list[int] = []
    size = min_chunk
    while size <= n // 2:
        sizes.append(size)
        size *= 2

    log_n: list[float] = []
    log_rs: list[float] = []
    for s in sizes:
        rs_values: list[float] = []
        for i in range(n // s):
            seg = r[i * s:(i + 1) * s]
            dev = np.cumsum(seg - seg.mean())
            spread = float(dev.max() - dev.min())
            std = float(seg.std())
            if std > 0:
                rs_values.append(spread / std)
        if rs_values:
            mean_rs = float(np.mean(rs_values))
            if mean_rs > 0:
                log_n.append(math.log(s))
                log_rs.append(math.log(mean_rs))

    if len(log_n) < 2:
        return 0.5
    slope = float(np.polyfit(log_n, log_rs, 1)[0])
    if not math.isfinite(slope):
        return 0.5
    return clamp(slope, 0.0, 1.0)
