"""按币种维护的定长价格窗口（ring buffer）。

窗口只保存原始 PriceTick；所有指标都从窗口内容重新计算，
不在这里维护任何增量累加器，便于回放与测试。
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Iterator

import pandas as pd

from shared.models.models import PriceTick

OHLCV_COLUMNS = ["open", "high", "low", "close", "volume"]


class PriceWindow:
    """定长、按时间戳严格递增的 tick 序列。

    - 新 tick 时间戳更大：追加，超出容量时淘汰最旧的一条；
    - 时间戳相同：视为同一根 K 线的更新，替换最后一条；
    - 时间戳更早：拒绝（返回 False）。
    """

    def __init__(self, symbol: str, capacity: int = 200):
        if capacity <= 0:
            raise ValueError("PriceWindow capacity must be > 0")
        self.symbol = symbol
        self.capacity = capacity
        self._ticks: deque[PriceTick] = deque(maxlen=capacity)

    def append(self, tick: PriceTick) -> bool:
        if tick.symbol != self.symbol:
            raise ValueError(f"tick for {tick.symbol} appended to window of {self.symbol}")
        if self._ticks:
            last_ts = self._ticks[-1].timestamp
            if tick.timestamp < last_ts:
                return False
            if tick.timestamp == last_ts:
                self._ticks[-1] = tick
                return True
        self._ticks.append(tick)
        return True

    def extend(self, ticks: Iterable[PriceTick]) -> int:
        """批量追加（预热用），返回被接受的条数。"""
        return sum(1 for t in ticks if self.append(t))

    def clear(self) -> None:
        self._ticks.clear()

    @property
    def last(self) -> PriceTick | None:
        return self._ticks[-1] if self._ticks else None

    def snapshot(self) -> tuple[PriceTick, ...]:
        """当前窗口内容的不可变拷贝（交给指标引擎）。"""
        return tuple(self._ticks)

    def __len__(self) -> int:
        return len(self._ticks)

    def __iter__(self) -> Iterator[PriceTick]:
        return iter(tuple(self._ticks))


def window_to_frame(window: Iterable[PriceTick]) -> pd.DataFrame:
    """tick 序列 -> OHLCV DataFrame（float 列，按插入顺序的整数索引）。"""
    rows = [(t.open, t.high, t.low, t.close, t.volume) for t in window]
    df = pd.DataFrame(rows, columns=OHLCV_COLUMNS, dtype=float)
    return df.reset_index(drop=True)
