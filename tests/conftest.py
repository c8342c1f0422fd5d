import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# 确保项目根目录在 sys.path，便于测试内直接以顶层包名导入
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from shared.models.models import PriceTick  # noqa: E402

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def tick(symbol: str, close: float, i: int = 0, *, volume: float = 100.0, spread: float = 0.002) -> PriceTick:
    return PriceTick(
        symbol=symbol,
        open=close,
        high=close * (1 + spread),
        low=close * (1 - spread),
        close=close,
        volume=volume,
        timestamp=T0 + timedelta(minutes=i),
    )


@pytest.fixture
def make_ticks():
    """closes -> 按分钟递增的 PriceTick 列表。"""

    def _make(closes, symbol: str = "BTCUSDT", volume: float = 100.0, start: int = 0) -> list[PriceTick]:
        return [tick(symbol, float(c), start + i, volume=volume) for i, c in enumerate(closes)]

    return _make
