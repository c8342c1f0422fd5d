"""核心数据结构：PriceTick/Position/Coin/TradeRecord/OrderFill。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum


@dataclass(frozen=True)
class PriceTick:
    """单个 OHLCV 行情点（K 线更新）。

    timestamp 为该 K 线的开盘时间；同一根 K 线的多次推送共享同一个 timestamp。
    """

    symbol: str
    open: float
    high: float
    low: float
    close: float
    volume: float
    timestamp: datetime

    @property
    def price(self) -> float:
        return self.close


class VolatilityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass
class Coin:
    """每日交易币种。"""

    symbol: str
    volatility_tier: VolatilityTier = VolatilityTier.MEDIUM
    is_active: bool = True
    added_date: date | None = None


@dataclass
class Position:
    """持仓。

    仅由 PositionLedger 创建与修改：
    - 跟踪止损/峰值价格随行情上移；
    - 分批止盈只减少 quantity；
    - 全部平仓后移除。
    """

    symbol: str
    entry_price: float
    entry_time: datetime
    quantity: float
    stop_loss: float
    take_profit: float
    trailing_stop: float
    peak_price: float
    entry_volume: float
    entry_atr: float
    initial_quantity: float = 0.0
    scale_out_level: int = 0

    def __post_init__(self):
        if not self.initial_quantity:
            self.initial_quantity = self.quantity

    @property
    def risk(self) -> float:
        """单仓风险金额：|entry - stop| * qty。"""
        return abs(self.entry_price - self.stop_loss) * self.quantity

    def gross_return(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        return (price - self.entry_price) / self.entry_price


@dataclass(frozen=True)
class SymbolFilters:
    """交易所下发的数量/名义规则（LOT_SIZE / MIN_NOTIONAL）。"""

    symbol: str
    step_size: float = 0.001
    min_qty: float = 0.0
    max_qty: float = 0.0  # 0 表示不限制
    min_notional: float = 0.0


@dataclass(frozen=True)
class OrderFill:
    """交易所确认的成交（多笔 fills 已按数量加权聚合）。"""

    symbol: str
    side: str  # "BUY" / "SELL"
    quantity: float
    price: float
    status: str = "FILLED"
    order_id: str | None = None
    commission: float = 0.0

    @property
    def filled(self) -> bool:
        return self.status.upper() in {"FILLED", "PARTIALLY_FILLED"} and self.quantity > 0


@dataclass(frozen=True)
class TradeRecord:
    """平仓/减仓记录，供风控与绩效统计使用。"""

    symbol: str
    side: str
    quantity: float
    price: float
    timestamp: datetime
    profit: float  # 扣除往返手续费后的收益率
    pnl: float = 0.0  # 计价货币盈亏
    reason: str = ""
