"""交易所协作方的抽象接口与运行模式定义。

实现均为阻塞调用（requests），由编排器通过 `run_in_executor` 在锁外调用。
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Any

from shared.models.models import OrderFill, PriceTick, SymbolFilters


class BrokerMode(Enum):
    """运行模式枚举。"""

    DRY_RUN = "dry-run"
    PAPER = "paper"
    LIVE = "live"


class ExchangeError(RuntimeError):
    """交易所调用失败（HTTP 错误、API 拒绝、余额不足等）。"""

    def __init__(self, message: str, *, code: int | None = None, status: int | None = None):
        super().__init__(message)
        self.code = code
        self.status = status


class Exchange(ABC):
    """交易执行与行情查询抽象层。"""

    quote_asset: str = "USDT"

    @abstractmethod
    def get_account_info(self) -> dict[str, Any]:
        """账户信息，至少包含 balances: [{asset, free, locked}]。"""

    def get_balance(self) -> float:
        """计价资产的可用余额。"""
        account = self.get_account_info()
        for bal in account.get("balances", []):
            if bal.get("asset") == self.quote_asset:
                return float(bal.get("free") or 0.0)
        return 0.0

    @abstractmethod
    def get_exchange_info(self, symbols: list[str] | None = None) -> dict[str, Any]:
        """交易规则（symbols[].filters）。"""

    @abstractmethod
    def place_order(self, symbol: str, side: str, quantity: float, order_type: str = "MARKET") -> OrderFill:
        """下单并返回聚合后的成交；失败时抛出 ExchangeError。"""

    @abstractmethod
    def get_klines(self, symbol: str, interval: str = "1m", limit: int = 200) -> list[PriceTick]:
        """历史 K 线（按时间升序）。"""

    def symbol_filters(self, symbol: str) -> SymbolFilters | None:
        """单个交易对的数量/名义规则；未知时返回 None。"""
        return None

    def observe_price(self, symbol: str, price: float) -> None:
        """行情推送到达时的回调（模拟成交需要）；真实交易所忽略。"""
