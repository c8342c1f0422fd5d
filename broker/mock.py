"""本地模拟交易所（dry-run / paper / 测试）。

不触网下单：按最近一次看到的价格立即成交，在本地维护余额。
K 线与交易规则可委托给真实的 `data_source`（paper 模式），否则使用本地注入的数据。
"""

from __future__ import annotations

from typing import Any

from broker.abstract_broker import Exchange, ExchangeError
from shared.models.models import OrderFill, PriceTick, SymbolFilters
from shared.utils.logging import setup_logger


class PaperExchange(Exchange):
    """模拟交易所。

    Parameters
    ----------
    balance:
        初始计价资产余额。
    fee_rate:
        单边手续费率，成交时从计价资产中扣除。
    data_source:
        可选的只读行情源（如 BinanceExchange），用于预热 K 线与交易规则。
    """

    def __init__(
        self,
        balance: float = 200.0,
        *,
        quote_asset: str = "USDT",
        fee_rate: float = 0.001,
        data_source: Exchange | None = None,
        filters: dict[str, SymbolFilters] | None = None,
    ):
        self.quote_asset = quote_asset
        self.fee_rate = fee_rate
        self.data_source = data_source
        self.logger = setup_logger("paper-exchange")
        self.balances: dict[str, float] = {quote_asset: float(balance)}
        self.last_prices: dict[str, float] = {}
        self.orders: list[OrderFill] = []
        self._klines: dict[str, list[PriceTick]] = {}
        self._filters: dict[str, SymbolFilters] = dict(filters or {})
        self._order_seq = 0

    # ---- 本地注入 ----
    def observe_price(self, symbol: str, price: float) -> None:
        if price > 0:
            self.last_prices[symbol] = float(price)

    def seed_klines(self, symbol: str, ticks: list[PriceTick]) -> None:
        self._klines[symbol] = list(ticks)
        if ticks:
            self.observe_price(symbol, ticks[-1].close)

    def set_filters(self, filters: SymbolFilters) -> None:
        self._filters[filters.symbol] = filters

    def _base_asset(self, symbol: str) -> str:
        if symbol.endswith(self.quote_asset):
            return symbol[: -len(self.quote_asset)]
        return symbol

    # ---- Exchange ----
    def get_account_info(self) -> dict[str, Any]:
        return {
            "balances": [
                {"asset": asset, "free": f"{amount:.8f}", "locked": "0"}
                for asset, amount in self.balances.items()
            ]
        }

    def get_balance(self) -> float:
        return self.balances.get(self.quote_asset, 0.0)

    def get_exchange_info(self, symbols: list[str] | None = None) -> dict[str, Any]:
        if self.data_source is not None:
            return self.data_source.get_exchange_info(symbols)
        wanted = symbols or list(self._filters)
        out = []
        for sym in wanted:
            f = self._filters.get(sym)
            if f is None:
                continue
            out.append(
                {
                    "symbol": sym,
                    "filters": [
                        {"filterType": "LOT_SIZE", "stepSize": str(f.step_size), "minQty": str(f.min_qty), "maxQty": str(f.max_qty)},
                        {"filterType": "NOTIONAL", "minNotional": str(f.min_notional)},
                    ],
                }
            )
        return {"symbols": out}

    def symbol_filters(self, symbol: str) -> SymbolFilters | None:
        if symbol in self._filters:
            return self._filters[symbol]
        if self.data_source is not None:
            return self.data_source.symbol_filters(symbol)
        return None

    def get_klines(self, symbol: str, interval: str = "1m", limit: int = 200) -> list[PriceTick]:
        if self.data_source is not None:
            ticks = self.data_source.get_klines(symbol, interval, limit)
        else:
            ticks = self._klines.get(symbol, [])[-limit:] if limit > 0 else []
        if ticks:
            self.observe_price(symbol, ticks[-1].close)
        return list(ticks)

    def place_order(self, symbol: str, side: str, quantity: float, order_type: str = "MARKET") -> OrderFill:
        side = side.upper()
        price = self.last_prices.get(symbol)
        if price is None or price <= 0:
            raise ExchangeError(f"no price seen for {symbol}")
        if quantity <= 0:
            raise ExchangeError(f"invalid order quantity {quantity}")

        base = self._base_asset(symbol)
        notional = quantity * price
        fee = notional * self.fee_rate
        if side == "BUY":
            cash = self.balances.get(self.quote_asset, 0.0)
            if notional + fee > cash + 1e-9:
                raise ExchangeError(f"insufficient {self.quote_asset} balance: need {notional + fee:.4f}, have {cash:.4f}")
            self.balances[self.quote_asset] = cash - notional - fee
            self.balances[base] = self.balances.get(base, 0.0) + quantity
        elif side == "SELL":
            held = self.balances.get(base, 0.0)
            if quantity > held + 1e-12:
                raise ExchangeError(f"insufficient {base} balance: need {quantity}, have {held}")
            self.balances[base] = max(0.0, held - quantity)
            self.balances[self.quote_asset] = self.balances.get(self.quote_asset, 0.0) + notional - fee
        else:
            raise ExchangeError(f"unsupported side: {side}")

        self._order_seq += 1
        fill = OrderFill(
            symbol=symbol,
            side=side,
            quantity=quantity,
            price=price,
            status="FILLED",
            order_id=f"paper-{self._order_seq}",
            commission=fee,
        )
        self.orders.append(fill)
        self.logger.info("[PAPER ORDER] %s %s qty=%s price=%.8f", side, symbol, quantity, price)
        return fill
