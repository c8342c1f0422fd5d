"""Binance 现货 REST 交易所实现。

说明：
- 签名请求：HMAC-SHA256(query string)，X-MBX-APIKEY 头；
- 只有 allow_live=True 时才会真实下单，否则 place_order 直接拒绝；
- exchangeInfo 中的 LOT_SIZE / MIN_NOTIONAL / NOTIONAL 解析为 SymbolFilters 并缓存。
"""

from __future__ import annotations

import hashlib
import hmac
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

import requests

from broker.abstract_broker import Exchange, ExchangeError
from shared.models.models import OrderFill, PriceTick, SymbolFilters
from shared.utils.client_order_id import make_client_order_id
from shared.utils.logging import setup_logger
from shared.utils.precision import format_qty

__all__ = ["BinanceExchange", "ExchangeError", "SymbolFilters", "parse_symbol_filters", "parse_kline"]


def parse_symbol_filters(symbol_info: dict[str, Any]) -> SymbolFilters:
    """exchangeInfo.symbols[i] -> SymbolFilters。"""
    step_size = 0.0
    min_qty = 0.0
    max_qty = 0.0
    min_notional = 0.0
    for f in symbol_info.get("filters", []):
        ftype = f.get("filterType")
        if ftype == "LOT_SIZE":
            step_size = float(f.get("stepSize") or 0.0)
            min_qty = float(f.get("minQty") or 0.0)
            max_qty = float(f.get("maxQty") or 0.0)
        elif ftype in {"MIN_NOTIONAL", "NOTIONAL"}:
            min_notional = max(min_notional, float(f.get("minNotional") or 0.0))
    return SymbolFilters(
        symbol=str(symbol_info.get("symbol") or ""),
        step_size=step_size,
        min_qty=min_qty,
        max_qty=max_qty,
        min_notional=min_notional,
    )


def parse_kline(symbol: str, row: list[Any]) -> PriceTick:
    """REST K 线行 [openTime, open, high, low, close, volume, ...] -> PriceTick。"""
    return PriceTick(
        symbol=symbol,
        open=float(row[1]),
        high=float(row[2]),
        low=float(row[3]),
        close=float(row[4]),
        volume=float(row[5]),
        timestamp=datetime.fromtimestamp(int(row[0]) / 1000, tz=timezone.utc),
    )


def _aggregate_fill(symbol: str, side: str, res: dict[str, Any], requested_qty: float) -> OrderFill:
    """把下单响应中的多笔 fills 按数量加权成一笔成交。"""
    fills = res.get("fills") or []
    total_qty = 0.0
    notional = 0.0
    commission = 0.0
    for f in fills:
        qty = float(f.get("qty") or 0.0)
        total_qty += qty
        notional += qty * float(f.get("price") or 0.0)
        commission += float(f.get("commission") or 0.0)

    if total_qty > 0:
        price = notional / total_qty
    else:
        total_qty = float(res.get("executedQty") or 0.0)
        quote = float(res.get("cummulativeQuoteQty") or 0.0)
        price = quote / total_qty if total_qty > 0 else float(res.get("price") or 0.0)

    return OrderFill(
        symbol=symbol,
        side=side,
        quantity=total_qty if total_qty > 0 else 0.0,
        price=price,
        status=str(res.get("status") or "UNKNOWN").upper(),
        order_id=str(res.get("orderId")) if res.get("orderId") is not None else None,
        commission=commission,
    )


class BinanceExchange(Exchange):
    """对接 Binance 现货 REST API。"""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None = None,
        api_secret: str | None = None,
        allow_live: bool = False,
        quote_asset: str = "USDT",
        recv_window: int = 5000,
        timeout_s: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.api_secret = (api_secret or "").encode()
        self.allow_live = allow_live
        self.quote_asset = quote_asset
        self.recv_window = recv_window
        self.timeout_s = timeout_s
        self.logger = setup_logger("binance-exchange")
        self._filters: dict[str, SymbolFilters] = {}
        self._order_seq = 0

    # ---- HTTP ----
    def _sign(self, params: dict) -> str:
        qs = urlencode(params)
        return hmac.new(self.api_secret, qs.encode(), hashlib.sha256).hexdigest()

    def _send(self, method: str, path: str, params: dict, headers: dict | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = requests.request(method, url, params=params, headers=headers, timeout=self.timeout_s)
        except requests.RequestException as exc:
            raise ExchangeError(f"{method} {path} failed: {exc}") from exc
        if resp.status_code >= 400:
            code = None
            msg = resp.text
            try:
                body = resp.json()
                code = body.get("code")
                msg = body.get("msg") or msg
            except ValueError:
                pass
            raise ExchangeError(f"{method} {path} -> HTTP {resp.status_code}: {msg}", code=code, status=resp.status_code)
        try:
            return resp.json()
        except ValueError as exc:
            raise ExchangeError(f"{method} {path} returned invalid JSON") from exc

    def _request(self, method: str, path: str, params: dict) -> Any:
        """签名请求。"""
        if not self.api_key or not self.api_secret:
            raise ExchangeError("API key/secret not configured")
        params = dict(params)
        params["recvWindow"] = self.recv_window
        params["timestamp"] = int(time.time() * 1000)
        params["signature"] = self._sign(params)
        headers = {"X-MBX-APIKEY": self.api_key}
        return self._send(method, path, params, headers)

    def _public(self, path: str, params: dict) -> Any:
        return self._send("GET", path, params)

    # ---- Exchange ----
    def get_account_info(self) -> dict[str, Any]:
        return self._request("GET", "/api/v3/account", {})

    def get_exchange_info(self, symbols: list[str] | None = None) -> dict[str, Any]:
        params: dict[str, Any] = {}
        if symbols:
            params["symbols"] = "[" + ",".join(f'"{s}"' for s in symbols) + "]"
        data = self._public("/api/v3/exchangeInfo", params)
        for info in data.get("symbols", []):
            filters = parse_symbol_filters(info)
            if filters.symbol:
                self._filters[filters.symbol] = filters
        return data

    def symbol_filters(self, symbol: str) -> SymbolFilters | None:
        if symbol not in self._filters:
            try:
                self.get_exchange_info([symbol])
            except ExchangeError as exc:
                self.logger.warning("Failed to load symbol filters for %s: %s", symbol, exc)
                return None
        return self._filters.get(symbol)

    def get_klines(self, symbol: str, interval: str = "1m", limit: int = 200) -> list[PriceTick]:
        rows = self._public("/api/v3/klines", {"symbol": symbol, "interval": interval, "limit": int(limit)})
        return [parse_kline(symbol, row) for row in rows]

    def place_order(self, symbol: str, side: str, quantity: float, order_type: str = "MARKET") -> OrderFill:
        side = side.upper()
        if not self.allow_live:
            raise ExchangeError("live trading not allowed (exchange.allow_live=false)")
        if quantity <= 0:
            raise ExchangeError(f"invalid order quantity {quantity}")

        filters = self._filters.get(symbol)
        self._order_seq += 1
        params = {
            "symbol": symbol,
            "side": side,
            "type": order_type.upper(),
            "quantity": format_qty(quantity, filters.step_size if filters else None),
            "newClientOrderId": make_client_order_id(
                symbol=symbol,
                side=side,
                action=order_type.upper(),
                intent_ts=datetime.now(timezone.utc),
                seq=self._order_seq,
            ),
            "newOrderRespType": "FULL",
        }
        self.logger.info("Placing %s %s qty=%s type=%s", side, symbol, params["quantity"], params["type"])
        res = self._request("POST", "/api/v3/order", params)
        fill = _aggregate_fill(symbol, side, res, quantity)
        if not fill.filled:
            raise ExchangeError(f"order for {symbol} not filled (status={fill.status})")
        self.logger.info("Order filled: %s %s qty=%s avg=%.8f", side, symbol, fill.quantity, fill.price)
        return fill
