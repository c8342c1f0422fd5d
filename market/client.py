"""行情客户端（实时 Binance K 线流 / 本地假数据）。

订阅接口是异步的：`subscribe(symbol, on_tick)` 之后，客户端在自己的任务里
把 PriceTick 推给回调；断线重连与退避由客户端负责，编排器只在长时间静默时重新订阅。
"""

from __future__ import annotations

import asyncio
import inspect
import json
import math
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import numpy as np
import websockets

from shared.models.models import PriceTick
from shared.utils.logging import setup_logger

TickCallback = Callable[[PriceTick], Union[Awaitable[None], None]]


async def _dispatch(callback: TickCallback, tick: PriceTick, logger) -> None:
    try:
        result = callback(tick)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("tick callback failed for %s", tick.symbol)


class MarketClient(ABC):
    """行情客户端抽象基类。"""

    @abstractmethod
    async def subscribe(self, symbol: str, on_tick: TickCallback) -> None:
        """订阅（重复订阅同一 symbol 时替换回调并重新建立订阅）。"""

    @abstractmethod
    async def unsubscribe(self, symbol: str) -> None:
        ...

    @abstractmethod
    def is_connected(self) -> bool:
        ...

    @abstractmethod
    async def close(self) -> None:
        """取消所有订阅并释放连接。"""


def parse_kline_event(data: dict[str, Any]) -> Optional[PriceTick]:
    """K 线推送 {"e": "kline", "s": ..., "k": {...}} -> PriceTick；其他消息返回 None。"""
    if data.get("e") != "kline" or "k" not in data:
        return None
    k = data["k"]
    return PriceTick(
        symbol=str(data.get("s") or k.get("s")),
        open=float(k["o"]),
        high=float(k["h"]),
        low=float(k["l"]),
        close=float(k["c"]),
        volume=float(k["v"]),
        timestamp=datetime.fromtimestamp(int(k["t"]) / 1000, tz=timezone.utc),
    )


class BinanceMarketClient(MarketClient):
    """Binance 组合流（<symbol>@kline_<interval>）客户端，单连接承载所有订阅。"""

    def __init__(
        self,
        ws_base: str | None = "wss://stream.binance.com:9443",
        interval: str = "1m",
        logger=None,
        max_backoff_s: float = 30.0,
    ):
        self.ws_base = (ws_base or "wss://stream.binance.com:9443").rstrip("/")
        self.interval = interval
        self.logger = logger or setup_logger("market-binance")
        self.max_backoff_s = max_backoff_s
        self._callbacks: dict[str, TickCallback] = {}
        self._ws = None
        self._task: asyncio.Task | None = None
        self._changed = asyncio.Event()
        self._connected = False
        self._msg_id = 0

    def _stream(self, symbol: str) -> str:
        return f"{symbol.lower()}@kline_{self.interval}"

    def _url(self) -> str:
        streams = "/".join(self._stream(s) for s in sorted(self._callbacks))
        return f"{self.ws_base}/stream?streams={streams}"

    def is_connected(self) -> bool:
        return self._connected

    async def _send_method(self, method: str, symbols: Iterable[str]) -> None:
        if self._ws is None or not self._connected:
            return
        self._msg_id += 1
        payload = {"method": method, "params": [self._stream(s) for s in symbols], "id": self._msg_id}
        try:
            await self._ws.send(json.dumps(payload))
        except Exception as exc:
            self.logger.warning("WS %s failed: %s", method, exc)

    async def subscribe(self, symbol: str, on_tick: TickCallback) -> None:
        already = symbol in self._callbacks
        self._callbacks[symbol] = on_tick
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="market-binance-ws")
            return
        if already:
            await self._send_method("UNSUBSCRIBE", [symbol])
        await self._send_method("SUBSCRIBE", [symbol])
        self._changed.set()

    async def unsubscribe(self, symbol: str) -> None:
        if self._callbacks.pop(symbol, None) is None:
            return
        await self._send_method("UNSUBSCRIBE", [symbol])

    async def close(self) -> None:
        self._callbacks.clear()
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._connected = False
        self._ws = None

    async def _handle_message(self, raw: str | bytes) -> None:
        try:
            msg = json.loads(raw)
        except ValueError:
            self.logger.warning("WS non-JSON message dropped")
            return
        data = msg.get("data", msg) if isinstance(msg, dict) else None
        if not isinstance(data, dict):
            return
        try:
            tick = parse_kline_event(data)
        except (KeyError, TypeError, ValueError) as exc:
            self.logger.warning("WS malformed kline dropped: %s", exc)
            return
        if tick is None:
            return
        callback = self._callbacks.get(tick.symbol)
        if callback is not None:
            await _dispatch(callback, tick, self.logger)

    async def _run(self) -> None:
        backoff = 1.0
        while True:
            if not self._callbacks:
                self._changed.clear()
                await self._changed.wait()
                continue
            url = self._url()
            try:
                async with websockets.connect(url, ping_interval=20, ping_timeout=20) as ws:
                    self._ws = ws
                    self._connected = True
                    backoff = 1.0
                    self.logger.info("Connected to Binance WS: %s", url)
                    async for raw in ws:
                        await self._handle_message(raw)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.logger.warning("WS error %s, reconnecting in %.0fs...", exc, backoff)
            finally:
                self._connected = False
                self._ws = None
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, self.max_backoff_s)


class FakeMarketClient(MarketClient):
    """本地假数据源，便于离线开发/测试。

    - 给定 `ticks[symbol]` 时按顺序回放；
    - 否则生成确定性的随机游走 K 线（每根间隔 1 分钟，固定随机种子）。
    """

    def __init__(
        self,
        ticks: dict[str, list[PriceTick]] | None = None,
        *,
        interval_s: float = 1.0,
        start_price: float = 100.0,
        volatility: float = 0.004,
        seed: int = 7,
        start_time: datetime | None = None,
        logger=None,
    ):
        self.logger = logger or setup_logger("market-fake")
        self.replay = {k: list(v) for k, v in (ticks or {}).items()}
        self.interval_s = interval_s
        self.start_price = start_price
        self.volatility = volatility
        self.seed = seed
        self.start_time = start_time or datetime.now(timezone.utc).replace(second=0, microsecond=0)
        self.connected = True
        self.subscribe_calls: dict[str, int] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def is_connected(self) -> bool:
        return self.connected

    def generate(self, symbol: str, count: int) -> list[PriceTick]:
        """确定性生成 count 根 K 线。"""
        rng = np.random.default_rng(self.seed + sum(ord(ch) for ch in symbol))
        price = self.start_price
        out: list[PriceTick] = []
        for i in range(count):
            ret = float(rng.normal(0.0, self.volatility))
            open_ = price
            close = max(1e-8, open_ * math.exp(ret))
            wick = abs(float(rng.normal(0.0, self.volatility / 2)))
            high = max(open_, close) * (1 + wick)
            low = min(open_, close) * (1 - wick)
            volume = float(rng.uniform(50.0, 150.0))
            out.append(
                PriceTick(
                    symbol=symbol,
                    open=open_,
                    high=high,
                    low=low,
                    close=close,
                    volume=volume,
                    timestamp=self.start_time + timedelta(minutes=i),
                )
            )
            price = close
        return out

    async def _feed(self, symbol: str, on_tick: TickCallback) -> None:
        if symbol in self.replay:
            source: Iterable[PriceTick] = self.replay[symbol]
        else:
            source = self._endless(symbol)
        for tick in source:
            await _dispatch(on_tick, tick, self.logger)
            await asyncio.sleep(self.interval_s)

    def _endless(self, symbol: str):
        batch = 500
        offset = 0
        while True:
            ticks = self.generate(symbol, offset + batch)[offset:]
            yield from ticks
            offset += batch

    async def subscribe(self, symbol: str, on_tick: TickCallback) -> None:
        await self.unsubscribe(symbol)
        self.subscribe_calls[symbol] = self.subscribe_calls.get(symbol, 0) + 1
        self._tasks[symbol] = asyncio.create_task(self._feed(symbol, on_tick), name=f"market-fake-{symbol}")

    async def unsubscribe(self, symbol: str) -> None:
        task = self._tasks.pop(symbol, None)
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        for symbol in list(self._tasks):
            await self.unsubscribe(symbol)
        self.connected = False


def get_market_client(mode: str, ws_url: str | None = None, interval: str = "1m", logger=None) -> MarketClient:
    """根据运行模式选择行情客户端：dry-run 使用本地假数据，paper/live 使用 Binance。"""
    mode_l = mode.lower().replace("_", "-")
    if mode_l in {"live", "paper"}:
        return BinanceMarketClient(ws_base=ws_url, interval=interval, logger=logger)
    if mode_l in {"dry-run", "fake", "mock"}:
        return FakeMarketClient(logger=logger)
    raise ValueError(f"Unsupported market mode: {mode}")
