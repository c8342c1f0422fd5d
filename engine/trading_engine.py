"""实盘/纸面/干跑交易引擎（TradingEngine）。

结构：
- 每个 symbol 一个 asyncio.Queue + worker 任务，独占该 symbol 的价格窗口与快照；
- 组合状态（账本 + 风控 + 余额）在 PortfolioContext 中，由单个锁保护；
- 交易所调用是阻塞的 requests，经 run_in_executor 在锁外执行；
- 账本只在成交确认后变化，下单在途期间以预留占位；
- 健康检查任务：连接状态、静默重订阅、定期状态日志。
"""

from __future__ import annotations

import asyncio
import functools
import signal
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from algo.factors.engine import IndicatorEngine
from algo.factors.snapshot import IndicatorSnapshot
from algo.risk.manager import RiskManager
from algo.strategy.entry import EntryScorer
from algo.strategy.exit import ExitStateMachine
from broker.abstract_broker import Exchange
from database.symbol_store import DailySymbolStore
from engine.base_engine import BaseEngine, EngineResult
from engine.portfolio import PortfolioContext
from engine.signal_pipeline import Action, Decision, SignalPipeline
from market.client import MarketClient
from market.window import PriceWindow
from shared.config.schema import MainConfig
from shared.models.models import PriceTick, VolatilityTier
from shared.state.position_ledger import PositionLedger
from shared.utils.logging import setup_logger

logger = setup_logger("engine")


@dataclass
class SymbolState:
    symbol: str
    window: PriceWindow
    queue: asyncio.Queue = field(default_factory=asyncio.Queue)
    worker: Optional[asyncio.Task] = None
    snapshot: Optional[IndicatorSnapshot] = None
    last_tick_at: float = 0.0
    callback: Optional[Callable[[PriceTick], None]] = None


class TradingEngine(BaseEngine):
    def __init__(
        self,
        cfg: MainConfig,
        *,
        exchange: Exchange,
        market: MarketClient,
        symbols: list[str] | None = None,
        symbol_store: DailySymbolStore | None = None,
        max_ticks: int | None = None,
        duration_s: float | None = None,
    ):
        self.cfg = cfg
        self.exchange = exchange
        self.market = market
        self.symbol_store = symbol_store
        self.max_ticks = max_ticks
        self.duration_s = duration_s
        self._requested_symbols = [s.upper() for s in symbols] if symbols else None

        exit_machine = ExitStateMachine(cfg.exit)
        self.indicators = IndicatorEngine(cfg.indicators, cfg.engine.min_window)
        self.pipeline = SignalPipeline(EntryScorer(cfg.entry), exit_machine)
        self.portfolio = PortfolioContext(
            ledger=PositionLedger(cfg.position, exit_machine),
            risk=RiskManager(cfg.risk),
        )

        self.symbols: dict[str, SymbolState] = {}
        self.ticks_processed = 0
        self._running = False
        self._stopping = False
        self._health_task: asyncio.Task | None = None
        self._order_tasks: set[asyncio.Task] = set()
        self._done: asyncio.Event | None = None

    @property
    def counters(self):
        return self.portfolio.counters

    # ---- 生命周期 ----
    def run(self) -> EngineResult:
        return asyncio.run(self.run_async())

    async def run_async(self) -> EngineResult:
        """启动并运行到 duration/max_ticks 到达或收到停止信号。"""
        self._done = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self._done.set)
            except (NotImplementedError, RuntimeError):
                pass
        try:
            await self.start()
            if self.duration_s is not None:
                try:
                    await asyncio.wait_for(self._done.wait(), timeout=self.duration_s)
                except asyncio.TimeoutError:
                    pass
            else:
                await self._done.wait()
        finally:
            await self.stop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                try:
                    loop.remove_signal_handler(sig)
                except (NotImplementedError, RuntimeError):
                    pass
        return EngineResult(summary=self.get_system_status())

    async def start(self) -> None:
        if self._running:
            return
        self._stopping = False
        balance = await self._refresh_balance(initial=True)
        self.portfolio.risk.reset(balance)

        symbols = self._resolve_symbols()
        if not symbols:
            logger.warning("No active symbols configured; engine idle.")
        for symbol in symbols:
            await self.add_symbol(symbol)

        self._running = True
        self._health_task = asyncio.create_task(self._health_loop(), name="engine-health")
        logger.info("Trading engine started: mode=%s symbols=%s balance=%.4f", self.cfg.mode, symbols, balance)

    async def stop(self) -> None:
        if not self._running and not self.symbols and self._health_task is None:
            return
        self._stopping = True
        logger.info("Stopping trading engine...")

        if self._health_task is not None:
            self._health_task.cancel()
            await asyncio.gather(self._health_task, return_exceptions=True)
            self._health_task = None

        for symbol in list(self.symbols):
            try:
                await self.market.unsubscribe(symbol)
            except Exception:
                logger.exception("unsubscribe %s failed", symbol)
        try:
            await self.market.close()
        except Exception:
            logger.exception("market client close failed")

        # 先停 worker：之后不会再产生新的订单任务
        workers = [s.worker for s in self.symbols.values() if s.worker is not None]
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        await self._drain_orders(self.cfg.engine.shutdown_timeout_s)
        self.symbols.clear()

        self._running = False
        logger.info("Trading engine stopped: %s", self._status_line())

    async def _drain_orders(self, timeout: float) -> None:
        """等待在途订单完成；超时后取消剩余任务。"""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while True:
            pending = {t for t in self._order_tasks if not t.done()}
            remaining = deadline - loop.time()
            if not pending or remaining <= 0:
                break
            await asyncio.wait(pending, timeout=remaining)
        for task in pending:
            logger.warning("in-flight order task did not finish in time, cancelling")
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    def _resolve_symbols(self) -> list[str]:
        if self._requested_symbols:
            return self._requested_symbols
        if self.cfg.symbols.symbols:
            return [s.upper() for s in self.cfg.symbols.symbols]
        if self.symbol_store is not None:
            try:
                return [c.symbol for c in self.symbol_store.get_active_symbols()]
            except (OSError, ValueError):
                logger.exception("Failed to load daily symbols")
        return []

    # ---- 交易所调用（锁外、线程池） ----
    async def _call(self, fn: Callable[..., Any], *args) -> Any:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    async def _refresh_balance(self, initial: bool = False) -> float:
        try:
            balance = float(await self._call(self.exchange.get_balance))
        except Exception as exc:
            logger.warning("Balance refresh failed, keeping %.4f: %s", self.portfolio.balance, exc)
            self.counters["failed_balance_refresh"] += 1
            return self.portfolio.balance
        async with self.portfolio.lock:
            self.portfolio.balance = balance
            if not initial:
                self.portfolio.risk.drawdown(self.portfolio.equity())
        return balance

    # ---- symbol 管理 ----
    async def add_symbol(self, symbol: str) -> None:
        symbol = symbol.upper()
        if symbol in self.symbols:
            return
        state = SymbolState(symbol=symbol, window=PriceWindow(symbol, self.cfg.engine.window_capacity))
        self.symbols[symbol] = state

        try:
            filters = await self._call(self.exchange.symbol_filters, symbol)
            if filters is not None:
                self.portfolio.ledger.set_filters(filters)
        except Exception as exc:
            logger.warning("Symbol filters for %s unavailable, using defaults: %s", symbol, exc)

        await self._warmup(state)

        state.worker = asyncio.create_task(self._worker(state), name=f"engine-worker-{symbol}")
        state.callback = self._make_callback(state)
        state.last_tick_at = asyncio.get_running_loop().time()
        try:
            await self.market.subscribe(symbol, state.callback)
        except Exception:
            logger.exception("subscribe %s failed; health check will retry", symbol)

    async def remove_symbol(self, symbol: str) -> bool:
        """退订并停止该 symbol 的 worker；已有持仓保留在账本中，不再被管理。"""
        symbol = symbol.upper()
        state = self.symbols.pop(symbol, None)
        if state is None:
            return False
        try:
            await self.market.unsubscribe(symbol)
        except Exception:
            logger.exception("unsubscribe %s failed", symbol)
        if state.worker is not None:
            state.worker.cancel()
            await asyncio.gather(state.worker, return_exceptions=True)
        if self.portfolio.ledger.has_position(symbol):
            logger.warning("%s removed with an open position; it is no longer managed", symbol)
        logger.info("Stopped monitoring %s (%d queued ticks dropped)", symbol, state.queue.qsize())
        return True

    async def add_daily_coin(self, symbol: str, volatility: VolatilityTier | str = VolatilityTier.MEDIUM) -> bool:
        """写入当日币种列表；引擎运行中时立即开始监控。"""
        if self.symbol_store is None:
            logger.warning("No daily symbol store configured, cannot add %s", symbol)
            return False
        symbol = symbol.upper()
        if not self.symbol_store.add(symbol, volatility):
            return False
        if self._running and not self._stopping:
            await self.add_symbol(symbol)
            logger.info("Added and started monitoring %s", symbol)
        return True

    async def remove_daily_coin(self, symbol: str) -> bool:
        if self.symbol_store is None:
            logger.warning("No daily symbol store configured, cannot remove %s", symbol)
            return False
        symbol = symbol.upper()
        if not self.symbol_store.remove(symbol):
            return False
        await self.remove_symbol(symbol)
        logger.info("Removed and stopped monitoring %s", symbol)
        return True

    async def _warmup(self, state: SymbolState) -> None:
        limit = self.cfg.engine.warmup_klines
        if limit <= 0:
            return
        try:
            ticks = await self._call(self.exchange.get_klines, state.symbol, self.cfg.exchange.interval, limit)
        except Exception as exc:
            logger.warning("Warm-up for %s failed, starting cold: %s", state.symbol, exc)
            return
        accepted = state.window.extend(ticks)
        if state.window.last is not None:
            self.portfolio.mark_price(state.symbol, state.window.last.close)
        logger.info("Warm-up %s: %d klines", state.symbol, accepted)

    def _make_callback(self, state: SymbolState) -> Callable[[PriceTick], None]:
        def on_tick(tick: PriceTick) -> None:
            if self._stopping:
                return
            state.queue.put_nowait(tick)

        return on_tick

    async def _worker(self, state: SymbolState) -> None:
        while True:
            tick = await state.queue.get()
            try:
                await self.process_tick(state, tick)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Tick processing failed for %s", state.symbol)
                self.counters["errors"] += 1
            finally:
                state.queue.task_done()

    # ---- 单 tick ----
    async def process_tick(self, state: SymbolState, tick: PriceTick) -> Optional[Decision]:
        state.last_tick_at = asyncio.get_running_loop().time()
        if not state.window.append(tick):
            logger.debug("%s stale tick dropped: %s", state.symbol, tick.timestamp)
            self.counters["stale_ticks"] += 1
            return None

        self.ticks_processed += 1
        self.exchange.observe_price(tick.symbol, tick.close)
        # pandas/numpy 计算放到线程池，避免阻塞其他 symbol 的 worker
        snapshot = await self._call(self.indicators.compute, state.window.snapshot())
        state.snapshot = snapshot

        async with self.portfolio.lock:
            self.portfolio.mark_price(tick.symbol, tick.close)
            decision = self.pipeline.decide(
                symbol=state.symbol,
                snapshot=snapshot,
                now=tick.timestamp,
                portfolio=self.portfolio,
                allow_entry=not self._stopping,
            )
        if decision.rejected:
            self.counters["rejected_entries"] += 1

        if decision.action != Action.NONE:
            task = asyncio.create_task(self._execute(decision, snapshot, tick.timestamp))
            self._order_tasks.add(task)
            task.add_done_callback(self._order_tasks.discard)
            # 在途订单不随 worker 取消
            await asyncio.shield(task)

        if self.max_ticks is not None and self.ticks_processed >= self.max_ticks and self._done is not None:
            self._done.set()
        return decision

    async def _execute(self, decision: Decision, snapshot: IndicatorSnapshot, now: datetime) -> None:
        if decision.action == Action.OPEN:
            await self._execute_open(decision, snapshot, now)
        elif decision.action == Action.CLOSE:
            await self._execute_close(decision, now)
        elif decision.action == Action.SCALE_OUT:
            await self._execute_scale_out(decision, now)

    async def _execute_open(self, decision: Decision, snapshot: IndicatorSnapshot, now: datetime) -> None:
        symbol = decision.symbol
        try:
            fill = await self._call(self.exchange.place_order, symbol, "BUY", decision.quantity)
        except Exception as exc:
            logger.error("BUY %s failed: %s", symbol, exc)
            self.counters["failed_orders"] += 1
            async with self.portfolio.lock:
                self.portfolio.ledger.release(symbol)
            return

        async with self.portfolio.lock:
            result = self.portfolio.ledger.open(symbol, decision.price, snapshot, fill=fill, now=now)
            if not result.ok:
                self.portfolio.ledger.release(symbol)
        if not result.ok:
            logger.error("BUY %s filled but not recorded: %s %s", symbol, result.error, result.message)
            self.counters["ledger_errors"] += 1
        else:
            self.counters["opened"] += 1
        await self._refresh_balance()

    async def _execute_close(self, decision: Decision, now: datetime) -> None:
        symbol = decision.symbol
        try:
            fill = await self._call(self.exchange.place_order, symbol, "SELL", decision.quantity)
        except Exception as exc:
            logger.error("SELL %s failed: %s", symbol, exc)
            self.counters["failed_orders"] += 1
            return

        async with self.portfolio.lock:
            result = self.portfolio.ledger.close(symbol, decision.reason, fill=fill, price=decision.price, now=now)
            if result.ok and result.trade is not None:
                self.portfolio.risk.record_trade(result.trade)
        if not result.ok:
            logger.error("SELL %s filled but not recorded: %s %s", symbol, result.error, result.message)
            self.counters["ledger_errors"] += 1
        else:
            self.counters["closed"] += 1
        await self._refresh_balance()

    async def _execute_scale_out(self, decision: Decision, now: datetime) -> None:
        symbol = decision.symbol
        try:
            fill = await self._call(self.exchange.place_order, symbol, "SELL", decision.quantity)
        except Exception as exc:
            logger.error("Scale-out SELL %s failed: %s", symbol, exc)
            self.counters["failed_orders"] += 1
            return

        async with self.portfolio.lock:
            result = self.portfolio.ledger.scale_out(
                symbol,
                decision.fraction,
                decision.reason,
                fill=fill,
                price=decision.price,
                level=decision.level,
                now=now,
            )
            if result.ok and result.trade is not None:
                self.portfolio.risk.record_trade(result.trade)
        if not result.ok:
            logger.error("Scale-out %s filled but not recorded: %s %s", symbol, result.error, result.message)
            self.counters["ledger_errors"] += 1
        else:
            self.counters["scale_outs"] += 1
        await self._refresh_balance()

    # ---- 健康检查 / 状态 ----
    async def _health_loop(self) -> None:
        loop = asyncio.get_running_loop()
        last_status = loop.time()
        while True:
            await asyncio.sleep(self.cfg.engine.health_check_interval_s)
            try:
                await self.health_check()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Health check failed")
            if loop.time() - last_status >= self.cfg.engine.status_log_interval_s:
                self.log_status()
                last_status = loop.time()

    async def health_check(self) -> list[str]:
        """重新订阅静默超过 silence_window_s 的 symbol，返回被重订阅的列表。"""
        if not self.market.is_connected():
            logger.warning("Market data transport disconnected")
        now = asyncio.get_running_loop().time()
        resubscribed: list[str] = []
        for symbol, state in list(self.symbols.items()):
            if now - state.last_tick_at <= self.cfg.engine.silence_window_s:
                continue
            logger.warning("%s silent for %.0fs, resubscribing", symbol, now - state.last_tick_at)
            state.last_tick_at = now
            try:
                await self.market.unsubscribe(symbol)
                await self.market.subscribe(symbol, state.callback or self._make_callback(state))
            except Exception:
                logger.exception("Resubscribe %s failed", symbol)
                continue
            self.counters["resubscribes"] += 1
            resubscribed.append(symbol)
        return resubscribed

    def _status_line(self) -> str:
        status = self.get_system_status()
        return (
            f"running={status['running']} symbols={status['active_symbol_count']} "
            f"positions={status['open_position_count']} balance={status['balance']:.4f} "
            f"risk={status['aggregate_risk_pct'] * 100:.2f}% counters={status['counters']}"
        )

    def log_status(self) -> None:
        logger.info("STATUS %s", self._status_line())
        for symbol, profit in self.portfolio.unrealized().items():
            logger.info("  %s unrealized %.2f%%", symbol, profit * 100)

    def _daily_stats(self) -> dict[str, Any] | None:
        if self.symbol_store is None:
            return None
        try:
            return self.symbol_store.daily_stats()
        except (OSError, ValueError) as exc:
            logger.warning("Daily coin stats unavailable: %s", exc)
            return None

    def get_system_status(self) -> dict[str, Any]:
        portfolio = self.portfolio
        return {
            "daily_stats": self._daily_stats(),
            "running": self._running,
            "mode": self.cfg.mode,
            "active_symbol_count": len(self.symbols),
            "open_position_count": len(portfolio.ledger.positions()),
            "pending_entry_count": len(portfolio.ledger.pending_intents()),
            "balance": portfolio.balance,
            "equity": portfolio.equity(),
            "aggregate_risk_pct": portfolio.aggregate_risk_pct(),
            "performance_metrics": portfolio.risk.performance_metrics(),
            "ticks_processed": self.ticks_processed,
            "counters": {
                "rejected_entries": portfolio.counters["rejected_entries"],
                "failed_orders": portfolio.counters["failed_orders"],
                "opened": portfolio.counters["opened"],
                "closed": portfolio.counters["closed"],
                "scale_outs": portfolio.counters["scale_outs"],
                "stale_ticks": portfolio.counters["stale_ticks"],
                "resubscribes": portfolio.counters["resubscribes"],
                "errors": portfolio.counters["errors"],
            },
        }
