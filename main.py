"""命令行入口。

- `runner`：实时/纸面/干跑主循环（连接行情与交易所，驱动 TradingEngine）。
- `symbols`：管理每日交易币种列表（list / add / remove）。
"""

from __future__ import annotations

import argparse
import json
from dataclasses import dataclass
from typing import Any

from broker.abstract_broker import BrokerMode, Exchange
from broker.binance import BinanceExchange
from broker.mock import PaperExchange
from database.symbol_store import DailySymbolStore
from engine.trading_engine import TradingEngine
from market.client import FakeMarketClient, get_market_client
from shared.config.config_loader import load_config
from shared.config.schema import MainConfig
from shared.models.models import VolatilityTier
from shared.utils.logging import configure_logging


@dataclass
class CliArgs:
    """命令行参数。"""

    config: str
    task: str
    max_ticks: int | None = None  # 跑多少个 tick 后退出（dry-run/测试）
    duration: float | None = None  # 运行秒数
    symbols: list[str] | None = None
    action: str | None = None
    symbol: str | None = None
    volatility: str = "medium"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="volcoin", description="波动币种交易决策引擎")

    def _add_config_arg(p: argparse.ArgumentParser, *, default: Any) -> None:
        p.add_argument("--config", default=default, help="配置文件路径 (默认: config/config.yml)")

    # 允许 `main.py --config ... runner` 与 `main.py runner --config ...`
    _add_config_arg(parser, default="config/config.yml")
    sub = parser.add_subparsers(dest="task")

    p_runner = sub.add_parser("runner", help="实盘/纸面/干跑主循环")
    _add_config_arg(p_runner, default=argparse.SUPPRESS)
    p_runner.add_argument("--max-ticks", type=int, default=None, help="处理多少个 tick 后退出")
    p_runner.add_argument("--duration", type=float, default=None, help="运行多少秒后退出")
    p_runner.add_argument("--symbols", nargs="+", default=None, help="覆盖配置与每日列表中的币种")

    p_symbols = sub.add_parser("symbols", help="管理每日币种列表")
    _add_config_arg(p_symbols, default=argparse.SUPPRESS)
    sym_sub = p_symbols.add_subparsers(dest="action", required=True)
    sym_sub.add_parser("list", help="列出今日币种")
    p_add = sym_sub.add_parser("add", help="添加币种")
    p_add.add_argument("symbol")
    p_add.add_argument("--volatility", choices=[t.value for t in VolatilityTier], default="medium")
    p_remove = sym_sub.add_parser("remove", help="移除币种")
    p_remove.add_argument("symbol")
    return parser


def parse_args(argv: list[str] | None = None) -> CliArgs:
    ns = build_parser().parse_args(argv)
    return CliArgs(
        config=str(getattr(ns, "config", "config/config.yml")),
        task=ns.task or "runner",
        max_ticks=getattr(ns, "max_ticks", None),
        duration=getattr(ns, "duration", None),
        symbols=getattr(ns, "symbols", None),
        action=getattr(ns, "action", None),
        symbol=getattr(ns, "symbol", None),
        volatility=str(getattr(ns, "volatility", "medium")),
    )


def build_exchange(cfg: MainConfig) -> Exchange:
    """按运行模式构建交易所：dry-run 纯本地；paper 用真实行情 + 本地成交；live 真实下单。"""
    mode = BrokerMode(cfg.mode)
    ex = cfg.exchange
    if mode == BrokerMode.DRY_RUN:
        return PaperExchange(cfg.engine.paper_balance, quote_asset=ex.quote_asset)
    binance = BinanceExchange(
        base_url=ex.base_url,
        api_key=ex.api_key,
        api_secret=ex.api_secret,
        allow_live=ex.allow_live,
        quote_asset=ex.quote_asset,
        recv_window=ex.recv_window,
        timeout_s=ex.timeout_s,
    )
    if mode == BrokerMode.PAPER:
        return PaperExchange(cfg.engine.paper_balance, quote_asset=ex.quote_asset, data_source=binance)
    if not ex.allow_live:
        raise ValueError("mode=live requires exchange.allow_live=true")
    return binance


def build_engine(cfg: MainConfig, args: CliArgs) -> TradingEngine:
    store = DailySymbolStore(cfg.symbols.data_dir, cfg.symbols.max_daily_coins)
    exchange = build_exchange(cfg)
    market = get_market_client(cfg.mode, ws_url=cfg.exchange.ws_url, interval=cfg.exchange.interval)
    if isinstance(market, FakeMarketClient) and isinstance(exchange, PaperExchange):
        # dry-run：预热数据与实时推送来自同一条确定性序列
        warmup = cfg.engine.warmup_klines
        symbols = args.symbols or cfg.symbols.symbols or [c.symbol for c in store.get_active_symbols()]
        for symbol in symbols:
            history = market.generate(symbol.upper(), warmup + 10_000)
            exchange.seed_klines(symbol.upper(), history[:warmup])
            market.replay[symbol.upper()] = history[warmup:]
    return TradingEngine(
        cfg,
        exchange=exchange,
        market=market,
        symbols=args.symbols,
        symbol_store=store,
        max_ticks=args.max_ticks,
        duration_s=args.duration,
    )


def run_symbols(cfg: MainConfig, args: CliArgs) -> Any:
    store = DailySymbolStore(cfg.symbols.data_dir, cfg.symbols.max_daily_coins)
    if args.action == "list":
        coins = store.get_active_symbols()
        for coin in coins:
            print(f"{coin.symbol}\t{coin.volatility_tier.value}\t{coin.added_date}")
        print(json.dumps(store.daily_stats(), ensure_ascii=False))
        return [c.symbol for c in coins]
    if args.action == "add":
        return store.add(args.symbol or "", args.volatility)
    if args.action == "remove":
        return store.remove(args.symbol or "")
    raise ValueError(f"Unknown symbols action: {args.action}")


def main(argv: list[str] | None = None) -> Any:
    args = parse_args(argv)
    cfg = load_config(args.config)
    configure_logging(cfg.logging.level, cfg.logging.file)

    if args.task == "runner":
        return build_engine(cfg, args).run().summary
    if args.task == "symbols":
        return run_symbols(cfg, args)
    raise ValueError(f"Unknown task: {args.task}")


if __name__ == "__main__":
    main()
