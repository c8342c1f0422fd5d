from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import pytest

import main as app_main
from broker.binance import BinanceExchange
from broker.mock import PaperExchange
from market.client import FakeMarketClient
from shared.config.config_loader import parse_config


@dataclass
class _Res:
    summary: dict[str, Any]


def _install_fake_engine(monkeypatch) -> list[dict[str, Any]]:
    calls: list[dict[str, Any]] = []

    class _FakeEngine:
        def __init__(self, cfg, *, exchange, market, symbols=None, max_ticks=None, duration_s=None, **_kwargs):
            calls.append(
                {
                    "mode": cfg.mode,
                    "exchange": exchange,
                    "market": market,
                    "symbols": symbols,
                    "max_ticks": max_ticks,
                    "duration_s": duration_s,
                }
            )

        def run(self):
            return _Res(summary={"ok": True})

    monkeypatch.setattr(app_main, "TradingEngine", _FakeEngine)
    return calls


def test_runner_builds_dry_run_engine(monkeypatch):
    calls = _install_fake_engine(monkeypatch)
    res = app_main.main(["--config", "config/config.yml", "runner", "--max-ticks", "12", "--symbols", "ethusdt"])
    assert res == {"ok": True}

    call = calls[0]
    assert call["mode"] == "dry-run"
    assert call["max_ticks"] == 12
    assert call["symbols"] == ["ethusdt"]
    assert isinstance(call["exchange"], PaperExchange)
    assert isinstance(call["market"], FakeMarketClient)
    # 预热数据已注入模拟交易所，实时推送接在预热之后
    warmup = call["exchange"].get_klines("ETHUSDT", "1m", 1000)
    replay = call["market"].replay["ETHUSDT"]
    assert len(warmup) == 200
    assert replay[0].timestamp > warmup[-1].timestamp


def test_runner_accepts_config_after_subcommand(monkeypatch):
    calls = _install_fake_engine(monkeypatch)
    app_main.main(["runner", "--config", "config/config.yml", "--duration", "1.5"])
    assert calls[0]["duration_s"] == 1.5
    assert calls[0]["max_ticks"] is None


def test_build_exchange_by_mode():
    assert isinstance(app_main.build_exchange(parse_config({"mode": "dry-run"})), PaperExchange)
    paper = app_main.build_exchange(parse_config({"mode": "paper"}))
    assert isinstance(paper, PaperExchange)
    assert isinstance(paper.data_source, BinanceExchange)
    with pytest.raises(ValueError):
        app_main.build_exchange(parse_config({"mode": "live"}))
    live = app_main.build_exchange(parse_config({"mode": "live", "exchange": {"allow_live": True}}))
    assert isinstance(live, BinanceExchange)


def test_symbols_subcommands(tmp_path, capsys):
    cfg_path = tmp_path / "cfg.yml"
    cfg_path.write_text(f"symbols:\n  data_dir: {tmp_path.as_posix()}/data\n  max_daily_coins: 3\n", encoding="utf-8")

    assert app_main.main(["--config", str(cfg_path), "symbols", "add", "btcusdt", "--volatility", "high"]) is True
    assert app_main.main(["--config", str(cfg_path), "symbols", "add", "ETHUSDT"]) is True
    assert app_main.main(["--config", str(cfg_path), "symbols", "remove", "ETHUSDT"]) is True
    assert app_main.main(["--config", str(cfg_path), "symbols", "list"]) == ["BTCUSDT"]
    out = capsys.readouterr().out
    assert "BTCUSDT\thigh" in out
