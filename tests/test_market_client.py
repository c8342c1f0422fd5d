import asyncio
import json

import pytest

from market.client import (
    BinanceMarketClient,
    FakeMarketClient,
    get_market_client,
    parse_kline_event,
)

KLINE = {
    "e": "kline",
    "s": "BTCUSDT",
    "k": {"t": 1704067200000, "s": "BTCUSDT", "o": "100", "h": "101", "l": "99", "c": "100.5", "v": "12.5"},
}


def test_parse_kline_event():
    tick = parse_kline_event(KLINE)
    assert tick.symbol == "BTCUSDT"
    assert tick.close == 100.5
    assert tick.high == 101.0
    assert tick.volume == 12.5
    assert tick.timestamp.year == 2024
    assert parse_kline_event({"e": "trade"}) is None


def test_combined_stream_message_is_dispatched():
    client = BinanceMarketClient(interval="1m")
    got = []

    async def scenario():
        client._callbacks["BTCUSDT"] = got.append
        await client._handle_message(json.dumps({"stream": "btcusdt@kline_1m", "data": KLINE}))
        await client._handle_message("not json")
        await client._handle_message(json.dumps({"data": {"e": "kline", "k": {}}}))

    asyncio.run(scenario())
    assert len(got) == 1
    assert got[0].close == 100.5
    assert client._url() == "wss://stream.binance.com:9443/stream?streams=btcusdt@kline_1m"


def test_fake_generator_is_deterministic():
    a = FakeMarketClient(seed=1).generate("ETHUSDT", 50)
    b = FakeMarketClient(seed=1, start_time=a[0].timestamp).generate("ETHUSDT", 50)
    assert [t.close for t in a] == [t.close for t in b]
    assert all(t.low <= min(t.open, t.close) and t.high >= max(t.open, t.close) for t in a)
    assert all(later.timestamp > earlier.timestamp for earlier, later in zip(a, a[1:]))


def test_fake_client_replays_ticks_to_async_callback():
    ticks = FakeMarketClient(seed=2).generate("SOLUSDT", 5)
    client = FakeMarketClient({"SOLUSDT": ticks}, interval_s=0.0)
    got = []

    async def on_tick(tick):
        got.append(tick)

    async def scenario():
        await client.subscribe("SOLUSDT", on_tick)
        for _ in range(50):
            if len(got) == len(ticks):
                break
            await asyncio.sleep(0)
        await client.close()

    asyncio.run(scenario())
    assert got == ticks
    assert client.subscribe_calls == {"SOLUSDT": 1}
    assert not client.is_connected()


def test_get_market_client_by_mode():
    assert isinstance(get_market_client("dry-run"), FakeMarketClient)
    assert isinstance(get_market_client("LIVE"), BinanceMarketClient)
    assert isinstance(get_market_client("paper"), BinanceMarketClient)
    with pytest.raises(ValueError):
        get_market_client("backtest")
