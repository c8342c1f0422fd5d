import pytest

from broker.abstract_broker import ExchangeError
from broker.mock import PaperExchange
from shared.models.models import SymbolFilters


def test_buy_then_sell_updates_balances_with_fees():
    ex = PaperExchange(100.0, fee_rate=0.001)
    ex.observe_price("ETHUSDT", 50.0)

    buy = ex.place_order("ETHUSDT", "buy", 1.0)
    assert buy.filled and buy.price == 50.0
    assert ex.get_balance() == pytest.approx(100.0 - 50.0 - 0.05)
    assert ex.balances["ETH"] == 1.0

    ex.observe_price("ETHUSDT", 60.0)
    sell = ex.place_order("ETHUSDT", "SELL", 1.0)
    assert sell.price == 60.0
    assert ex.get_balance() == pytest.approx(100.0 - 50.05 + 60.0 - 0.06)
    assert ex.balances["ETH"] == 0.0
    assert [o.side for o in ex.orders] == ["BUY", "SELL"]


def test_rejections():
    ex = PaperExchange(10.0)
    with pytest.raises(ExchangeError):
        ex.place_order("ETHUSDT", "BUY", 1.0)
    ex.observe_price("ETHUSDT", 50.0)
    with pytest.raises(ExchangeError):
        ex.place_order("ETHUSDT", "BUY", 1.0)
    with pytest.raises(ExchangeError):
        ex.place_order("ETHUSDT", "SELL", 1.0)
    assert ex.get_balance() == 10.0


def test_klines_and_filters_from_local_state(make_ticks):
    ex = PaperExchange(quote_asset="USDT", filters={"BTCUSDT": SymbolFilters("BTCUSDT", step_size=0.01, min_notional=5)})
    ticks = make_ticks([1, 2, 3, 4])
    ex.seed_klines("BTCUSDT", ticks)

    assert ex.get_klines("BTCUSDT", "1m", 2) == ticks[-2:]
    assert ex.last_prices["BTCUSDT"] == 4.0
    assert ex.symbol_filters("BTCUSDT").step_size == 0.01
    assert ex.symbol_filters("ETHUSDT") is None
    info = ex.get_exchange_info(["BTCUSDT"])
    assert info["symbols"][0]["symbol"] == "BTCUSDT"
    account = ex.get_account_info()
    assert account["balances"][0]["asset"] == "USDT"


def test_data_source_is_used_for_market_data(make_ticks):
    source = PaperExchange()
    source.seed_klines("BTCUSDT", make_ticks([7, 8]))
    source.set_filters(SymbolFilters("BTCUSDT", step_size=0.1))

    ex = PaperExchange(50.0, data_source=source)
    assert [t.close for t in ex.get_klines("BTCUSDT", "1m", 10)] == [7.0, 8.0]
    assert ex.symbol_filters("BTCUSDT").step_size == 0.1
    fill = ex.place_order("BTCUSDT", "BUY", 1.0)
    assert fill.price == 8.0
    assert source.orders == []
