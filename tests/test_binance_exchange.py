import pytest
import requests

import broker.binance as binance_mod
from broker.abstract_broker import ExchangeError
from broker.binance import BinanceExchange, parse_kline, parse_symbol_filters


class _Resp:
    def __init__(self, payload, status_code: int = 200):
        self._payload = payload
        self.status_code = status_code
        self.text = str(payload)

    def json(self):
        return self._payload


class _Recorder:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, method, url, params=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": dict(params or {}), "headers": headers})
        res = self.responses.pop(0)
        if isinstance(res, Exception):
            raise res
        return res


EXCHANGE_INFO = {
    "symbols": [
        {
            "symbol": "BTCUSDT",
            "filters": [
                {"filterType": "PRICE_FILTER", "tickSize": "0.01"},
                {"filterType": "LOT_SIZE", "stepSize": "0.00001", "minQty": "0.00001", "maxQty": "9000"},
                {"filterType": "NOTIONAL", "minNotional": "5.0"},
            ],
        }
    ]
}


def _exchange(**kwargs) -> BinanceExchange:
    params = dict(base_url="https://api.binance.com", api_key="k", api_secret="s", allow_live=True)
    params.update(kwargs)
    return BinanceExchange(**params)


def test_parse_symbol_filters():
    f = parse_symbol_filters(EXCHANGE_INFO["symbols"][0])
    assert f.symbol == "BTCUSDT"
    assert f.step_size == 0.00001
    assert f.min_qty == 0.00001
    assert f.max_qty == 9000.0
    assert f.min_notional == 5.0


def test_parse_kline_row():
    tick = parse_kline("BTCUSDT", [1704067200000, "1", "2", "0.5", "1.5", "10", 1704067259999])
    assert tick.close == 1.5
    assert tick.volume == 10.0
    assert tick.timestamp.year == 2024


def test_symbol_filters_are_cached(monkeypatch):
    rec = _Recorder(_Resp(EXCHANGE_INFO))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    ex = _exchange()
    assert ex.symbol_filters("BTCUSDT").min_notional == 5.0
    assert ex.symbol_filters("BTCUSDT").step_size == 0.00001
    assert len(rec.calls) == 1
    assert rec.calls[0]["url"].endswith("/api/v3/exchangeInfo")


def test_balance_uses_signed_account_request(monkeypatch):
    account = {"balances": [{"asset": "BTC", "free": "0.1"}, {"asset": "USDT", "free": "123.45"}]}
    rec = _Recorder(_Resp(account))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    ex = _exchange()

    assert ex.get_balance() == pytest.approx(123.45)
    call = rec.calls[0]
    assert call["headers"] == {"X-MBX-APIKEY": "k"}
    params = dict(call["params"])
    signature = params.pop("signature")
    assert signature == ex._sign(params)
    assert "timestamp" in params and params["recvWindow"] == 5000


def test_place_order_refused_without_allow_live(monkeypatch):
    rec = _Recorder()
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    ex = _exchange(allow_live=False)
    with pytest.raises(ExchangeError):
        ex.place_order("BTCUSDT", "BUY", 0.001)
    assert rec.calls == []


def test_place_order_aggregates_fills(monkeypatch):
    order = {
        "orderId": 42,
        "status": "FILLED",
        "executedQty": "0.003",
        "fills": [
            {"price": "100.0", "qty": "0.001", "commission": "0.0000001"},
            {"price": "103.0", "qty": "0.002", "commission": "0.0000002"},
        ],
    }
    rec = _Recorder(_Resp(EXCHANGE_INFO), _Resp(order))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    ex = _exchange()
    ex.symbol_filters("BTCUSDT")

    fill = ex.place_order("BTCUSDT", "buy", 0.0030000001)
    assert fill.filled
    assert fill.quantity == pytest.approx(0.003)
    assert fill.price == pytest.approx(102.0)
    assert fill.order_id == "42"

    sent = rec.calls[1]["params"]
    assert rec.calls[1]["method"] == "POST"
    assert sent["side"] == "BUY"
    assert sent["type"] == "MARKET"
    assert sent["quantity"] == "0.003"
    assert sent["newOrderRespType"] == "FULL"
    assert sent["newClientOrderId"].startswith("vc_")


def test_unfilled_order_raises(monkeypatch):
    rec = _Recorder(_Resp({"orderId": 1, "status": "EXPIRED", "executedQty": "0", "fills": []}))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    with pytest.raises(ExchangeError):
        _exchange().place_order("BTCUSDT", "SELL", 1.0)


def test_http_error_carries_code(monkeypatch):
    rec = _Recorder(_Resp({"code": -2010, "msg": "Account has insufficient balance"}, status_code=400))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    with pytest.raises(ExchangeError) as exc:
        _exchange().place_order("BTCUSDT", "BUY", 1.0)
    assert exc.value.code == -2010
    assert exc.value.status == 400
    assert "insufficient balance" in str(exc.value)


def test_transport_error_is_wrapped(monkeypatch):
    rec = _Recorder(requests.ConnectionError("boom"))
    monkeypatch.setattr(binance_mod.requests, "request", rec)
    with pytest.raises(ExchangeError):
        _exchange().get_klines("BTCUSDT", "1m", 10)


def test_missing_credentials_rejected():
    ex = _exchange(api_key=None, api_secret=None)
    with pytest.raises(ExchangeError):
        ex.get_account_info()
