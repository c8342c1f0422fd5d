import pytest

from market.window import PriceWindow, window_to_frame


def test_append_evicts_oldest(make_ticks):
    window = PriceWindow("BTCUSDT", capacity=3)
    for t in make_ticks([1, 2, 3, 4]):
        assert window.append(t)
    assert len(window) == 3
    assert [t.close for t in window] == [2.0, 3.0, 4.0]
    assert window.last.close == 4.0


def test_same_timestamp_replaces_last(make_ticks):
    window = PriceWindow("BTCUSDT", capacity=5)
    first, second = make_ticks([1, 2])
    window.append(first)
    window.append(second)
    update = make_ticks([2.5], start=1)[0]
    assert window.append(update)
    assert len(window) == 2
    assert window.last.close == 2.5


def test_older_tick_is_rejected(make_ticks):
    window = PriceWindow("BTCUSDT", capacity=5)
    ticks = make_ticks([1, 2, 3])
    window.extend(ticks)
    assert not window.append(ticks[0])
    assert len(window) == 3


def test_wrong_symbol_and_capacity(make_ticks):
    with pytest.raises(ValueError):
        PriceWindow("X", capacity=0)
    window = PriceWindow("ETHUSDT", capacity=2)
    with pytest.raises(ValueError):
        window.append(make_ticks([1])[0])


def test_snapshot_is_immutable_copy(make_ticks):
    window = PriceWindow("BTCUSDT", capacity=5)
    window.extend(make_ticks([1, 2]))
    snap = window.snapshot()
    window.append(make_ticks([3], start=2)[0])
    assert len(snap) == 2
    df = window_to_frame(window.snapshot())
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert df["close"].tolist() == [1.0, 2.0, 3.0]
