"""
Price bucket aggregation tests.
"""

import pytest

from deltazones.errors import BadInput
from deltazones.processors.aggregator import (
    aggregate, aggregate_candles, aggregate_trades, bucket_price, merge_buckets
)
from deltazones.types import BUY, SELL, CANDLE_GRANULARITY, TRADE_GRANULARITY, Candle, Exchange, Trade


def trade(i, price, quantity, side=BUY, timestamp=None):
    return Trade(
        identity=f"binance:BTCUSDT:{i}",
        exchange=Exchange.BINANCE,
        symbol='BTCUSDT',
        price=price,
        quantity=quantity,
        side=side,
        timestamp=timestamp if timestamp is not None else 1000 + i
    )


def test_bucket_price_rounds_half_up():
    assert bucket_price(105, 10) == 110
    assert bucket_price(104.9, 10) == 100
    assert bucket_price(100, 10) == 100
    assert bucket_price(65012.5, 25) == 65025
    assert bucket_price(0.3, 0.1) == 0.3
    assert bucket_price(100.05, 0.1) == 100.1
    assert bucket_price(0.15, 0.1) == 0.2


def test_fractional_bucket_sizes_match_bucket_price():
    prices = [100.05, 100.04, 0.15, 2.25]
    buckets = aggregate_trades([trade(i, p, 1) for i, p in enumerate(prices)], 0.1)

    assert [b.price for b in buckets] == [0.2, 2.3, 100.0, 100.1]
    assert [b.price for b in buckets] == sorted(bucket_price(p, 0.1) for p in prices)


def test_bucket_size_must_be_positive():
    with pytest.raises(BadInput):
        bucket_price(100, 0)
    with pytest.raises(BadInput):
        aggregate_trades([trade(1, 100, 1)], -5)


def test_aggregate_trades():
    trades = [
        trade(1, 100, 1.0, BUY),
        trade(2, 102, 2.0, SELL),
        trade(3, 111, 0.5, BUY, timestamp=5000),
    ]
    buckets = aggregate_trades(trades, 5)

    assert [b.price for b in buckets] == [100, 110]
    low, high = buckets
    assert low.volume == pytest.approx(3.0)
    assert low.buy_volume == pytest.approx(1.0)
    assert low.sell_volume == pytest.approx(2.0)
    assert low.delta == pytest.approx(-1.0)
    assert low.count == 2
    assert low.last_timestamp == 1002
    assert high.last_timestamp == 5000
    assert all(b.granularity == TRADE_GRANULARITY for b in buckets)


def test_volume_is_conserved():
    trades = [trade(i, 60000 + (i * 7.3) % 400, 0.1 + i / 100, BUY if i % 3 else SELL) for i in range(200)]
    buckets = aggregate_trades(trades, 25)

    assert sum(b.volume for b in buckets) == pytest.approx(sum(t.quantity for t in trades))
    assert sum(b.count for b in buckets) == len(trades)
    for b in buckets:
        assert b.volume == pytest.approx(b.buy_volume + b.sell_volume)
        # Every bucket key is a multiple of the bucket size
        assert b.price / 25 == pytest.approx(round(b.price / 25))


def test_empty_input():
    assert aggregate_trades([], 10) == []
    assert aggregate_candles([], 10) == []
    assert aggregate([], 10) == []


def test_time_window():
    trades = [trade(i, 100, 1.0, timestamp=i * 1000) for i in range(10)]
    buckets = aggregate_trades(trades, 10, since=2000, until=4000)
    assert buckets[0].count == 3
    assert aggregate_trades(trades, 10, since=50_000) == []


def test_aggregate_candles():
    candles = [
        Candle(time=0, open=99, high=101, low=98, close=100, volume=5),
        Candle(time=60000, open=100, high=104, low=99, close=103, volume=7),
        Candle(time=120000, open=103, high=120, low=103, close=118, volume=2),
    ]
    buckets = aggregate(candles, 10)

    assert [b.price for b in buckets] == [100, 120]
    assert buckets[0].volume == 12
    assert buckets[0].buy_volume == 0
    assert buckets[0].granularity == CANDLE_GRANULARITY


def test_merge_buckets_matches_single_pass():
    trades = [trade(i, 100 + i, 1.0 + i, BUY if i % 2 else SELL) for i in range(20)]
    whole = aggregate_trades(trades, 5)
    merged = merge_buckets(aggregate_trades(trades[:7], 5), aggregate_trades(trades[7:], 5))

    assert [b.price for b in merged] == [b.price for b in whole]
    for m, w in zip(merged, whole):
        assert m.volume == pytest.approx(w.volume)
        assert m.delta == pytest.approx(w.delta)
        assert m.count == w.count
        assert m.last_timestamp == w.last_timestamp


def test_merge_rejects_mixed_granularity():
    trade_buckets = aggregate_trades([trade(1, 100, 1)], 10)
    candle_buckets = aggregate_candles([Candle(0, 100, 100, 100, 100, 1)], 10)
    with pytest.raises(BadInput):
        merge_buckets(trade_buckets, candle_buckets)
