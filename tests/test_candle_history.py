"""
Candle history chunking and parallel fetch tests.
"""

import asyncio

import pytest

from deltazones.collectors.candle_history import chunk_ranges, fetch_candle_history, interval_to_ms
from deltazones.errors import BadInput, TransportError
from deltazones.types import Candle

MINUTE = 60_000
NOW = 28_333_333 * MINUTE


class FakeKlines:
    def __init__(self, fail_before=None):
        self.fail_before = fail_before
        self.requests = []

    def fetch_klines(self, symbol, interval, start, end, limit=1000):
        self.requests.append((start, end))
        if self.fail_before is not None and start < self.fail_before:
            raise TransportError('binance', 'HTTP 429')
        step = interval_to_ms(interval)
        first = -(-start // step) * step
        return [Candle(t, 1, 1, 1, 1, 1) for t in range(first, end + 1, step)][:limit]


def test_interval_to_ms():
    assert interval_to_ms('1m') == MINUTE
    assert interval_to_ms('5m') == 5 * MINUTE
    assert interval_to_ms('4h') == 4 * 60 * MINUTE
    assert interval_to_ms('1d') == 24 * 60 * MINUTE
    for bad in ('', 'm', '0m', '5x', 'fivem'):
        with pytest.raises(BadInput):
            interval_to_ms(bad)


def test_chunk_ranges_cover_period_newest_first():
    ranges = chunk_ranges(0, 2500 * MINUTE, MINUTE)
    assert ranges[0] == (1501 * MINUTE, 2500 * MINUTE)
    assert ranges[-1][0] == 0
    starts = [r[0] for r in ranges]
    assert starts == sorted(starts, reverse=True)


def test_fetch_one_month_of_minutes():
    connector = FakeKlines()
    candles = asyncio.run(fetch_candle_history(connector, 'BTCUSDT', '1m', months=1, concurrency=4, now=NOW))

    times = [c.time for c in candles]
    assert len(candles) == 30 * 24 * 60
    assert times == sorted(set(times))
    assert times[-1] == NOW
    assert len(connector.requests) == 44


def test_failed_chunk_is_skipped():
    connector = FakeKlines(fail_before=NOW - 10_000 * MINUTE)
    candles = asyncio.run(fetch_candle_history(connector, 'BTCUSDT', '1m', months=1, now=NOW))

    assert 0 < len(candles) < 30 * 24 * 60
    assert candles[-1].time == NOW


def test_months_must_be_positive():
    with pytest.raises(BadInput):
        asyncio.run(fetch_candle_history(FakeKlines(), 'BTCUSDT', '1m', months=0))
