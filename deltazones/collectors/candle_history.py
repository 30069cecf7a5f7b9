"""
Candle History Fetcher

Loads several months of candles for the real-time zone path. Binance caps
klines at 1000 rows per request, so the period is cut into chunks of 1000
candles walking backwards from now, and chunks are fetched in parallel with
a small concurrency limit.

A chunk that fails is logged and skipped; the caller gets whatever was
fetched.
"""

import asyncio
import logging
import math
from typing import List, Optional

from deltazones import config
from deltazones.errors import BadInput, TransportError
from deltazones.types import Candle, now_ms

logger = logging.getLogger(__name__)

CANDLES_PER_REQUEST = 1000
MONTH_MS = 30 * 24 * 60 * 60 * 1000  # approx

_UNIT_MS = {
    'm': 60 * 1000,
    'h': 60 * 60 * 1000,
    'd': 24 * 60 * 60 * 1000,
    'w': 7 * 24 * 60 * 60 * 1000,
}


def interval_to_ms(interval: str) -> int:
    """
    Convert a kline interval ('1m', '5m', '1h', '1d') to milliseconds.

    Raises:
        BadInput: for unknown intervals
    """
    interval = (interval or '').strip()
    if len(interval) < 2 or interval[-1] not in _UNIT_MS or not interval[:-1].isdigit():
        raise BadInput(f"Invalid interval: {interval!r}")
    count = int(interval[:-1])
    if count <= 0:
        raise BadInput(f"Invalid interval: {interval!r}")
    return count * _UNIT_MS[interval[-1]]


def chunk_ranges(start_time: int, end_time: int, interval_ms: int,
                 per_request: int = CANDLES_PER_REQUEST) -> List[tuple]:
    """
    Build (start, end) request ranges from end_time backwards to start_time.

    Returns:
        Ranges ordered most recent first
    """
    chunk_ms = per_request * interval_ms
    ranges = []
    end = end_time
    while end > start_time:
        ranges.append((max(start_time, end - chunk_ms + interval_ms), end))
        end -= chunk_ms
    return ranges


async def fetch_candle_history(
    connector,
    symbol: str,
    interval: str = '5m',
    months: float = 3,
    concurrency: Optional[int] = None,
    now: Optional[int] = None
) -> List[Candle]:
    """
    Fetch roughly `months` of candles, oldest first.

    Args:
        connector: Anything with fetch_klines(symbol, interval, start, end, limit)
        symbol: Canonical symbol
        interval: Kline interval
        months: Look-back in (30-day) months
        concurrency: Parallel chunk requests (default CANDLE_FETCH_CONCURRENCY)
        now: Reference time in epoch ms (default: current time)

    Returns:
        Candles sorted by open time, de-duplicated
    """
    if months <= 0:
        raise BadInput("months must be positive")

    interval_ms = interval_to_ms(interval)
    end_time = now if now is not None else now_ms()
    period_ms = int(months * MONTH_MS)
    start_time = end_time - period_ms
    candles_needed = math.ceil(period_ms / interval_ms)

    semaphore = asyncio.Semaphore(max(1, concurrency or config.CANDLE_FETCH_CONCURRENCY))

    async def fetch_chunk(chunk):
        chunk_start, chunk_end = chunk
        async with semaphore:
            try:
                return await asyncio.to_thread(
                    connector.fetch_klines, symbol, interval, chunk_start, chunk_end, CANDLES_PER_REQUEST
                )
            except TransportError as e:
                logger.warning(f"Candle chunk {chunk_start}..{chunk_end} failed: {e}")
                return []

    ranges = chunk_ranges(start_time, end_time, interval_ms)
    results = await asyncio.gather(*(fetch_chunk(r) for r in ranges))

    by_time = {}
    for batch in results:
        for candle in batch:
            by_time[candle.time] = candle

    flat = [by_time[t] for t in sorted(by_time)]
    logger.info(f"Fetched {len(flat)} {interval} candles for {symbol} in {len(ranges)} chunks")
    return flat[-candles_needed:] if candles_needed else flat
