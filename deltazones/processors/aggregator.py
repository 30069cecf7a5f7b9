"""
Price Bucket Aggregator

Folds trades or candles into price buckets:

    bucket = floor(price / bucket_size + 0.5) * bucket_size    (round half up)

Trades contribute their quantity with a buy/sell split; candles contribute
their volume at the close price with no side information. Every bucket
records which granularity it came from, since volume thresholds are not
comparable between the two.

Accumulation is a plain sum, so partial aggregations can be combined with
`merge_buckets` in any order.
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence

import numpy as np
import pandas as pd

from deltazones.errors import BadInput
from deltazones.types import (
    BUY, CANDLE_GRANULARITY, TRADE_GRANULARITY,
    Candle, PriceBucket, Trade
)

logger = logging.getLogger(__name__)

# Decimal places kept on bucket prices, hides float noise like 0.30000000000000004
PRICE_DECIMALS = 10

# price / bucket_size is rounded first, so 100.05 / 0.1 lands on 1000.5 and not 1000.4999999999999
QUOTIENT_DECIMALS = 9

_COLUMNS = ['price', 'volume', 'buy_volume', 'sell_volume', 'timestamp']


def bucket_price(price: float, bucket_size: float) -> float:
    """Bucket key for a single price, round half up"""
    _check_bucket_size(bucket_size)
    return round(math.floor(round(price / bucket_size, QUOTIENT_DECIMALS) + 0.5) * bucket_size, PRICE_DECIMALS)


def _check_bucket_size(bucket_size: float):
    if bucket_size is None or not bucket_size > 0:
        raise BadInput(f"bucket_size must be positive, got {bucket_size!r}")


def _bucketize(df: pd.DataFrame, bucket_size: float, granularity: str) -> List[PriceBucket]:
    if df.empty:
        return []

    quotient = (df['price'] / bucket_size).round(QUOTIENT_DECIMALS)
    df = df.assign(bucket=(np.floor(quotient + 0.5) * bucket_size).round(PRICE_DECIMALS))
    grouped = df.groupby('bucket', sort=True).agg(
        volume=('volume', 'sum'),
        buy_volume=('buy_volume', 'sum'),
        sell_volume=('sell_volume', 'sum'),
        last_timestamp=('timestamp', 'max'),
        count=('volume', 'size')
    )

    return [
        PriceBucket(
            price=float(price),
            volume=float(row['volume']),
            buy_volume=float(row['buy_volume']),
            sell_volume=float(row['sell_volume']),
            last_timestamp=int(row['last_timestamp']),
            count=int(row['count']),
            granularity=granularity
        )
        for price, row in grouped.iterrows()
    ]


def _in_window(ts: int, since: Optional[int], until: Optional[int]) -> bool:
    return (since is None or ts >= since) and (until is None or ts <= until)


def aggregate_trades(
    trades: Iterable[Trade],
    bucket_size: float,
    since: Optional[int] = None,
    until: Optional[int] = None
) -> List[PriceBucket]:
    """
    Aggregate trades into price buckets.

    Args:
        trades: Canonical trades
        bucket_size: Price step of a bucket
        since: Ignore trades before this epoch ms
        until: Ignore trades after this epoch ms

    Returns:
        Buckets sorted by price ascending
    """
    _check_bucket_size(bucket_size)
    rows = [
        (t.price, t.quantity,
         t.quantity if t.side == BUY else 0.0,
         0.0 if t.side == BUY else t.quantity,
         t.timestamp)
        for t in trades
        if _in_window(t.timestamp, since, until)
    ]
    return _bucketize(pd.DataFrame(rows, columns=_COLUMNS), bucket_size, TRADE_GRANULARITY)


def aggregate_candles(
    candles: Iterable[Candle],
    bucket_size: float,
    since: Optional[int] = None,
    until: Optional[int] = None
) -> List[PriceBucket]:
    """Aggregate candle volume at each candle's close price"""
    _check_bucket_size(bucket_size)
    rows = [
        (c.close, c.volume, 0.0, 0.0, c.time)
        for c in candles
        if _in_window(c.time, since, until)
    ]
    return _bucketize(pd.DataFrame(rows, columns=_COLUMNS), bucket_size, CANDLE_GRANULARITY)


def aggregate(
    records: Sequence,
    bucket_size: float,
    since: Optional[int] = None,
    until: Optional[int] = None
) -> List[PriceBucket]:
    """Aggregate trades or candles, picked by the type of the records"""
    records = list(records)
    if records and isinstance(records[0], Candle):
        return aggregate_candles(records, bucket_size, since, until)
    return aggregate_trades(records, bucket_size, since, until)


def merge_buckets(*bucket_lists: Iterable[PriceBucket]) -> List[PriceBucket]:
    """
    Combine partial aggregations made with the same bucket size.

    Raises:
        BadInput: when mixing trade and candle granularity
    """
    merged = {}
    for buckets in bucket_lists:
        for b in buckets:
            current = merged.get(b.price)
            if current is None:
                merged[b.price] = PriceBucket(
                    price=b.price,
                    volume=b.volume,
                    buy_volume=b.buy_volume,
                    sell_volume=b.sell_volume,
                    last_timestamp=b.last_timestamp,
                    count=b.count,
                    granularity=b.granularity
                )
                continue
            if current.granularity != b.granularity:
                raise BadInput("Cannot merge trade and candle buckets")
            current.volume += b.volume
            current.buy_volume += b.buy_volume
            current.sell_volume += b.sell_volume
            current.last_timestamp = max(current.last_timestamp, b.last_timestamp)
            current.count += b.count

    return [merged[price] for price in sorted(merged)]
