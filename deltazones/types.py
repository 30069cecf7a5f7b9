"""
Canonical Data Types

Every connector produces `Trade` objects in this shape, regardless of the
venue's own payload layout. Buckets and zones are computed views and are
never persisted.
"""

import hashlib
import time
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class Exchange(str, Enum):
    """Supported venues"""
    BINANCE = 'binance'
    BYBIT = 'bybit'
    OKX = 'okx'
    COINBASE = 'coinbase'
    KRAKEN = 'kraken'

    @classmethod
    def parse(cls, value) -> 'Exchange':
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


class JobStatus(str, Enum):
    """Backfill job lifecycle: pending -> running -> done | failed"""
    PENDING = 'pending'
    RUNNING = 'running'
    DONE = 'done'
    FAILED = 'failed'

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.FAILED)


BUY = 'buy'
SELL = 'sell'

TRADE_GRANULARITY = 'trade'
CANDLE_GRANULARITY = 'candle'


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds"""
    return int(time.time() * 1000)


def ms_to_iso(ts: int) -> str:
    return datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat().replace('+00:00', 'Z')


def make_identity(exchange: str, symbol: str, native_id=None, timestamp: int = 0,
                  price: float = 0.0, quantity: float = 0.0, side: str = BUY) -> str:
    """
    Build the synthetic trade identity.

    Uses the venue's own trade id when there is one. Otherwise hashes the
    fields that identify the print, so refetching the same window always
    yields the same identity.
    """
    if native_id is not None and str(native_id) != '':
        return f"{exchange}:{symbol}:{native_id}"

    digest = hashlib.sha1(
        f"{timestamp}|{price!r}|{quantity!r}|{side}".encode('utf-8')
    ).hexdigest()[:20]
    return f"{exchange}:{symbol}:h{digest}"


@dataclass(frozen=True)
class Trade:
    """Canonical trade print"""
    identity: str
    exchange: Exchange
    symbol: str
    price: float
    quantity: float
    side: str
    timestamp: int

    def signed_quantity(self) -> float:
        return self.quantity if self.side == BUY else -self.quantity


@dataclass(frozen=True)
class Candle:
    """OHLCV candle, `time` is the open time in epoch ms"""
    time: int
    open: float
    high: float
    low: float
    close: float
    volume: float


@dataclass
class PriceBucket:
    """Volume accumulated at one discretized price level"""
    price: float
    volume: float = 0.0
    buy_volume: float = 0.0
    sell_volume: float = 0.0
    last_timestamp: int = 0
    count: int = 0
    granularity: str = TRADE_GRANULARITY

    @property
    def delta(self) -> float:
        return self.buy_volume - self.sell_volume


@dataclass
class Zone:
    """A significant price level relative to the current price"""
    price: float
    volume: float
    delta: float
    timestamp: int
    distance: float
    score: Optional[int] = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data['time'] = ms_to_iso(self.timestamp)
        if self.score is None:
            data.pop('score')
        return data


@dataclass
class ZoneSet:
    above: list
    below: list

    def to_dict(self) -> dict:
        return {
            'above': [z.to_dict() for z in self.above],
            'below': [z.to_dict() for z in self.below],
        }


@dataclass
class BackfillJob:
    """Snapshot of a persisted backfill job row"""
    id: str
    symbol: str
    exchange: str
    start_ts: int
    end_ts: int
    cursor_ts: int
    status: JobStatus
    message: str
    created_at: int
    updated_at: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data['status'] = self.status.value
        return data
