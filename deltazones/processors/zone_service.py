"""
Zone Query Service

The surface an HTTP layer would call. Each query resolves the current price,
loads its data, runs the matching zone strategy and returns a plain dict:

    {"ok": True, "symbol", "currentPrice", "priceSource", "granularity",
     "above": [...], "below": [...]}

or, on failure:

    {"ok": False, "error": {"kind": "bad_input" | "upstream_unavailable",
                            "message": "..."}}
"""

import logging
from typing import Iterable, Optional

from deltazones.collectors.binance import BinanceConnector
from deltazones.collectors.candle_history import fetch_candle_history
from deltazones.collectors.registry import parse_exchange
from deltazones.collectors.symbols import normalize_symbol
from deltazones.errors import BadInput, NoDataAvailable, StorageError, TransportError
from deltazones.processors.aggregator import aggregate_trades
from deltazones.processors.price_resolver import PriceResolver, ResolvedPrice
from deltazones.processors.zones import ZoneOptions, extract_delta_zones, extract_volume_zones
from deltazones.storage.trade_store import TradeStore
from deltazones.types import CANDLE_GRANULARITY, TRADE_GRANULARITY, ZoneSet

logger = logging.getLogger(__name__)

DEFAULT_BUCKET_SIZE = 10.0

BAD_INPUT = 'bad_input'
UPSTREAM_UNAVAILABLE = 'upstream_unavailable'


def error_payload(kind: str, message: str) -> dict:
    return {'ok': False, 'error': {'kind': kind, 'message': message}}


def zones_payload(symbol: str, resolved: ResolvedPrice, granularity: str, zones: ZoneSet) -> dict:
    payload = {
        'ok': True,
        'symbol': symbol,
        'currentPrice': resolved.price,
        'priceSource': resolved.exchange,
        'granularity': granularity,
    }
    payload.update(zones.to_dict())
    return payload


class ZoneService:
    """Candle (real-time) and trade-store (historical) zone queries"""

    def __init__(self, resolver: Optional[PriceResolver] = None, trade_store: Optional[TradeStore] = None,
                 candle_connector=None):
        """
        Args:
            resolver: Current price lookup (default: PriceResolver over PRICE_SOURCES)
            trade_store: Trade persistence (default: TradeStore on the global database)
            candle_connector: Kline source for candle zones (default: BinanceConnector)
        """
        self.resolver = resolver or PriceResolver()
        self.trades = trade_store or TradeStore()
        self.candles = candle_connector or BinanceConnector()

    async def candle_zones(self, symbol: str, interval: str = '5m', months: float = 3,
                           options: Optional[ZoneOptions] = None) -> dict:
        """
        Delta-spike zones from recent candle history.

        Args:
            symbol: Symbol to query
            interval: Kline interval
            months: Look-back in months
            options: Zone extraction knobs

        Returns:
            Zones payload or error payload
        """
        try:
            symbol = normalize_symbol(symbol)
            resolved = await self.resolver.resolve_async(symbol)
            candles = await fetch_candle_history(self.candles, symbol, interval, months)
            zones = extract_delta_zones(candles, resolved.price, options)
        except BadInput as e:
            return error_payload(BAD_INPUT, str(e))
        except (NoDataAvailable, TransportError) as e:
            logger.warning(f"Candle zones for {symbol} unavailable: {e}")
            return error_payload(UPSTREAM_UNAVAILABLE, str(e))

        logger.info(
            f"{symbol} candle zones @ {resolved.price} ({resolved.exchange}): "
            f"{len(zones.above)} above, {len(zones.below)} below from {len(candles)} candles"
        )
        return zones_payload(symbol, resolved, CANDLE_GRANULARITY, zones)

    async def trade_zones(self, symbol: str, exchanges: Optional[Iterable[str]] = None,
                          since: Optional[int] = None, bucket_size: float = DEFAULT_BUCKET_SIZE,
                          options: Optional[ZoneOptions] = None) -> dict:
        """
        Volume-anomaly zones from stored trades.

        Args:
            symbol: Symbol to query
            exchanges: Restrict to these venues (default: all stored)
            since: Only trades at or after this epoch ms
            bucket_size: Price step for aggregation
            options: Zone extraction knobs

        Returns:
            Zones payload or error payload. No stored trades gives an ok
            payload with empty sides.
        """
        try:
            symbol = normalize_symbol(symbol)
            venues = [parse_exchange(e).value for e in exchanges] if exchanges else None
            if bucket_size is None or not bucket_size > 0:
                raise BadInput(f"bucket_size must be positive, got {bucket_size!r}")
            resolved = await self.resolver.resolve_async(symbol)
            trades = self.trades.query(symbol, exchanges=venues, since=since)
            buckets = aggregate_trades(trades, bucket_size)
            zones = extract_volume_zones(buckets, resolved.price, options)
        except BadInput as e:
            return error_payload(BAD_INPUT, str(e))
        except (NoDataAvailable, StorageError, TransportError) as e:
            logger.warning(f"Trade zones for {symbol} unavailable: {e}")
            return error_payload(UPSTREAM_UNAVAILABLE, str(e))

        logger.info(
            f"{symbol} trade zones @ {resolved.price} ({resolved.exchange}): "
            f"{len(zones.above)} above, {len(zones.below)} below from {len(trades)} trades"
        )
        return zones_payload(symbol, resolved, TRADE_GRANULARITY, zones)
