"""
Binance Spot REST Connector

Range-capable: /api/v3/aggTrades accepts startTime/endTime (at most one
hour apart), which is why backfill windows default to one hour. Binance
returns at most `limit` rows per call, so a full window is paged through
with fromId once the first page is saturated.

Also serves the ticker price and the klines used by the real-time path.
"""

import logging
from typing import Any, Dict, List, Optional

from deltazones.collectors.http import HttpClient
from deltazones.collectors.records import build_trade, to_float
from deltazones.collectors.symbols import normalize_symbol
from deltazones.errors import MalformedRecord, TransportError
from deltazones.types import Candle, Exchange, Trade

logger = logging.getLogger(__name__)


class BinanceConnector:
    """
    Binance aggregated trades.

    Raw aggTrade record:
        {"a": 26129, "p": "0.01633102", "q": "4.70443515", "f": 27781,
         "l": 27781, "T": 1498793709153, "m": true}

    The live trade stream uses "t" for the trade id instead of "a";
    `normalize` accepts both.
    """

    exchange = Exchange.BINANCE
    range_capable = True
    max_limit = 1000
    max_pages = 50

    def __init__(self, base_url: str = "https://api.binance.com", session=None, timeout: float = None):
        self.http = HttpClient(self.exchange.value, base_url, timeout=timeout, session=session)

    def venue_symbol(self, symbol: str) -> str:
        return normalize_symbol(symbol)

    def fetch(
        self,
        symbol: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """
        Fetch aggregated trades for [start, end].

        Args:
            symbol: Canonical symbol
            start: Window start, epoch ms (inclusive)
            end: Window end, epoch ms (inclusive)
            limit: Page size (max 1000)

        Returns:
            Raw aggTrade records in venue order
        """
        limit = max(1, min(int(limit), self.max_limit))
        params = {'symbol': self.venue_symbol(symbol), 'limit': limit}
        if start is not None and end is not None:
            params['startTime'] = int(start)
            params['endTime'] = int(end)

        records = self._get_page(params)
        if start is None or end is None:
            return records

        pages = 1
        while len(records) >= limit * pages and pages < self.max_pages:
            last_id = records[-1].get('a')
            if last_id is None:
                break
            page = self._get_page({'symbol': params['symbol'], 'limit': limit, 'fromId': int(last_id) + 1})
            in_window = [r for r in page if (to_float(r.get('T')) or 0) <= end]
            records.extend(in_window)
            pages += 1
            if len(in_window) < len(page) or not page:
                break

        if pages >= self.max_pages:
            logger.warning(f"Binance {symbol}: page cap reached for window {start}..{end}")

        return records

    def _get_page(self, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        payload = self.http.get_json('/api/v3/aggTrades', params=params)
        if not isinstance(payload, list):
            raise TransportError(self.exchange.value, f"unexpected aggTrades payload: {str(payload)[:200]}")
        return payload

    def normalize(self, raw: Dict[str, Any], symbol: str) -> Optional[Trade]:
        """
        Convert one raw record into a canonical trade.

        Buyer-is-maker ("m": true) means the aggressor sold.
        """
        try:
            if not isinstance(raw, dict):
                raise MalformedRecord(f"binance: expected object, got {type(raw).__name__}")
            maker = raw.get('m')
            side = None if maker is None else ('sell' if maker else 'buy')
            return build_trade(
                self.exchange,
                normalize_symbol(symbol),
                raw.get('a', raw.get('t')),
                raw.get('p'),
                raw.get('q'),
                side,
                raw.get('T')
            )
        except MalformedRecord as e:
            logger.debug(f"Skipping record: {e}")
            return None

    def fetch_trades(self, symbol: str, start: Optional[int] = None, end: Optional[int] = None,
                     limit: int = 1000) -> List[Trade]:
        raw = self.fetch(symbol, start, end, limit)
        return [t for t in (self.normalize(r, symbol) for r in raw) if t is not None]

    def fetch_price(self, symbol: str) -> float:
        payload = self.http.get_json('/api/v3/ticker/price', params={'symbol': self.venue_symbol(symbol)})
        price = to_float(payload.get('price')) if isinstance(payload, dict) else None
        if price is None or price <= 0:
            raise TransportError(self.exchange.value, f"malformed ticker payload: {str(payload)[:200]}")
        return price

    def fetch_klines(self, symbol: str, interval: str, start: int, end: int, limit: int = 1000) -> List[Candle]:
        """
        Fetch OHLCV candles for [start, end] (endTime inclusive).

        Kline row: [openTime, open, high, low, close, volume, closeTime, ...]
        """
        payload = self.http.get_json('/api/v3/klines', params={
            'symbol': self.venue_symbol(symbol),
            'interval': interval,
            'startTime': int(start),
            'endTime': int(end),
            'limit': max(1, min(int(limit), self.max_limit))
        })
        if not isinstance(payload, list):
            raise TransportError(self.exchange.value, f"unexpected klines payload: {str(payload)[:200]}")

        candles = []
        for row in payload:
            try:
                values = [to_float(v) for v in row[:6]]
            except (TypeError, KeyError):
                continue
            if len(values) < 6 or any(v is None for v in values):
                continue
            candles.append(Candle(
                time=int(values[0]),
                open=values[1],
                high=values[2],
                low=values[3],
                close=values[4],
                volume=values[5]
            ))
        return candles

    def close(self):
        self.http.close()
