"""
Kraken Spot REST Connector

Range-capable through a time cursor: /0/public/Trades takes `since`
(nanoseconds) and returns up to 1000 trades after it plus a `last` cursor
for the next page. There is no end parameter, so pages are fetched until
the window end is passed and rows beyond it are dropped.

Response envelope:
    {"error": [], "result": {"XXBTZUSD": [[price, volume, time, side,
     ordertype, misc, trade_id], ...], "last": "1688669448403709451"}}
"""

import logging
from typing import Any, List, Optional

from deltazones.collectors.http import HttpClient
from deltazones.collectors.records import build_trade, to_float
from deltazones.collectors.symbols import normalize_symbol, to_kraken
from deltazones.errors import MalformedRecord, TransportError
from deltazones.types import Exchange, Trade

logger = logging.getLogger(__name__)


class KrakenConnector:
    """Kraken public trades"""

    exchange = Exchange.KRAKEN
    range_capable = True
    max_limit = 1000
    max_pages = 20

    def __init__(self, base_url: str = "https://api.kraken.com", session=None, timeout: float = None):
        self.http = HttpClient(self.exchange.value, base_url, timeout=timeout, session=session)

    def venue_symbol(self, symbol: str) -> str:
        return to_kraken(symbol)

    def _result(self, payload: Any) -> dict:
        if not isinstance(payload, dict):
            raise TransportError(self.exchange.value, f"unexpected payload: {str(payload)[:200]}")
        errors = payload.get('error') or []
        if errors:
            raise TransportError(self.exchange.value, f"API error: {', '.join(map(str, errors))}")
        result = payload.get('result')
        if not isinstance(result, dict):
            raise TransportError(self.exchange.value, "response has no result object")
        return result

    def fetch(
        self,
        symbol: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 1000
    ) -> List[list]:
        """
        Fetch trades in [start, end] by following the `last` cursor.

        Args:
            symbol: Canonical symbol
            start: Window start, epoch ms (inclusive)
            end: Window end, epoch ms (inclusive)
            limit: Rows per page (max 1000)

        Returns:
            Raw trade rows
        """
        params = {'pair': self.venue_symbol(symbol), 'count': max(1, min(int(limit), self.max_limit))}
        if start is not None:
            params['since'] = int(start) * 1_000_000

        records: List[list] = []
        for _ in range(self.max_pages):
            result = self._result(self.http.get_json('/0/public/Trades', params=params))
            rows = []
            for key, value in result.items():
                if key != 'last' and isinstance(value, list):
                    rows = value
                    break

            if end is None:
                return rows

            past_end = False
            for row in rows:
                ts = self._row_ms(row)
                if ts is not None and ts > end:
                    past_end = True
                    continue
                if ts is not None and start is not None and ts < start:
                    continue
                records.append(row)

            last = result.get('last')
            if past_end or not rows or len(rows) < params['count'] or not last or str(last) == str(params.get('since')):
                break
            params['since'] = last
        else:
            logger.warning(f"Kraken {symbol}: page cap reached for window {start}..{end}")

        return records

    @staticmethod
    def _row_ms(row) -> Optional[int]:
        try:
            seconds = to_float(row[2])
        except (IndexError, TypeError, KeyError):
            return None
        return int(seconds * 1000) if seconds is not None else None

    def normalize(self, raw: list, symbol: str) -> Optional[Trade]:
        """Side is 'b'/'s'; the trade id is the seventh element on current API versions"""
        try:
            if not isinstance(raw, (list, tuple)) or len(raw) < 2:
                raise MalformedRecord(f"kraken: bad trade row {raw!r}")
            side = raw[3] if len(raw) > 3 else None
            native_id = raw[6] if len(raw) > 6 else None
            return build_trade(
                self.exchange,
                normalize_symbol(symbol),
                native_id,
                raw[0],
                raw[1],
                side,
                self._row_ms(raw)
            )
        except MalformedRecord as e:
            logger.debug(f"Skipping record: {e}")
            return None

    def fetch_trades(self, symbol: str, start: Optional[int] = None, end: Optional[int] = None,
                     limit: int = 1000) -> List[Trade]:
        raw = self.fetch(symbol, start, end, limit)
        return [t for t in (self.normalize(r, symbol) for r in raw) if t is not None]

    def fetch_price(self, symbol: str) -> float:
        """Last trade price: result[<pair>]['c'][0]"""
        result = self._result(self.http.get_json('/0/public/Ticker', params={'pair': self.venue_symbol(symbol)}))
        for ticker in result.values():
            last = ticker.get('c') if isinstance(ticker, dict) else None
            if isinstance(last, (list, tuple)) and last:
                price = to_float(last[0])
                if price is not None and price > 0:
                    return price
        raise TransportError(self.exchange.value, "malformed ticker payload")

    def close(self):
        self.http.close()
