"""
Coinbase Exchange REST Connector

Snapshot-only: /products/{product_id}/trades returns the latest trades as a
top-level JSON array, newest first.

Trade format:
{
    "time": "2014-11-07T22:19:28.578544Z",
    "trade_id": 74,
    "price": "10.00000000",
    "size": "0.01000000",
    "side": "buy"
}

`side` is the maker order's side, so the aggressor is the opposite side.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from deltazones.collectors.http import HttpClient
from deltazones.collectors.records import build_trade, to_float
from deltazones.collectors.symbols import normalize_symbol, to_coinbase
from deltazones.errors import MalformedRecord, TransportError
from deltazones.types import BUY, SELL, Exchange, Trade

logger = logging.getLogger(__name__)

_TAKER_SIDE = {'buy': SELL, 'sell': BUY}

_FRACTION = re.compile(r'\.(\d+)')


def parse_time_ms(value: Any) -> Optional[int]:
    """
    ISO-8601 timestamp to epoch ms, None if it can't be parsed.

    Coinbase trims trailing zeros from the fraction ("...:28.5Z"), which
    datetime.fromisoformat only accepts from Python 3.11 on, so the fraction
    is padded to microseconds first. Naive timestamps are taken as UTC.
    """
    if not value:
        return None
    text = str(value).strip().replace('Z', '+00:00')
    text = _FRACTION.sub(lambda m: '.' + (m.group(1) + '000000')[:6], text, count=1)
    try:
        dt = datetime.fromisoformat(text)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp()) * 1000 + dt.microsecond // 1000


class CoinbaseConnector:
    """Coinbase Exchange recent trades"""

    exchange = Exchange.COINBASE
    range_capable = False
    max_limit = 1000

    def __init__(self, base_url: str = "https://api.exchange.coinbase.com", session=None, timeout: float = None):
        self.http = HttpClient(self.exchange.value, base_url, timeout=timeout, session=session)

    def venue_symbol(self, symbol: str) -> str:
        return to_coinbase(symbol)

    def fetch(
        self,
        symbol: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """Latest trades; start/end are accepted for interface parity and ignored"""
        product_id = self.venue_symbol(symbol)
        payload = self.http.get_json(
            f'/products/{product_id}/trades',
            params={'limit': max(1, min(int(limit), self.max_limit))}
        )
        if not isinstance(payload, list):
            raise TransportError(self.exchange.value, f"unexpected trades payload: {str(payload)[:200]}")
        return payload

    def normalize(self, raw: Dict[str, Any], symbol: str) -> Optional[Trade]:
        try:
            if not isinstance(raw, dict):
                raise MalformedRecord(f"coinbase: expected object, got {type(raw).__name__}")
            maker_side = str(raw.get('side') or '').lower()
            return build_trade(
                self.exchange,
                normalize_symbol(symbol),
                raw.get('trade_id'),
                raw.get('price'),
                raw.get('size'),
                _TAKER_SIDE.get(maker_side),
                parse_time_ms(raw.get('time'))
            )
        except MalformedRecord as e:
            logger.debug(f"Skipping record: {e}")
            return None

    def fetch_trades(self, symbol: str, start: Optional[int] = None, end: Optional[int] = None,
                     limit: int = 1000) -> List[Trade]:
        raw = self.fetch(symbol, start, end, limit)
        return [t for t in (self.normalize(r, symbol) for r in raw) if t is not None]

    def fetch_price(self, symbol: str) -> float:
        payload = self.http.get_json(f'/products/{self.venue_symbol(symbol)}/ticker')
        price = to_float(payload.get('price')) if isinstance(payload, dict) else None
        if price is None or price <= 0:
            raise TransportError(self.exchange.value, f"malformed ticker payload: {str(payload)[:200]}")
        return price

    def close(self):
        self.http.close()
