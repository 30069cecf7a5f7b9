"""
OKX V5 REST Connector

Snapshot-only: /api/v5/market/trades returns the most recent trades of an
instrument (max 500). Canonical symbols are mapped onto the perpetual swap
instrument by default (BTCUSDT -> BTC-USDT-SWAP).

Response envelope:
    {"code": "0", "msg": "", "data": [{"instId": "BTC-USDT-SWAP",
     "tradeId": "242720720", "px": "0.014", "sz": "0.03", "side": "sell",
     "ts": "1597026383085"}]}
"""

import logging
from typing import Any, Dict, List, Optional

from deltazones.collectors.http import HttpClient
from deltazones.collectors.records import build_trade, to_float
from deltazones.collectors.symbols import normalize_symbol, to_okx
from deltazones.errors import MalformedRecord, TransportError
from deltazones.types import Exchange, Trade

logger = logging.getLogger(__name__)


class OkxConnector:
    """OKX recent trades"""

    exchange = Exchange.OKX
    range_capable = False
    max_limit = 500

    def __init__(self, base_url: str = "https://www.okx.com", swap: bool = True,
                 session=None, timeout: float = None):
        self.swap = swap
        self.http = HttpClient(self.exchange.value, base_url, timeout=timeout, session=session)

    def venue_symbol(self, symbol: str) -> str:
        return to_okx(symbol, swap=self.swap)

    def _data(self, payload: Any) -> List[Dict[str, Any]]:
        if not isinstance(payload, dict):
            raise TransportError(self.exchange.value, f"unexpected payload: {str(payload)[:200]}")
        if str(payload.get('code', '0')) != '0':
            raise TransportError(self.exchange.value, f"API error {payload.get('code')}: {payload.get('msg')}")
        data = payload.get('data')
        if not isinstance(data, list):
            raise TransportError(self.exchange.value, "response has no data array")
        return data

    def fetch(
        self,
        symbol: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 500
    ) -> List[Dict[str, Any]]:
        """Latest trades; start/end are accepted for interface parity and ignored"""
        payload = self.http.get_json('/api/v5/market/trades', params={
            'instId': self.venue_symbol(symbol),
            'limit': max(1, min(int(limit), self.max_limit))
        })
        return self._data(payload)

    def normalize(self, raw: Dict[str, Any], symbol: str) -> Optional[Trade]:
        try:
            if not isinstance(raw, dict):
                raise MalformedRecord(f"okx: expected object, got {type(raw).__name__}")
            return build_trade(
                self.exchange,
                normalize_symbol(symbol),
                raw.get('tradeId'),
                raw.get('px'),
                raw.get('sz'),
                raw.get('side'),
                raw.get('ts')
            )
        except MalformedRecord as e:
            logger.debug(f"Skipping record: {e}")
            return None

    def fetch_trades(self, symbol: str, start: Optional[int] = None, end: Optional[int] = None,
                     limit: int = 500) -> List[Trade]:
        raw = self.fetch(symbol, start, end, limit)
        return [t for t in (self.normalize(r, symbol) for r in raw) if t is not None]

    def fetch_price(self, symbol: str) -> float:
        data = self._data(self.http.get_json('/api/v5/market/ticker', params={'instId': self.venue_symbol(symbol)}))
        price = to_float(data[0].get('last')) if data and isinstance(data[0], dict) else None
        if price is None or price <= 0:
            raise TransportError(self.exchange.value, "malformed ticker payload")
        return price

    def close(self):
        self.http.close()
