"""
Bybit V5 REST Connector

Snapshot-only: /v5/market/recent-trade returns the latest public trades
and takes no time range. Window bounds passed to `fetch` are ignored.

Response envelope:
    {"retCode": 0, "retMsg": "OK", "result": {"category": "spot",
     "list": [{"execId": "...", "symbol": "BTCUSDT", "price": "16618.49",
     "size": "0.00012", "side": "Buy", "time": "1672052955758"}]}}
"""

import logging
from typing import Any, Dict, List, Optional

from deltazones.collectors.http import HttpClient
from deltazones.collectors.records import build_trade, to_float
from deltazones.collectors.symbols import normalize_symbol
from deltazones.errors import MalformedRecord, TransportError
from deltazones.types import Exchange, Trade

logger = logging.getLogger(__name__)

# Bybit caps recent-trade at 60 rows for spot and 1000 for derivatives
_CATEGORY_LIMITS = {'spot': 60, 'linear': 1000, 'inverse': 1000}


class BybitConnector:
    """Bybit recent trades"""

    exchange = Exchange.BYBIT
    range_capable = False

    def __init__(self, base_url: str = "https://api.bybit.com", category: str = 'spot',
                 session=None, timeout: float = None):
        self.category = category
        self.http = HttpClient(self.exchange.value, base_url, timeout=timeout, session=session)

    def venue_symbol(self, symbol: str) -> str:
        return normalize_symbol(symbol)

    def _result_list(self, payload: Any) -> List[Dict[str, Any]]:
        if not isinstance(payload, dict):
            raise TransportError(self.exchange.value, f"unexpected payload: {str(payload)[:200]}")
        if payload.get('retCode', 0) != 0:
            raise TransportError(self.exchange.value, f"API error {payload.get('retCode')}: {payload.get('retMsg')}")
        result = payload.get('result')
        rows = result.get('list') if isinstance(result, dict) else None
        if not isinstance(rows, list):
            raise TransportError(self.exchange.value, "response has no result.list")
        return rows

    def fetch(
        self,
        symbol: str,
        start: Optional[int] = None,
        end: Optional[int] = None,
        limit: int = 1000
    ) -> List[Dict[str, Any]]:
        """Latest trades; start/end are accepted for interface parity and ignored"""
        cap = _CATEGORY_LIMITS.get(self.category, 60)
        payload = self.http.get_json('/v5/market/recent-trade', params={
            'category': self.category,
            'symbol': self.venue_symbol(symbol),
            'limit': max(1, min(int(limit), cap))
        })
        return self._result_list(payload)

    def normalize(self, raw: Dict[str, Any], symbol: str) -> Optional[Trade]:
        try:
            if not isinstance(raw, dict):
                raise MalformedRecord(f"bybit: expected object, got {type(raw).__name__}")
            return build_trade(
                self.exchange,
                normalize_symbol(symbol),
                raw.get('execId'),
                raw.get('price'),
                raw.get('size'),
                raw.get('side'),
                raw.get('time')
            )
        except MalformedRecord as e:
            logger.debug(f"Skipping record: {e}")
            return None

    def fetch_trades(self, symbol: str, start: Optional[int] = None, end: Optional[int] = None,
                     limit: int = 1000) -> List[Trade]:
        raw = self.fetch(symbol, start, end, limit)
        return [t for t in (self.normalize(r, symbol) for r in raw) if t is not None]

    def fetch_price(self, symbol: str) -> float:
        rows = self._result_list(self.http.get_json('/v5/market/tickers', params={
            'category': self.category,
            'symbol': self.venue_symbol(symbol)
        }))
        price = to_float(rows[0].get('lastPrice')) if rows and isinstance(rows[0], dict) else None
        if price is None or price <= 0:
            raise TransportError(self.exchange.value, "malformed ticker payload")
        return price

    def close(self):
        self.http.close()
