"""
Connector registry: one adapter per venue, selected by exchange id.
"""

from typing import Dict

from deltazones.collectors.binance import BinanceConnector
from deltazones.collectors.bybit import BybitConnector
from deltazones.collectors.coinbase import CoinbaseConnector
from deltazones.collectors.kraken import KrakenConnector
from deltazones.collectors.okx import OkxConnector
from deltazones.errors import BadInput
from deltazones.types import Exchange

CONNECTORS: Dict[Exchange, type] = {
    Exchange.BINANCE: BinanceConnector,
    Exchange.BYBIT: BybitConnector,
    Exchange.OKX: OkxConnector,
    Exchange.COINBASE: CoinbaseConnector,
    Exchange.KRAKEN: KrakenConnector,
}


def parse_exchange(value) -> Exchange:
    try:
        return Exchange.parse(value)
    except ValueError:
        supported = ', '.join(e.value for e in Exchange)
        raise BadInput(f"Unsupported exchange {value!r} (supported: {supported})") from None


def get_connector(exchange, **kwargs):
    """
    Build the connector for a venue.

    Args:
        exchange: Exchange enum or its name
        **kwargs: Passed to the connector constructor (session, timeout, base_url)
    """
    return CONNECTORS[parse_exchange(exchange)](**kwargs)


def is_range_capable(exchange) -> bool:
    return CONNECTORS[parse_exchange(exchange)].range_capable
