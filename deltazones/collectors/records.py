"""
Building canonical trades out of venue fields.

Connectors pull the raw values out of their payloads and hand them to
`build_trade`, which applies the shared defaults:

- missing side -> buy
- missing quantity -> 0
- missing timestamp -> fetch time
- missing/non-positive price -> MalformedRecord
"""

import math
from typing import Any, Optional

from deltazones.errors import MalformedRecord
from deltazones.types import BUY, SELL, Exchange, Trade, make_identity, now_ms

_SIDES = {
    'buy': BUY, 'b': BUY, 'bid': BUY,
    'sell': SELL, 's': SELL, 'ask': SELL,
}


def to_float(value: Any) -> Optional[float]:
    """Parse a number from a venue payload, None if absent or unparseable"""
    if value is None or value == '':
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def parse_side(value: Any) -> str:
    if value is None:
        return BUY
    return _SIDES.get(str(value).strip().lower(), BUY)


def build_trade(
    exchange: Exchange,
    symbol: str,
    native_id: Any,
    price: Any,
    quantity: Any,
    side: Any,
    timestamp_ms: Any
) -> Trade:
    """
    Assemble a canonical trade.

    Raises:
        MalformedRecord: when there is no usable price or quantity
    """
    px = to_float(price)
    if px is None or px <= 0:
        raise MalformedRecord(f"{exchange.value}: unusable price {price!r}")

    qty = to_float(quantity)
    if qty is None:
        if quantity not in (None, ''):
            raise MalformedRecord(f"{exchange.value}: unusable quantity {quantity!r}")
        qty = 0.0
    if qty < 0:
        raise MalformedRecord(f"{exchange.value}: negative quantity {quantity!r}")

    reported = to_float(timestamp_ms)
    reported = int(reported) if reported is not None and reported > 0 else 0

    trade_side = parse_side(side)
    # Identity only ever uses venue-reported fields, never the fetch time
    identity = make_identity(exchange.value, symbol, native_id, reported, px, qty, trade_side)
    return Trade(
        identity=identity,
        exchange=exchange,
        symbol=symbol,
        price=px,
        quantity=qty,
        side=trade_side,
        timestamp=reported or now_ms()
    )
