"""
Live trade collector message handling (no socket involved).
"""

import json

from deltazones.collectors.live_trades import BinanceLiveTradesCollector
from deltazones.types import BUY, SELL


def message(trade_id, price, qty, buyer_maker, ts=1_700_000_000_000):
    return json.dumps({
        'e': 'trade', 'E': ts, 's': 'BTCUSDT', 't': trade_id,
        'p': str(price), 'q': str(qty), 'T': ts, 'm': buyer_maker
    })


def test_trades_are_stored_and_cvd_tracked(trade_store):
    collector = BinanceLiveTradesCollector('btcusdt', store=trade_store)

    buy = collector.handle_message(message(1, 65000.0, 0.5, False))
    sell = collector.handle_message(message(2, 64999.0, 0.2, True))

    assert buy.side == BUY and sell.side == SELL
    assert collector.cumulative_volume_delta == 0.5 - 0.2
    assert collector.trades_stored == 2
    assert trade_store.count('BTCUSDT') == 2


def test_replayed_message_is_not_stored_twice(trade_store):
    collector = BinanceLiveTradesCollector(store=trade_store)
    collector.handle_message(message(1, 65000.0, 0.5, False))
    collector.handle_message(message(1, 65000.0, 0.5, False))

    assert collector.trades_seen == 2
    assert collector.trades_stored == 1
    assert trade_store.count('BTCUSDT') == 1


def test_ignored_messages(trade_store):
    collector = BinanceLiveTradesCollector(store=trade_store)

    assert collector.handle_message('not json') is None
    assert collector.handle_message(json.dumps({'result': None, 'id': 1})) is None
    assert collector.handle_message(json.dumps({'e': 'aggTrade', 'a': 1, 'p': '1', 'q': '1'})) is None
    assert collector.handle_message(message(3, 'NaN', 1, False)) is None
    assert collector.trades_seen == 0
    assert collector.websocket_url.endswith('/ws/btcusdt@trade')
