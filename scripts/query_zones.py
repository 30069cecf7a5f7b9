#!/usr/bin/env python3
"""
Query delta zones for a symbol.

Examples:
    python scripts/query_zones.py candles BTCUSDT --interval 5m --months 3
    python scripts/query_zones.py trades BTCUSDT --exchange binance --exchange kraken --bucket-size 25
    python scripts/query_zones.py trades BTCUSDT --hours 24 --json
"""

import argparse
import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from deltazones import config
from deltazones.processors.zone_service import DEFAULT_BUCKET_SIZE, ZoneService
from deltazones.processors.zones import ZoneOptions
from deltazones.storage.database import init_database
from deltazones.types import now_ms


def print_side(title: str, zones: list):
    print(f"\n{title} ({len(zones)})")
    print("-" * 80)
    for z in zones:
        score = f"  score {z['score']:3d}" if 'score' in z else ''
        print(f"  ${z['price']:>12,.2f}  dist {z['distance']:>10,.2f}  vol {z['volume']:>14,.4f}  "
              f"delta {z['delta']:>+14,.4f}{score}  {z['time']}")


def print_payload(payload: dict):
    if not payload['ok']:
        print(f"❌ {payload['error']['kind']}: {payload['error']['message']}")
        return

    print("=" * 80)
    print(f"{payload['symbol']} {payload['granularity']} zones @ ${payload['currentPrice']:,.2f} "
          f"(price from {payload['priceSource']})")
    print("=" * 80)
    print_side("ABOVE", payload['above'])
    print_side("BELOW", payload['below'])


async def run(args) -> dict:
    options = ZoneOptions(
        min_separation=args.min_separation,
        range_limit=args.range_limit,
        range_limit_pct=args.range_pct,
        max_levels=args.max_levels,
        delta_floor=args.delta_floor,
        score=not args.no_score
    )
    service = ZoneService()

    if args.command == 'candles':
        return await service.candle_zones(args.symbol, args.interval, args.months, options)

    since = now_ms() - int(args.hours * 60 * 60 * 1000) if args.hours else None
    return await service.trade_zones(args.symbol, args.exchange, since, args.bucket_size, options)


def main():
    parser = argparse.ArgumentParser(description="Query delta zones")
    parser.add_argument('--json', action='store_true', help="Print the raw payload")
    parser.add_argument('--min-separation', type=float, default=50.0)
    parser.add_argument('--range-limit', type=float, default=300.0)
    parser.add_argument('--range-pct', type=float, default=None)
    parser.add_argument('--max-levels', type=int, default=30)
    parser.add_argument('--delta-floor', type=float, default=None)
    parser.add_argument('--no-score', action='store_true')
    sub = parser.add_subparsers(dest='command', required=True)

    p_candles = sub.add_parser('candles', help="Delta-spike zones from candle history")
    p_candles.add_argument('symbol')
    p_candles.add_argument('--interval', default='5m')
    p_candles.add_argument('--months', type=float, default=3)

    p_trades = sub.add_parser('trades', help="Volume-anomaly zones from stored trades")
    p_trades.add_argument('symbol')
    p_trades.add_argument('--exchange', action='append', help="Repeat to select several venues")
    p_trades.add_argument('--hours', type=float, default=None, help="Only trades from the last N hours")
    p_trades.add_argument('--bucket-size', type=float, default=DEFAULT_BUCKET_SIZE)

    args = parser.parse_args()

    config.setup_logging(level='WARNING' if args.json else None)
    if args.command == 'trades':
        init_database()

    payload = asyncio.run(run(args))
    if args.json:
        print(json.dumps(payload, indent=2))
    else:
        print_payload(payload)

    sys.exit(0 if payload['ok'] else 1)


if __name__ == "__main__":
    main()
