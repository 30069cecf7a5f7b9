"""
Runtime Configuration

Settings are read from the environment (and a local .env file, if present).
Every value has a default so the package works out of the box against a
local SQLite database.
"""

import os
import sys
import logging
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, default))


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, default))


# Storage
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///data/delta_zones.db')

# Logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
LOG_DIR = os.getenv('LOG_DIR', 'logs')

# Exchange HTTP
HTTP_TIMEOUT = _float('HTTP_TIMEOUT', 20.0)
USER_AGENT = os.getenv('USER_AGENT', 'delta-zones/1.0')

# Backfill engine
BACKFILL_WINDOW_MS = _int('BACKFILL_WINDOW_MS', 60 * 60 * 1000)  # 1 hour
BACKFILL_MAX_ATTEMPTS = _int('BACKFILL_MAX_ATTEMPTS', 3)
BACKFILL_RETRY_DELAY = _float('BACKFILL_RETRY_DELAY', 1.0)
BACKFILL_PACING_DELAY = _float('BACKFILL_PACING_DELAY', 0.25)
BACKFILL_FETCH_CONCURRENCY = _int('BACKFILL_FETCH_CONCURRENCY', 4)
BACKFILL_FETCH_LIMIT = _int('BACKFILL_FETCH_LIMIT', 1000)

# Real-time (candle) path
CANDLE_FETCH_CONCURRENCY = _int('CANDLE_FETCH_CONCURRENCY', 4)

# Ordered fallback chain for current price lookups
PRICE_SOURCES: List[str] = [
    s.strip().lower()
    for s in os.getenv('PRICE_SOURCES', 'binance,bybit,okx,coinbase,kraken').split(',')
    if s.strip()
]


def setup_logging(log_file: Optional[str] = None, level: Optional[str] = None):
    """
    Configure process-wide logging for an entry-point script.

    Args:
        log_file: File name under LOG_DIR to mirror stdout into (optional)
        level: Log level name, defaults to LOG_LEVEL
    """
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(LOG_DIR, exist_ok=True)
        handlers.append(logging.FileHandler(os.path.join(LOG_DIR, log_file)))

    logging.basicConfig(
        level=getattr(logging, level or LOG_LEVEL, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=handlers
    )
