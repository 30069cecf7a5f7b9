"""
Symbol translation between the canonical ticker (BTCUSDT) and each
venue's instrument naming.
"""

from typing import Tuple

from deltazones.errors import BadInput

# Longest first so USDT wins over USD
KNOWN_QUOTES = ('FDUSD', 'USDT', 'USDC', 'BUSD', 'USD', 'EUR', 'GBP', 'BTC', 'ETH')

_KRAKEN_ASSETS = {'BTC': 'XBT', 'DOGE': 'XDG'}


def normalize_symbol(symbol: str) -> str:
    """
    Canonical form: uppercase, no separators, BTC rather than XBT.

    >>> normalize_symbol('btc-usdt')
    'BTCUSDT'
    """
    if not symbol or not str(symbol).strip():
        raise BadInput("symbol is required")
    cleaned = str(symbol).strip().upper()
    for sep in ('-', '/', '_', ':'):
        cleaned = cleaned.replace(sep, '')
    if cleaned.startswith('XBT'):
        cleaned = 'BTC' + cleaned[3:]
    return cleaned


def split_symbol(symbol: str) -> Tuple[str, str]:
    """Split BTCUSDT into ('BTC', 'USDT')"""
    canonical = normalize_symbol(symbol)
    for quote in KNOWN_QUOTES:
        if canonical.endswith(quote) and len(canonical) > len(quote):
            return canonical[:-len(quote)], quote
    raise BadInput(f"Cannot determine quote asset of {symbol}")


def to_okx(symbol: str, swap: bool = True) -> str:
    """BTCUSDT -> BTC-USDT-SWAP (perpetual) or BTC-USDT (spot)"""
    base, quote = split_symbol(symbol)
    inst = f"{base}-{quote}"
    return f"{inst}-SWAP" if swap else inst


def to_coinbase(symbol: str) -> str:
    """BTCUSDT -> BTC-USDT"""
    base, quote = split_symbol(symbol)
    return f"{base}-{quote}"


def to_kraken(symbol: str) -> str:
    """BTCUSDT -> XBTUSDT"""
    base, quote = split_symbol(symbol)
    return f"{_KRAKEN_ASSETS.get(base, base)}{quote}"
