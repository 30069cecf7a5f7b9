"""
Price Resolver

Current price for a symbol from an ordered list of venues. The first venue
that answers with a positive price wins; a failing venue is logged and the
next one is tried. There are no retries within a single call.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from deltazones import config
from deltazones.collectors.registry import get_connector
from deltazones.collectors.symbols import normalize_symbol
from deltazones.errors import BadInput, PriceUnavailable, TransportError
from deltazones.types import Exchange

logger = logging.getLogger(__name__)

# A venue that can't list the symbol or returns a payload it can't parse
# counts as that venue failing
SOURCE_ERRORS = (TransportError, BadInput, KeyError, IndexError, TypeError, AttributeError, ValueError)


@dataclass(frozen=True)
class ResolvedPrice:
    price: float
    exchange: str


class PriceResolver:
    """Ordered fallback chain over venue ticker endpoints"""

    def __init__(self, sources: Optional[Sequence] = None):
        """
        Args:
            sources: Exchange names or connector instances, in priority order
                (default: PRICE_SOURCES from config)
        """
        self.sources = [self._build(s) for s in (sources if sources is not None else config.PRICE_SOURCES)]
        logger.info(f"PriceResolver initialized with sources: {', '.join(self.source_names)}")

    @staticmethod
    def _build(source):
        if hasattr(source, 'fetch_price'):
            return source
        return get_connector(source)

    @property
    def source_names(self) -> List[str]:
        return [Exchange.parse(s.exchange).value for s in self.sources]

    def resolve(self, symbol: str) -> ResolvedPrice:
        """
        Resolve the current price of a symbol.

        Args:
            symbol: Canonical or venue-style symbol (BTCUSDT, BTC-USDT)

        Returns:
            ResolvedPrice from the first venue that answered

        Raises:
            PriceUnavailable: every source failed
            BadInput: empty symbol
        """
        symbol = normalize_symbol(symbol)
        failures = []

        for source, name in zip(self.sources, self.source_names):
            try:
                price = source.fetch_price(symbol)
            except SOURCE_ERRORS as e:
                logger.warning(f"Price source {name} failed for {symbol}: {e!r}")
                failures.append(name)
                continue

            if price is None or not price > 0:
                logger.warning(f"Price source {name} returned unusable price {price!r} for {symbol}")
                failures.append(name)
                continue

            logger.debug(f"{symbol} price {price} from {name}")
            return ResolvedPrice(price=float(price), exchange=name)

        raise PriceUnavailable(f"No price for {symbol}; tried {', '.join(failures) or 'no sources'}")

    async def resolve_async(self, symbol: str) -> ResolvedPrice:
        """Same chain as resolve(), run in a worker thread"""
        return await asyncio.to_thread(self.resolve, symbol)

    def close(self):
        for source in self.sources:
            close = getattr(source, 'close', None)
            if close is not None:
                close()
