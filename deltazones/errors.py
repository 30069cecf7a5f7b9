"""
Error taxonomy shared across connectors, storage and processors.
"""

from typing import Optional


class DeltaZonesError(Exception):
    """Base class for all package errors"""


class TransportError(DeltaZonesError):
    """A whole connector call failed (network, timeout, HTTP or venue error)."""

    def __init__(self, exchange: str, message: str, status: Optional[int] = None):
        self.exchange = exchange
        self.status = status
        super().__init__(f"{exchange}: {message}")


class MalformedRecord(DeltaZonesError):
    """A single raw record could not be normalized."""


class StorageError(DeltaZonesError):
    """A database operation failed."""


class NoDataAvailable(DeltaZonesError):
    """Nothing to work with (no trades, no candles, no price source)."""


class PriceUnavailable(NoDataAvailable):
    """Every configured price source failed."""


class BadInput(DeltaZonesError):
    """Caller supplied invalid parameters."""
