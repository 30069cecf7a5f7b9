"""
Binance Real-Time Trades WebSocket Collector

Streams `<symbol>@trade` prints, normalizes them with the Binance connector
and writes them into the trade store as they arrive. Keeps a running
cumulative volume delta for the session.
"""

import asyncio
import json
import logging
import signal
import sys
from typing import Optional

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from deltazones import config
from deltazones.collectors.binance import BinanceConnector
from deltazones.collectors.symbols import normalize_symbol
from deltazones.storage.database import init_database
from deltazones.storage.trade_store import TradeStore

logger = logging.getLogger(__name__)


class BinanceLiveTradesCollector:
    """
    WebSocket client feeding real-time Binance trades into the trade store.

    Calculates Cumulative Volume Delta (CVD):
    - Buyer maker (seller aggressive): subtract volume from CVD
    - Not buyer maker (buyer aggressive): add volume to CVD
    """

    def __init__(self, symbol: str = "BTCUSDT", store: Optional[TradeStore] = None,
                 websocket_url: Optional[str] = None):
        """
        Initialize the Binance trades collector.

        Args:
            symbol: Canonical symbol (default: BTCUSDT)
            store: Trade store to write into
            websocket_url: Custom WebSocket URL (optional)
        """
        self.symbol = normalize_symbol(symbol)
        self.websocket_url = websocket_url or f"wss://stream.binance.com:9443/ws/{self.symbol.lower()}@trade"
        self.store = store or TradeStore()
        self.connector = BinanceConnector()

        # CVD tracking
        self.cumulative_volume_delta = 0.0
        self.trades_seen = 0
        self.trades_stored = 0

        # Connection management
        self.websocket = None
        self.is_running = False
        self.reconnect_delay = 1  # Initial reconnect delay in seconds
        self.max_reconnect_delay = 60  # Maximum reconnect delay
        self.reconnect_attempts = 0

        logger.info(f"Initialized BinanceLiveTradesCollector for {self.symbol}")

    async def connect(self):
        """Establish WebSocket connection to Binance."""
        try:
            self.websocket = await websockets.connect(self.websocket_url)
            logger.info(f"Connected to Binance WebSocket: {self.websocket_url}")

            # Reset reconnect parameters on successful connection
            self.reconnect_delay = 1
            self.reconnect_attempts = 0

            return True
        except (OSError, WebSocketException) as e:
            logger.error(f"Failed to connect to WebSocket: {e}")
            return False

    def handle_message(self, message: str):
        """
        Handle one WebSocket message: normalize, store, update CVD.

        Returns:
            The stored canonical trade, or None if the message was skipped
        """
        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode JSON message: {e}")
            return None

        if not isinstance(data, dict) or data.get('e', 'trade') != 'trade':
            return None

        trade = self.connector.normalize(data, self.symbol)
        if trade is None:
            return None

        self.trades_seen += 1
        self.cumulative_volume_delta += trade.signed_quantity()
        if self.store.insert(trade):
            self.trades_stored += 1

        logger.debug(
            f"{trade.side.upper():4} | Price: {trade.price:,.2f} | "
            f"Qty: {trade.quantity:.6f} | CVD: {self.cumulative_volume_delta:+,.4f}"
        )
        return trade

    async def listen(self):
        """Listen for incoming WebSocket messages."""
        try:
            async for message in self.websocket:
                self.handle_message(message)
        except ConnectionClosed:
            logger.warning("WebSocket connection closed")
            raise

    async def reconnect(self):
        """
        Handle reconnection with exponential backoff.

        Returns:
            True if reconnection successful, False otherwise
        """
        self.reconnect_attempts += 1

        logger.info(f"Attempting to reconnect (attempt {self.reconnect_attempts})...")
        logger.info(f"Waiting {self.reconnect_delay} seconds before reconnecting...")

        await asyncio.sleep(self.reconnect_delay)

        # Exponential backoff: double the delay up to max
        self.reconnect_delay = min(self.reconnect_delay * 2, self.max_reconnect_delay)

        return await self.connect()

    async def start(self):
        """Start the WebSocket collector with auto-reconnect."""
        self.is_running = True
        logger.info(f"Streaming {self.symbol} trades from Binance into the trade store")

        while self.is_running:
            try:
                connected = await self.connect()
                if not connected:
                    await self.reconnect()
                    continue

                await self.listen()

            except ConnectionClosed:
                if self.is_running:
                    logger.warning("Connection lost, attempting to reconnect...")
                    await self.reconnect()
                else:
                    logger.info("Connection closed gracefully")
                    break

            except WebSocketException as e:
                if self.is_running:
                    logger.error(f"WebSocket error: {e}")
                    await self.reconnect()
                else:
                    break

    async def stop(self):
        """Stop the WebSocket collector gracefully."""
        logger.info("Stopping BinanceLiveTradesCollector...")
        self.is_running = False

        if self.websocket:
            await self.websocket.close()
            logger.info("WebSocket connection closed")

        logger.info(
            f"Session totals: {self.trades_seen} trades seen, {self.trades_stored} stored, "
            f"CVD {self.cumulative_volume_delta:+,.4f}"
        )


async def main(symbol: str = "BTCUSDT"):
    """Run the collector until interrupted."""
    init_database()
    collector = BinanceLiveTradesCollector(symbol)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(collector.stop()))

    await collector.start()


if __name__ == "__main__":
    config.setup_logging('binance_live_trades.log')
    try:
        asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "BTCUSDT"))
    except KeyboardInterrupt:
        logger.info("Shutdown complete.")
