"""
Trade Store

Idempotent, append-only persistence for canonical trades.

Each trade is keyed by its synthetic identity, so inserting the same print
twice is a silent no-op. Every insert also advances the per-symbol
last-seen timestamp, which never moves backwards.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import and_
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from deltazones.errors import StorageError
from deltazones.storage.database import db_manager
from deltazones.storage.models import TradeRecord, SymbolIndex
from deltazones.types import Exchange, Trade

logger = logging.getLogger(__name__)

_UPSERT_DIALECTS = {
    'sqlite': sqlite_insert,
    'postgresql': pg_insert,
}


class TradeStore:
    """Persists canonical trades and the per-symbol last-seen index"""

    def __init__(self, manager=None):
        """
        Args:
            manager: DatabaseManager to use (default: the global db_manager)
        """
        self.db = manager or db_manager

    def insert(self, trade: Trade) -> bool:
        """
        Insert a trade if its identity is new.

        Storage errors are logged and swallowed so one bad row never aborts
        an ingestion batch.

        Args:
            trade: Canonical trade

        Returns:
            True if a new row was written, False for duplicates and failures
        """
        try:
            with self.db.get_session() as session:
                upsert = _UPSERT_DIALECTS.get(self.db.dialect)
                if upsert is not None:
                    inserted = self._insert_upsert(session, upsert, trade)
                else:
                    inserted = self._insert_generic(session, trade)
            return inserted
        except SQLAlchemyError as e:
            logger.error(f"Error saving trade {trade.identity}: {e}")
            return False

    def insert_many(self, trades: Iterable[Trade]) -> int:
        """
        Insert trades one by one.

        Returns:
            Number of new rows written
        """
        return sum(1 for trade in trades if self.insert(trade))

    def _insert_upsert(self, session, upsert, trade: Trade) -> bool:
        stmt = upsert(TradeRecord).values(
            identity=trade.identity,
            exchange=trade.exchange.value,
            symbol=trade.symbol,
            price=trade.price,
            quantity=trade.quantity,
            side=trade.side,
            timestamp=trade.timestamp
        ).on_conflict_do_nothing(index_elements=['identity'])
        result = session.execute(stmt)

        index_stmt = upsert(SymbolIndex).values(
            symbol=trade.symbol,
            last_seen_ts=trade.timestamp
        )
        index_stmt = index_stmt.on_conflict_do_update(
            index_elements=['symbol'],
            set_={'last_seen_ts': index_stmt.excluded.last_seen_ts},
            where=SymbolIndex.last_seen_ts < index_stmt.excluded.last_seen_ts
        )
        session.execute(index_stmt)

        return result.rowcount == 1

    def _insert_generic(self, session, trade: Trade) -> bool:
        inserted = False
        if session.get(TradeRecord, trade.identity) is None:
            session.add(TradeRecord(
                identity=trade.identity,
                exchange=trade.exchange.value,
                symbol=trade.symbol,
                price=trade.price,
                quantity=trade.quantity,
                side=trade.side,
                timestamp=trade.timestamp
            ))
            try:
                session.flush()
                inserted = True
            except IntegrityError:
                # Lost a race with another writer, the row exists either way
                session.rollback()

        entry = session.get(SymbolIndex, trade.symbol)
        if entry is None:
            session.add(SymbolIndex(symbol=trade.symbol, last_seen_ts=trade.timestamp))
        elif trade.timestamp > entry.last_seen_ts:
            entry.last_seen_ts = trade.timestamp

        return inserted

    def query(
        self,
        symbol: str,
        exchanges: Optional[Iterable] = None,
        since: Optional[int] = None,
        until: Optional[int] = None
    ) -> List[Trade]:
        """
        Load trades for a symbol.

        Args:
            symbol: Normalized symbol, e.g. BTCUSDT
            exchanges: Restrict to these venues (default: all)
            since: Inclusive lower bound, epoch ms
            until: Inclusive upper bound, epoch ms

        Returns:
            List of canonical trades
        """
        filters = [TradeRecord.symbol == symbol.upper()]
        if exchanges:
            filters.append(TradeRecord.exchange.in_([Exchange.parse(e).value for e in exchanges]))
        if since is not None:
            filters.append(TradeRecord.timestamp >= since)
        if until is not None:
            filters.append(TradeRecord.timestamp <= until)

        try:
            with self.db.get_session() as session:
                rows = session.query(TradeRecord).filter(and_(*filters)).order_by(
                    TradeRecord.timestamp, TradeRecord.identity
                ).all()

                # Detach from session
                return [
                    Trade(
                        identity=r.identity,
                        exchange=Exchange(r.exchange),
                        symbol=r.symbol,
                        price=r.price,
                        quantity=r.quantity,
                        side=r.side,
                        timestamp=r.timestamp
                    )
                    for r in rows
                ]
        except SQLAlchemyError as e:
            raise StorageError(f"Could not load {symbol} trades: {e}") from e

    def last_seen(self, symbol: str) -> Optional[int]:
        """Latest trade timestamp stored for a symbol, or None"""
        with self.db.get_session() as session:
            entry = session.get(SymbolIndex, symbol.upper())
            return entry.last_seen_ts if entry else None

    def count(self, symbol: Optional[str] = None) -> int:
        with self.db.get_session() as session:
            q = session.query(TradeRecord)
            if symbol:
                q = q.filter(TradeRecord.symbol == symbol.upper())
            return q.count()
