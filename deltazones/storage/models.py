"""
SQLAlchemy Database Models

ORM models for the Delta Zones database.
"""

from sqlalchemy import Column, BigInteger, Float, String, Text, Index
from sqlalchemy.orm import declarative_base

Base = declarative_base()


# ============================================================================
# MARKET DATA MODELS
# ============================================================================

class TradeRecord(Base):
    """Canonical trades from all exchanges, keyed by synthetic identity"""
    __tablename__ = 'trades'

    identity = Column(String(200), primary_key=True)
    exchange = Column(String(50), nullable=False)
    symbol = Column(String(20), nullable=False)
    price = Column(Float, nullable=False)
    quantity = Column(Float, nullable=False)
    side = Column(String(10), nullable=False)
    timestamp = Column(BigInteger, nullable=False)  # epoch ms

    __table_args__ = (
        Index('idx_trades_symbol_timestamp', 'symbol', 'timestamp'),
        Index('idx_trades_exchange_symbol', 'exchange', 'symbol'),
    )

    def __repr__(self):
        return f"<TradeRecord(exchange={self.exchange}, price={self.price}, quantity={self.quantity}, side={self.side})>"


class SymbolIndex(Base):
    """Latest trade timestamp seen per symbol"""
    __tablename__ = 'symbol_index'

    symbol = Column(String(20), primary_key=True)
    last_seen_ts = Column(BigInteger, nullable=False)

    def __repr__(self):
        return f"<SymbolIndex(symbol={self.symbol}, last_seen_ts={self.last_seen_ts})>"


# ============================================================================
# BACKFILL
# ============================================================================

class BackfillJobRecord(Base):
    """Backfill job progress, the single source of truth for a job"""
    __tablename__ = 'backfill_jobs'

    id = Column(String(64), primary_key=True)
    symbol = Column(String(20), nullable=False)
    exchange = Column(String(50), nullable=False)

    # Time range (epoch ms)
    start_ts = Column(BigInteger, nullable=False)
    end_ts = Column(BigInteger, nullable=False)
    cursor_ts = Column(BigInteger, nullable=False)

    # Status
    status = Column(String(20), nullable=False)  # pending, running, done, failed
    message = Column(Text, default='')

    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (
        Index('idx_backfill_jobs_symbol_updated', 'symbol', 'updated_at'),
        Index('idx_backfill_jobs_status', 'status'),
    )

    def __repr__(self):
        return f"<BackfillJobRecord(id={self.id}, exchange={self.exchange}, status={self.status}, cursor={self.cursor_ts})>"
