"""
Trade store and job store tests against in-memory SQLite.
"""

from contextlib import contextmanager

import pytest
from sqlalchemy.exc import OperationalError

from deltazones.errors import StorageError
from deltazones.storage.database import db_manager, init_database
from deltazones.storage.models import TradeRecord
from deltazones.storage.trade_store import TradeStore
from deltazones.types import BUY, SELL, Exchange, JobStatus, Trade, make_identity


def make_trade(native_id, price=65000.0, quantity=0.5, side=BUY, timestamp=1_700_000_000_000,
               exchange=Exchange.BINANCE, symbol='BTCUSDT'):
    return Trade(
        identity=make_identity(exchange.value, symbol, native_id),
        exchange=exchange,
        symbol=symbol,
        price=price,
        quantity=quantity,
        side=side,
        timestamp=timestamp
    )


# ============================================================================
# Trades
# ============================================================================

def test_insert_is_idempotent(trade_store):
    trade = make_trade(1)

    assert trade_store.insert(trade) is True
    assert trade_store.insert(trade) is False
    assert trade_store.count('BTCUSDT') == 1


def test_insert_many_counts_new_rows(trade_store):
    trades = [make_trade(i, timestamp=1000 + i) for i in range(5)]

    assert trade_store.insert_many(trades) == 5
    assert trade_store.insert_many(trades + [make_trade(99, timestamp=2000)]) == 1
    assert trade_store.count() == 6


def test_last_seen_never_moves_backwards(trade_store):
    trade_store.insert(make_trade(1, timestamp=5000))
    assert trade_store.last_seen('BTCUSDT') == 5000

    trade_store.insert(make_trade(2, timestamp=3000))
    assert trade_store.last_seen('BTCUSDT') == 5000

    trade_store.insert(make_trade(3, timestamp=7000))
    assert trade_store.last_seen('BTCUSDT') == 7000

    assert trade_store.last_seen('ETHUSDT') is None


def test_query_filters(trade_store):
    trade_store.insert_many([
        make_trade(1, timestamp=1000),
        make_trade(2, timestamp=2000, side=SELL),
        make_trade(3, timestamp=3000, exchange=Exchange.KRAKEN),
        make_trade(4, timestamp=4000, symbol='ETHUSDT'),
    ])

    everything = trade_store.query('BTCUSDT')
    assert [t.timestamp for t in everything] == [1000, 2000, 3000]
    assert everything[1].side == SELL
    assert everything[2].exchange == Exchange.KRAKEN

    assert [t.timestamp for t in trade_store.query('btcusdt', since=2000)] == [2000, 3000]
    assert [t.timestamp for t in trade_store.query('BTCUSDT', until=2000)] == [1000, 2000]
    assert [t.timestamp for t in trade_store.query('BTCUSDT', exchanges=['kraken'])] == [3000]
    assert trade_store.query('SOLUSDT') == []


def test_same_native_id_on_two_venues_is_two_trades(trade_store):
    assert trade_store.insert(make_trade(1, exchange=Exchange.BINANCE))
    assert trade_store.insert(make_trade(1, exchange=Exchange.OKX))
    assert trade_store.count('BTCUSDT') == 2


def test_generic_insert_path(trade_store, database, monkeypatch):
    """Dialects without an upsert construct fall back to get-then-add"""
    monkeypatch.setattr(type(database), 'dialect', property(lambda self: 'other'))
    trade = make_trade(7, timestamp=9000)

    assert trade_store.insert(trade) is True
    assert trade_store.insert(trade) is False
    assert trade_store.last_seen('BTCUSDT') == 9000

    with database.get_session() as session:
        assert session.query(TradeRecord).count() == 1


class BrokenDatabase:
    """Every session fails the way a dropped connection does"""

    dialect = 'sqlite'

    @contextmanager
    def get_session(self):
        raise OperationalError('SELECT', {}, Exception('database is locked'))
        yield


def test_query_failure_raises_storage_error(trade_store, monkeypatch):
    monkeypatch.setattr(trade_store, 'db', BrokenDatabase())

    with pytest.raises(StorageError, match='BTCUSDT'):
        trade_store.query('BTCUSDT')
    # Inserts still log and swallow
    assert trade_store.insert(make_trade(8)) is False


# ============================================================================
# Jobs
# ============================================================================

def test_job_lifecycle(job_store):
    job = job_store.create('BTCUSDT', 'binance', 0, 10_000)
    assert job.status == JobStatus.PENDING
    assert job.cursor_ts == 0

    job = job_store.mark_running(job.id, 'running: 3 windows (range)')
    assert job.status == JobStatus.RUNNING

    job_store.checkpoint(job.id, 5000, 'window 1/3 done')
    assert job_store.get(job.id).cursor_ts == 5000

    job_store.finish(job.id, JobStatus.DONE, 'done')
    job = job_store.get(job.id)
    assert job.status == JobStatus.DONE
    assert job.message == 'done'
    assert job.updated_at >= job.created_at


def test_cursor_cannot_move_backwards(job_store):
    job = job_store.create('BTCUSDT', 'binance', 0, 10_000)
    job_store.mark_running(job.id)
    job_store.checkpoint(job.id, 5000, 'ok')

    with pytest.raises(StorageError):
        job_store.checkpoint(job.id, 4000, 'rewind')
    assert job_store.get(job.id).cursor_ts == 5000


def test_terminal_jobs_are_frozen(job_store):
    job = job_store.create('BTCUSDT', 'binance', 0, 10_000)
    job_store.mark_running(job.id)
    job_store.finish(job.id, JobStatus.FAILED, 'window 1/1 failed')

    with pytest.raises(StorageError):
        job_store.finish(job.id, JobStatus.DONE, 'done')
    with pytest.raises(StorageError):
        job_store.mark_running(job.id)
    with pytest.raises(StorageError):
        job_store.checkpoint(job.id, 9000, 'late')

    assert job_store.get(job.id).status == JobStatus.FAILED


def test_checkpoint_requires_running(job_store):
    job = job_store.create('BTCUSDT', 'binance', 0, 10_000)
    with pytest.raises(StorageError):
        job_store.checkpoint(job.id, 100, 'too early')


def test_list_and_missing(job_store):
    ids = [job_store.create('BTCUSDT', 'binance', i, i + 1).id for i in range(3)]

    assert {j.id for j in job_store.list()} == set(ids)
    assert len(job_store.list(limit=2)) == 2
    assert job_store.get('nope') is None
    with pytest.raises(ValueError):
        job_store.finish(ids[0], JobStatus.RUNNING, 'not terminal')


# ============================================================================
# Initialization
# ============================================================================

def test_init_database_keeps_or_drops_rows(tmp_path):
    url = f"sqlite:///{tmp_path / 'zones.db'}"
    try:
        init_database(url)
        store = TradeStore(db_manager)
        store.insert(make_trade(1))

        init_database(url)
        assert store.count() == 1

        init_database(url, drop=True)
        assert store.count() == 0
        assert store.last_seen('BTCUSDT') is None
    finally:
        db_manager.close()
