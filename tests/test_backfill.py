"""
Backfill job engine tests with scripted fake connectors.
"""

import asyncio
import threading

import pytest

from deltazones.collectors.records import build_trade
from deltazones.errors import BadInput, MalformedRecord, TransportError
from deltazones.processors.backfill import SNAPSHOT_NOTE, BackfillJobEngine, plan_windows
from deltazones.types import Exchange, JobStatus


class FakeConnector:
    """
    Returns one trade per window (three for snapshot fetches) and fails on
    the windows listed in `fail_on` (window start -> number of failures,
    None for always).
    """

    exchange = Exchange.BINANCE

    def __init__(self, range_capable=True, fail_on=None):
        self.range_capable = range_capable
        self.fail_on = dict(fail_on or {})
        self.calls = []
        self._lock = threading.Lock()

    def fetch(self, symbol, start=None, end=None, limit=1000):
        with self._lock:
            self.calls.append((start, end))
            remaining = self.fail_on.get(start, 0)
            if remaining is None or remaining > 0:
                if remaining:
                    self.fail_on[start] = remaining - 1
                raise TransportError('binance', f"HTTP 502 for window {start}", status=502)

        if start is None:
            return [{'id': f"s{i}", 'p': 100 + i, 'q': 1, 'T': 1000 + i} for i in range(3)]
        return [{'id': f"w{start}", 'p': 100, 'q': 1, 'T': start + 1}]

    def normalize(self, raw, symbol):
        try:
            return build_trade(self.exchange, symbol, raw['id'], raw['p'], raw['q'], 'buy', raw['T'])
        except MalformedRecord:
            return None


def make_engine(job_store, trade_store, connector, **kwargs):
    params = dict(window_ms=1000, max_attempts=3, retry_delay=0, pacing_delay=0, fetch_concurrency=4)
    params.update(kwargs)
    return BackfillJobEngine(
        job_store=job_store,
        trade_store=trade_store,
        connector_factory=lambda exchange: connector,
        **params
    )


def run_to_end(engine, symbol='BTCUSDT', exchange='binance', start_ts=0, end_ts=4999):
    async def scenario():
        job_id = engine.create(symbol, exchange, start_ts, end_ts)
        return await engine.wait(job_id)

    return asyncio.run(scenario())


# ============================================================================
# Planning
# ============================================================================

def test_plan_windows():
    assert plan_windows(0, 2500, 1000) == [(0, 999), (1000, 1999), (2000, 2500)]
    assert plan_windows(0, 0, 1000) == [(0, 0)]
    assert plan_windows(5000, 4999, 1000) == []


# ============================================================================
# Range-capable runs
# ============================================================================

def test_range_job_completes(job_store, trade_store):
    connector = FakeConnector()
    job = run_to_end(make_engine(job_store, trade_store, connector))

    assert job.status == JobStatus.DONE
    assert job.cursor_ts == 5000
    assert job.message.startswith('done: 5 windows, 5 new trades')
    assert sorted(connector.calls) == [(0, 999), (1000, 1999), (2000, 2999), (3000, 3999), (4000, 4999)]
    assert trade_store.count('BTCUSDT') == 5


def test_window_three_of_five_fails(job_store, trade_store):
    connector = FakeConnector(fail_on={2000: None})
    job = run_to_end(make_engine(job_store, trade_store, connector))

    assert job.status == JobStatus.FAILED
    assert 'window 3/5' in job.message
    assert '[2000..2999]' in job.message
    # Cursor sits at the end of window 2; windows 1-2 are stored, nothing after
    assert job.cursor_ts == 2000
    assert [t.timestamp for t in trade_store.query('BTCUSDT')] == [1, 1001]


def test_transient_failures_are_retried(job_store, trade_store):
    connector = FakeConnector(fail_on={1000: 2})
    job = run_to_end(make_engine(job_store, trade_store, connector))

    assert job.status == JobStatus.DONE
    assert connector.calls.count((1000, 1999)) == 3
    assert trade_store.count('BTCUSDT') == 5


def test_retries_are_bounded(job_store, trade_store):
    connector = FakeConnector(fail_on={0: None})
    job = run_to_end(make_engine(job_store, trade_store, connector, max_attempts=2))

    assert job.status == JobStatus.FAILED
    assert 'window 1/5' in job.message
    assert 'gave up after 2 attempts' in job.message
    assert connector.calls.count((0, 999)) == 2
    assert job.cursor_ts == 0


def test_sequential_fetching(job_store, trade_store):
    connector = FakeConnector(fail_on={3000: None})
    job = run_to_end(make_engine(job_store, trade_store, connector, fetch_concurrency=1, max_attempts=1))

    assert job.status == JobStatus.FAILED
    assert job.cursor_ts == 3000
    # Window 5 is never attempted once window 4 fails
    assert (4000, 4999) not in connector.calls


def test_rerun_is_idempotent(job_store, trade_store):
    engine = make_engine(job_store, trade_store, FakeConnector())
    run_to_end(engine)
    job = run_to_end(engine)

    assert job.status == JobStatus.DONE
    assert job.message.startswith('done: 5 windows, 0 new trades')
    assert trade_store.count('BTCUSDT') == 5


def test_resume_continues_from_cursor(job_store, trade_store):
    job = job_store.create('BTCUSDT', 'binance', 0, 4999)
    job_store.mark_running(job.id)
    job_store.checkpoint(job.id, 3000, 'interrupted')

    connector = FakeConnector()
    engine = make_engine(job_store, trade_store, connector)

    async def scenario():
        assert engine.resume(job.id)
        assert engine.is_active(job.id)
        return await engine.wait(job.id)

    finished = asyncio.run(scenario())
    assert finished.status == JobStatus.DONE
    assert sorted(connector.calls) == [(3000, 3999), (4000, 4999)]
    assert not engine.resume(job.id)


# ============================================================================
# Snapshot-only runs
# ============================================================================

def test_snapshot_job_fetches_latest_each_tick(job_store, trade_store):
    connector = FakeConnector(range_capable=False)
    job = run_to_end(make_engine(job_store, trade_store, connector), exchange='coinbase', end_ts=2999)

    assert job.status == JobStatus.DONE
    assert SNAPSHOT_NOTE in job.message
    assert connector.calls == [(None, None)] * 3
    assert job.cursor_ts == 3000
    # Same three prints every tick
    assert trade_store.count('BTCUSDT') == 3


def test_snapshot_failure(job_store, trade_store):
    connector = FakeConnector(range_capable=False, fail_on={None: None})
    job = run_to_end(make_engine(job_store, trade_store, connector, max_attempts=1), exchange='okx', end_ts=999)

    assert job.status == JobStatus.FAILED
    assert 'window 1/1' in job.message


# ============================================================================
# Validation and crash handling
# ============================================================================

def test_create_validates_input(job_store, trade_store):
    engine = make_engine(job_store, trade_store, FakeConnector())

    async def scenario():
        with pytest.raises(BadInput):
            engine.create('BTCUSDT', 'binance', 5000, 1000)
        with pytest.raises(BadInput):
            engine.create('BTCUSDT', 'mtgox', 0, 1000)
        with pytest.raises(BadInput):
            engine.create('', 'binance', 0, 1000)

    asyncio.run(scenario())
    assert job_store.list() == []


def test_create_needs_running_loop(job_store, trade_store):
    engine = make_engine(job_store, trade_store, FakeConnector())
    with pytest.raises(RuntimeError):
        engine.create('BTCUSDT', 'binance', 0, 1000)
    assert job_store.list() == []


def test_unexpected_errors_fail_the_job(job_store, trade_store):
    class BrokenConnector(FakeConnector):
        def normalize(self, raw, symbol):
            raise KeyError('boom')

    job = run_to_end(make_engine(job_store, trade_store, BrokenConnector()))

    assert job.status == JobStatus.FAILED
    assert job.message.startswith('unexpected error')
