"""
Backfill Job Engine

Walks one connector across a time range in fixed windows and stores every
trade it gets back. Progress lives in the persisted job row only; the
engine's task map is a transient handle and never a second source of truth.

Job lifecycle:
    pending -> running -> done | failed

Per window:
    1. fetch with bounded retry (exponential backoff)
    2. normalize + insert every record (idempotent)
    3. checkpoint cursor = window end + 1
    4. pace before the next window

Range-capable connectors fetch up to `fetch_concurrency` consecutive windows
in parallel, but windows are always committed in time order: a failure in
window k leaves the cursor at the end of window k-1 and fails the job.

Snapshot-only connectors can't address a time range. For them each window
tick simply stores the latest batch the venue exposes; this is a best-effort
approximation and the job message says so.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from deltazones import config
from deltazones.collectors.registry import get_connector, parse_exchange
from deltazones.collectors.symbols import normalize_symbol
from deltazones.errors import BadInput, StorageError, TransportError
from deltazones.storage.job_store import JobStore
from deltazones.storage.trade_store import TradeStore
from deltazones.types import BackfillJob, JobStatus

logger = logging.getLogger(__name__)

SNAPSHOT_NOTE = "snapshot-only source: stored the most recent trades available, not the requested historical range"

Window = Tuple[int, int]


def plan_windows(cursor_ts: int, end_ts: int, window_ms: int) -> List[Window]:
    """
    Split [cursor_ts, end_ts] into inclusive windows of window_ms.

    >>> plan_windows(0, 2500, 1000)
    [(0, 999), (1000, 1999), (2000, 2500)]
    """
    if window_ms <= 0:
        raise ValueError("window_ms must be positive")
    windows = []
    w0 = cursor_ts
    while w0 <= end_ts:
        w1 = min(w0 + window_ms - 1, end_ts)
        windows.append((w0, w1))
        w0 = w1 + 1
    return windows


class BackfillJobEngine:
    """Creates, runs and reports on backfill jobs"""

    def __init__(
        self,
        job_store: Optional[JobStore] = None,
        trade_store: Optional[TradeStore] = None,
        connector_factory: Callable = get_connector,
        window_ms: int = None,
        max_attempts: int = None,
        retry_delay: float = None,
        pacing_delay: float = None,
        fetch_concurrency: int = None,
        fetch_limit: int = None
    ):
        """
        Args:
            job_store: Job persistence (default: JobStore on the global database)
            trade_store: Trade persistence (default: TradeStore on the global database)
            connector_factory: exchange -> connector instance
            window_ms: Window size in ms (default BACKFILL_WINDOW_MS, 1 hour)
            max_attempts: Fetch attempts per window (default BACKFILL_MAX_ATTEMPTS)
            retry_delay: Base backoff in seconds, doubled per attempt
            pacing_delay: Pause between windows in seconds
            fetch_concurrency: Windows fetched in parallel for range-capable venues
            fetch_limit: Records requested per fetch
        """
        self.jobs = job_store or JobStore()
        self.trades = trade_store or TradeStore()
        self.connector_factory = connector_factory

        self.window_ms = window_ms if window_ms is not None else config.BACKFILL_WINDOW_MS
        self.max_attempts = max(1, max_attempts if max_attempts is not None else config.BACKFILL_MAX_ATTEMPTS)
        self.retry_delay = retry_delay if retry_delay is not None else config.BACKFILL_RETRY_DELAY
        self.pacing_delay = pacing_delay if pacing_delay is not None else config.BACKFILL_PACING_DELAY
        self.fetch_concurrency = max(1, fetch_concurrency or config.BACKFILL_FETCH_CONCURRENCY)
        self.fetch_limit = fetch_limit or config.BACKFILL_FETCH_LIMIT

        self._tasks: Dict[str, asyncio.Task] = {}
        self._active = set()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def create(self, symbol: str, exchange: str, start_ts: int, end_ts: int) -> str:
        """
        Persist a pending job and schedule it in the background.

        Must be called from inside a running event loop. Returns as soon as
        the job row exists; the job runs as a detached task.

        Raises:
            BadInput: invalid symbol, exchange or time range
        """
        symbol = normalize_symbol(symbol)
        venue = parse_exchange(exchange)
        try:
            start_ts, end_ts = int(start_ts), int(end_ts)
        except (TypeError, ValueError):
            raise BadInput("start_ts and end_ts must be epoch milliseconds") from None
        if start_ts < 0 or start_ts > end_ts:
            raise BadInput(f"Invalid range: start_ts={start_ts} end_ts={end_ts}")

        # Fail before persisting anything if there is no loop to run on
        asyncio.get_running_loop()

        job = self.jobs.create(symbol, venue.value, start_ts, end_ts)
        self._schedule(job.id)
        return job.id

    def get(self, job_id: str) -> Optional[BackfillJob]:
        return self.jobs.get(job_id)

    def list(self, limit: int = 50) -> List[BackfillJob]:
        return self.jobs.list(limit)

    def resume(self, job_id: str) -> bool:
        """
        Reschedule an unfinished job from its persisted cursor.

        Returns:
            False if the job is missing, terminal, or already running here
        """
        job = self.jobs.get(job_id)
        if job is None or job.status.is_terminal or self.is_active(job_id):
            return False
        self._schedule(job_id)
        return True

    def is_active(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return job_id in self._active or (task is not None and not task.done())

    async def wait(self, job_id: str) -> Optional[BackfillJob]:
        """Wait for this process's runner of a job (if any), then return the row"""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.shield(task)
        return self.jobs.get(job_id)

    # ------------------------------------------------------------------
    # Task body
    # ------------------------------------------------------------------

    def _schedule(self, job_id: str) -> None:
        task = asyncio.get_running_loop().create_task(self.run_job(job_id))
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t, jid=job_id: self._tasks.pop(jid, None))

    async def run_job(self, job_id: str) -> None:
        """
        Run a job to completion or failure.

        This is the detached task boundary: nothing escapes it. Any error
        becomes a terminal `failed` state on the job row.
        """
        if job_id in self._active:
            logger.warning(f"Backfill job {job_id} already has an active runner")
            return

        self._active.add(job_id)
        try:
            await self._run(job_id)
        except Exception as e:
            logger.exception(f"Backfill job {job_id} crashed")
            self._fail(job_id, f"unexpected error: {e}")
        finally:
            self._active.discard(job_id)

    async def _run(self, job_id: str) -> None:
        job = self.jobs.get(job_id)
        if job is None:
            logger.error(f"Backfill job {job_id} not found")
            return
        if job.status.is_terminal:
            logger.info(f"Backfill job {job_id} already {job.status.value}")
            return

        connector = self.connector_factory(job.exchange)
        range_capable = getattr(connector, 'range_capable', False)

        windows = plan_windows(job.cursor_ts, job.end_ts, self.window_ms)
        mode = 'range' if range_capable else 'snapshot'
        job = self.jobs.mark_running(job_id, f"running: {len(windows)} windows ({mode})")
        logger.info(f"Backfill job {job_id}: {job.exchange} {job.symbol} {len(windows)} windows from {job.cursor_ts}")

        if range_capable:
            stored = await self._run_range(job, connector, windows)
            note = ''
        else:
            stored = await self._run_snapshot(job, connector, windows)
            note = f"; {SNAPSHOT_NOTE}"

        if stored is not None:
            self.jobs.finish(job_id, JobStatus.DONE, f"done: {len(windows)} windows, {stored} new trades{note}")

    async def _run_range(self, job: BackfillJob, connector, windows: List[Window]) -> Optional[int]:
        total = len(windows)
        stored = 0

        for batch_start in range(0, total, self.fetch_concurrency):
            batch = windows[batch_start:batch_start + self.fetch_concurrency]
            results = await asyncio.gather(
                *(self._fetch_with_retry(connector, job.symbol, w0, w1) for w0, w1 in batch),
                return_exceptions=True
            )

            # Commit strictly in window order
            for number, ((w0, w1), result) in enumerate(zip(batch, results), start=batch_start + 1):
                if isinstance(result, BaseException):
                    if not isinstance(result, Exception):
                        raise result
                    self._fail(job.id, f"window {number}/{total} [{w0}..{w1}] failed: {result}")
                    return None

                inserted = self._store(connector, job.symbol, result)
                stored += inserted
                self.jobs.checkpoint(
                    job.id, w1 + 1,
                    f"running: window {number}/{total} done ({len(result)} fetched, {inserted} new)"
                )

            if batch_start + self.fetch_concurrency < total:
                await asyncio.sleep(self.pacing_delay)

        return stored

    async def _run_snapshot(self, job: BackfillJob, connector, windows: List[Window]) -> Optional[int]:
        total = len(windows)
        stored = 0

        for number, (w0, w1) in enumerate(windows, start=1):
            try:
                records = await self._fetch_with_retry(connector, job.symbol, None, None)
            except TransportError as e:
                self._fail(job.id, f"window {number}/{total} [{w0}..{w1}] failed: {e}")
                return None

            inserted = self._store(connector, job.symbol, records)
            stored += inserted
            self.jobs.checkpoint(
                job.id, w1 + 1,
                f"running: tick {number}/{total} stored latest batch ({inserted} new); {SNAPSHOT_NOTE}"
            )

            if number < total:
                await asyncio.sleep(self.pacing_delay)

        return stored

    async def _fetch_with_retry(self, connector, symbol: str, start: Optional[int], end: Optional[int]) -> list:
        """
        Fetch one window, retrying transport failures.

        Raises:
            TransportError: after max_attempts failures
        """
        last_error = None
        for attempt in range(self.max_attempts):
            try:
                return await asyncio.to_thread(connector.fetch, symbol, start, end, self.fetch_limit)
            except TransportError as e:
                last_error = e
                logger.warning(f"Fetch {symbol} [{start}..{end}] attempt {attempt + 1}/{self.max_attempts} failed: {e}")
                if attempt + 1 < self.max_attempts:
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))

        raise TransportError(
            last_error.exchange,
            f"gave up after {self.max_attempts} attempts: {last_error}",
            status=last_error.status
        )

    def _store(self, connector, symbol: str, records: list) -> int:
        trades = []
        for raw in records:
            trade = connector.normalize(raw, symbol)
            if trade is not None:
                trades.append(trade)

        skipped = len(records) - len(trades)
        if skipped:
            logger.debug(f"Skipped {skipped} malformed {symbol} records")
        return self.trades.insert_many(trades)

    def _fail(self, job_id: str, message: str) -> None:
        try:
            self.jobs.finish(job_id, JobStatus.FAILED, message)
        except StorageError as e:
            logger.error(f"Could not mark backfill job {job_id} failed: {e}")
