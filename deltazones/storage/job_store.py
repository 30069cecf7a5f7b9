"""
Backfill Job Store

Persists backfill job rows. The row is the only authority on a job's
progress, so every transition is a guarded UPDATE:

- status only moves forward (pending -> running -> done | failed)
- the cursor never moves backwards
"""

import logging
import uuid
from typing import List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from deltazones.errors import StorageError
from deltazones.storage.database import db_manager
from deltazones.storage.models import BackfillJobRecord
from deltazones.types import BackfillJob, JobStatus, now_ms

logger = logging.getLogger(__name__)

_ACTIVE = (JobStatus.PENDING.value, JobStatus.RUNNING.value)


def _to_job(row: BackfillJobRecord) -> BackfillJob:
    return BackfillJob(
        id=row.id,
        symbol=row.symbol,
        exchange=row.exchange,
        start_ts=row.start_ts,
        end_ts=row.end_ts,
        cursor_ts=row.cursor_ts,
        status=JobStatus(row.status),
        message=row.message or '',
        created_at=row.created_at,
        updated_at=row.updated_at
    )


class JobStore:
    """CRUD and guarded state transitions for backfill jobs"""

    def __init__(self, manager=None):
        self.db = manager or db_manager

    def create(self, symbol: str, exchange: str, start_ts: int, end_ts: int) -> BackfillJob:
        """Persist a new pending job with its cursor at start_ts"""
        ts = now_ms()
        row = BackfillJobRecord(
            id=uuid.uuid4().hex,
            symbol=symbol,
            exchange=exchange,
            start_ts=start_ts,
            end_ts=end_ts,
            cursor_ts=start_ts,
            status=JobStatus.PENDING.value,
            message='queued',
            created_at=ts,
            updated_at=ts
        )
        try:
            with self.db.get_session() as session:
                session.add(row)
                session.flush()
                job = _to_job(row)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not create backfill job: {e}") from e

        logger.info(f"Created backfill job {job.id} ({exchange} {symbol} {start_ts}..{end_ts})")
        return job

    def get(self, job_id: str) -> Optional[BackfillJob]:
        with self.db.get_session() as session:
            row = session.get(BackfillJobRecord, job_id)
            return _to_job(row) if row else None

    def list(self, limit: int = 50) -> List[BackfillJob]:
        """Most recently updated jobs first"""
        with self.db.get_session() as session:
            rows = session.query(BackfillJobRecord).order_by(
                desc(BackfillJobRecord.updated_at), desc(BackfillJobRecord.created_at)
            ).limit(limit).all()
            return [_to_job(r) for r in rows]

    def mark_running(self, job_id: str, message: str = 'running') -> BackfillJob:
        """
        Move a pending (or interrupted running) job to running.

        Raises:
            StorageError: if the job is missing or already terminal
        """
        self._update(
            job_id,
            allowed=_ACTIVE,
            values={'status': JobStatus.RUNNING.value, 'message': message}
        )
        return self.get(job_id)

    def checkpoint(self, job_id: str, cursor_ts: int, message: str) -> None:
        """
        Persist window progress.

        Raises:
            StorageError: if the job is not running or the cursor would move backwards
        """
        try:
            with self.db.get_session() as session:
                updated = session.query(BackfillJobRecord).filter(
                    BackfillJobRecord.id == job_id,
                    BackfillJobRecord.status == JobStatus.RUNNING.value,
                    BackfillJobRecord.cursor_ts <= cursor_ts
                ).update({
                    'cursor_ts': cursor_ts,
                    'message': message,
                    'updated_at': now_ms()
                }, synchronize_session=False)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not checkpoint job {job_id}: {e}") from e

        if updated != 1:
            raise StorageError(f"Rejected checkpoint for job {job_id} at cursor {cursor_ts}")

    def finish(self, job_id: str, status: JobStatus, message: str) -> None:
        """Move a job into a terminal state, exactly once"""
        if not status.is_terminal:
            raise ValueError(f"{status.value} is not a terminal status")
        self._update(job_id, allowed=_ACTIVE, values={'status': status.value, 'message': message})
        logger.info(f"Backfill job {job_id} {status.value}: {message}")

    def _update(self, job_id: str, allowed, values: dict) -> None:
        values = dict(values, updated_at=now_ms())
        try:
            with self.db.get_session() as session:
                updated = session.query(BackfillJobRecord).filter(
                    BackfillJobRecord.id == job_id,
                    BackfillJobRecord.status.in_(allowed)
                ).update(values, synchronize_session=False)
        except SQLAlchemyError as e:
            raise StorageError(f"Could not update job {job_id}: {e}") from e

        if updated != 1:
            raise StorageError(f"Job {job_id} missing or not in {allowed}")
