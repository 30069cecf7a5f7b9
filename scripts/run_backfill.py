#!/usr/bin/env python3
"""
Backfill Runner

Starts, resumes or lists backfill jobs against the configured database.

Examples:
    python scripts/run_backfill.py start BTCUSDT binance --hours 6
    python scripts/run_backfill.py start BTCUSDT kraken --start 2024-05-01T00:00:00 --end 2024-05-02T00:00:00
    python scripts/run_backfill.py resume 3f6c...
    python scripts/run_backfill.py list
"""

import argparse
import asyncio
import logging
import os
import sys
from datetime import datetime, timezone

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from deltazones import config
from deltazones.errors import BadInput
from deltazones.processors.backfill import BackfillJobEngine
from deltazones.storage.database import init_database
from deltazones.types import now_ms, ms_to_iso

logger = logging.getLogger(__name__)

POLL_SECONDS = 2.0


def parse_time(value: str) -> int:
    """ISO-8601 (UTC when no offset is given) or raw epoch ms"""
    if value.isdigit():
        return int(value)
    dt = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def print_job(job):
    print(f"{job.id}  {job.exchange:8} {job.symbol:10} {job.status.value:8} "
          f"{ms_to_iso(job.start_ts)} -> {ms_to_iso(job.end_ts)}  cursor {ms_to_iso(job.cursor_ts)}")
    print(f"    {job.message}")


async def follow(engine: BackfillJobEngine, job_id: str):
    """Print progress until the job reaches a terminal state"""
    last_message = None
    while engine.is_active(job_id):
        job = engine.get(job_id)
        if job and job.message != last_message:
            print(f"[{job.status.value}] {job.message}")
            last_message = job.message
        await asyncio.sleep(POLL_SECONDS)

    job = await engine.wait(job_id)
    print_job(job)
    return job


async def start(args) -> int:
    engine = BackfillJobEngine()
    end_ts = parse_time(args.end) if args.end else now_ms()
    start_ts = parse_time(args.start) if args.start else end_ts - int(args.hours * 60 * 60 * 1000)

    job_id = engine.create(args.symbol, args.exchange, start_ts, end_ts)
    print(f"Created backfill job {job_id}")
    job = await follow(engine, job_id)
    return 0 if job.status.value == 'done' else 1


async def resume(args) -> int:
    engine = BackfillJobEngine()
    if not engine.resume(args.job_id):
        job = engine.get(args.job_id)
        print(f"Job {args.job_id} cannot be resumed ({job.status.value if job else 'not found'})")
        return 1
    job = await follow(engine, args.job_id)
    return 0 if job.status.value == 'done' else 1


def list_jobs(args) -> int:
    jobs = BackfillJobEngine().list(args.limit)
    if not jobs:
        print("No backfill jobs found")
    for job in jobs:
        print_job(job)
    return 0


def main():
    parser = argparse.ArgumentParser(description="Run trade backfill jobs")
    parser.add_argument('--database-url', default=config.DATABASE_URL)
    sub = parser.add_subparsers(dest='command', required=True)

    p_start = sub.add_parser('start', help="Create a job and follow it to completion")
    p_start.add_argument('symbol')
    p_start.add_argument('exchange')
    p_start.add_argument('--start', help="Range start (ISO-8601 or epoch ms)")
    p_start.add_argument('--end', help="Range end (ISO-8601 or epoch ms, default: now)")
    p_start.add_argument('--hours', type=float, default=1.0, help="Look-back when --start is omitted")

    p_resume = sub.add_parser('resume', help="Continue an unfinished job from its cursor")
    p_resume.add_argument('job_id')

    p_list = sub.add_parser('list', help="Show recent jobs")
    p_list.add_argument('--limit', type=int, default=20)

    args = parser.parse_args()

    config.setup_logging('backfill.log')
    init_database(args.database_url)

    try:
        if args.command == 'list':
            code = list_jobs(args)
        elif args.command == 'resume':
            code = asyncio.run(resume(args))
        else:
            code = asyncio.run(start(args))
    except BadInput as e:
        logger.error(str(e))
        code = 2
    except KeyboardInterrupt:
        logger.info("Interrupted; resume later with the job id")
        code = 130

    sys.exit(code)


if __name__ == "__main__":
    main()
