#!/usr/bin/env python3
"""
Database Initialization Script

Creates the trade store and backfill job tables.
"""

import argparse
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy.exc import SQLAlchemyError

from deltazones import config
from deltazones.storage.database import init_database

logger = logging.getLogger(__name__)


def main():
    """Initialize database"""
    parser = argparse.ArgumentParser(description="Create Delta Zones database tables")
    parser.add_argument('--database-url', default=config.DATABASE_URL, help="SQLAlchemy URL (default: DATABASE_URL)")
    parser.add_argument('--drop', action='store_true', help="Drop existing tables first (deletes all trades and jobs)")
    parser.add_argument('-y', '--yes', action='store_true', help="Don't ask for confirmation")
    args = parser.parse_args()

    config.setup_logging()

    print("=" * 80)
    print("Delta Zones - Database Initialization")
    print("=" * 80)
    print(f"\nDatabase URL: {args.database_url}")
    if args.drop:
        print("\n⚠️  This will DROP all existing tables and recreate them.")
    else:
        print("\nThis will create all database tables.")

    if not args.yes:
        response = input("\nContinue? (yes/no): ")
        if response.lower() not in ['yes', 'y']:
            print("Aborted.")
            return

    try:
        init_database(args.database_url, drop=args.drop)
    except SQLAlchemyError as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    print("\n✅ Database initialized successfully!")
    print("\nCreated tables:")
    print("  - trades")
    print("  - symbol_index")
    print("  - backfill_jobs")
    print("\nDatabase is ready to use!")


if __name__ == "__main__":
    main()
