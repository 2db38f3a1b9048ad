#!/usr/bin/env python
"""
Initialize Database Script
Creates the task store schema (connection configs, sync tasks, task logs).
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect

from cdc_sync.utils.logger import setup_logging, get_logger
from cdc_sync.database.connection import DatabaseConnection, get_db


def main():
    """Main entry point for task store initialization."""
    parser = argparse.ArgumentParser(description='Initialize the sync task store schema')
    parser.add_argument(
        '--url',
        help='SQLAlchemy URL of the task store (defaults to config.yaml)'
    )
    parser.add_argument(
        '--drop',
        action='store_true',
        help='Drop existing tables before creating (DANGEROUS)'
    )
    parser.add_argument(
        '--yes',
        action='store_true',
        help='Do not ask for confirmation when dropping'
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging()
    logger = get_logger(__name__)

    try:
        logger.info("Initializing task store")

        db = DatabaseConnection(url=args.url) if args.url else get_db()

        # Check connection
        if not db.check_connection():
            print("Error: Cannot connect to task store")
            sys.exit(1)

        print("Task store connection successful")

        if args.drop:
            confirm = 'yes' if args.yes else input("Are you sure you want to drop all tables? (yes/no): ")
            if confirm.lower() == 'yes':
                logger.warning("Dropping all task store tables")
                db.drop_all()
                print("All tables dropped")
            else:
                print("Cancelled")
                sys.exit(0)

        # Create tables
        logger.info("Creating tables")
        db.create_all()

        print(f"\n{'='*50}")
        print("Task Store Initialized Successfully")
        print(f"{'='*50}")

        tables = inspect(db.engine).get_table_names()
        print(f"\nTables: {len(tables)}")
        for table in sorted(tables):
            print(f"  - {table}")

    except Exception as e:
        logger.error(f"Task store initialization failed: {e}")
        print(f"\nError: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
